"""Factory for routing engines based on configuration."""

from __future__ import annotations

from typing import Any

from .base import RoutingEngine
from .constructive import ConstructiveEngine, SolverOptions
from .greedy import GreedyEngine


def get_engine(name: str, **kwargs: Any) -> RoutingEngine:
    match name:
        case "greedy":
            return GreedyEngine()
        case "constructive":
            solver_kwargs = {
                k: v
                for k, v in kwargs.items()
                if k in {"first_solution_strategy", "local_search_metaheuristic", "time_limit_seconds", "solution_limit"}
            }
            return ConstructiveEngine(SolverOptions(**solver_kwargs))
        case _:
            raise ValueError(f"Unknown planning engine '{name}'.")

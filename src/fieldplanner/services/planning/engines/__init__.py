"""Daily routing engines."""

from .base import DayContext, PlanResult, RoutingEngine
from .constructive import ConstructiveEngine, SolverOptions
from .dispatcher import get_engine
from .greedy import GreedyEngine

__all__ = [
    "DayContext",
    "PlanResult",
    "RoutingEngine",
    "ConstructiveEngine",
    "SolverOptions",
    "GreedyEngine",
    "get_engine",
]

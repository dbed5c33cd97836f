"""OR-Tools routing engine: construction heuristic followed by bounded local search."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from ortools.constraint_solver import pywrapcp, routing_enums_pb2

from ....config import settings
from ....models.domain import Location, Route, Stop
from ..routes import DriverDay, make_stop, recompute_route, trim_to_capacity
from .base import DayContext, PlanResult, RoutingEngine
from .greedy import GreedyEngine

logger = logging.getLogger(__name__)

SINK_NODE = 0
DROP_PENALTY = 1_000_000
FIXED_DROP_PENALTY = 100_000_000
DUE_COST_PENALTY_SCALE = 1000


@dataclass(slots=True)
class SolverOptions:
    first_solution_strategy: str = settings.solver_first_solution_strategy
    local_search_metaheuristic: str = settings.solver_local_search_metaheuristic
    time_limit_seconds: int = settings.solver_time_limit_seconds
    solution_limit: int = settings.solver_solution_limit


def _resolve_enum(enum_type, tag: str, label: str) -> int:
    value = getattr(enum_type, tag, None)
    if value is None:
        raise ValueError(f"Unknown {label} '{tag}'.")
    return value


@dataclass(slots=True)
class _Node:
    latitude: float
    longitude: float
    location: Optional[Location] = None
    stop: Optional[Stop] = None
    vehicle: Optional[int] = None

    @property
    def coordinate(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)


class ConstructiveEngine(RoutingEngine):
    """Plan a day as an open vehicle routing problem with optional visits.

    Each available driver is a vehicle leaving from home; every route ends in a
    shared sink reached at zero cost, so the return leg is never counted. Stops
    already on a driver's route are pinned to that driver and cannot be dropped.
    Candidates are optional: dropping one costs a penalty that grows with its
    lateness and is prohibitive for locations fixed to this date.
    """

    name = "constructive"

    def __init__(self, options: SolverOptions | None = None) -> None:
        self.options = options or SolverOptions()
        self._first_solution = _resolve_enum(
            routing_enums_pb2.FirstSolutionStrategy,
            self.options.first_solution_strategy,
            "first solution strategy",
        )
        self._metaheuristic = _resolve_enum(
            routing_enums_pb2.LocalSearchMetaheuristic,
            self.options.local_search_metaheuristic,
            "local search metaheuristic",
        )
        if self.options.time_limit_seconds < 1:
            raise ValueError("Solver time limit must be at least one second.")

    def plan(self, context: DayContext, candidates: Sequence[Location]) -> PlanResult:
        day = context.day
        feasible = [location for location in candidates if context.cost_model.is_feasible_on(location, day)]
        rejected = [location for location in candidates if not context.cost_model.is_feasible_on(location, day)]

        if not context.driver_days or (not feasible and not any(r.stops for r in context.routes.values())):
            return self._result(context, [], rejected + feasible, candidates, status="no_work")

        nodes = self._build_nodes(context, feasible)
        vehicle_count = len(context.driver_days)
        starts = list(range(1, vehicle_count + 1))
        manager = pywrapcp.RoutingIndexManager(len(nodes), vehicle_count, starts, [SINK_NODE] * vehicle_count)
        routing = pywrapcp.RoutingModel(manager)

        km_matrix, minutes_matrix = self._matrices(context, nodes)

        def distance_callback(from_index: int, to_index: int) -> int:
            from_node = manager.IndexToNode(from_index)
            to_node = manager.IndexToNode(to_index)
            if to_node == SINK_NODE or from_node == SINK_NODE:
                return 0
            return int(round(km_matrix[from_node][to_node] * 1000))

        transit_callback_index = routing.RegisterTransitCallback(distance_callback)
        routing.SetArcCostEvaluatorOfAllVehicles(transit_callback_index)

        time_callbacks = [
            routing.RegisterTransitCallback(self._time_callback(manager, nodes, minutes_matrix, driver_day))
            for driver_day in context.driver_days
        ]
        routing.AddDimensionWithVehicleTransitAndCapacity(
            time_callbacks,
            0,
            [int(math.floor(driver_day.capacity_minutes * 60)) for driver_day in context.driver_days],
            True,
            "Time",
        )

        for node_index, node in enumerate(nodes):
            if node.stop is not None and node.vehicle is not None:
                routing.SetAllowedVehiclesForIndex([node.vehicle], manager.NodeToIndex(node_index))
            elif node.location is not None:
                routing.AddDisjunction([manager.NodeToIndex(node_index)], self._drop_penalty(context, node.location))

        search_parameters = pywrapcp.DefaultRoutingSearchParameters()
        search_parameters.first_solution_strategy = self._first_solution
        search_parameters.local_search_metaheuristic = self._metaheuristic
        search_parameters.time_limit.FromSeconds(self.options.time_limit_seconds)
        search_parameters.solution_limit = self.options.solution_limit

        started = time.monotonic()
        assignment = routing.SolveWithParameters(search_parameters)
        elapsed = time.monotonic() - started

        if not assignment:
            logger.warning(
                f"Solver found no assignment for {day.isoformat()} "
                f"({len(feasible)} candidates, {vehicle_count} drivers); falling back to greedy insertion"
            )
            fallback = GreedyEngine().plan(context, feasible)
            fallback.unplanned = rejected + fallback.unplanned
            fallback.infeasible_fixed = [loc for loc in fallback.unplanned if loc.is_fixed_for(day)]
            fallback.metadata.update({"engine": self.name, "status": "fallback_greedy", "elapsed_seconds": elapsed})
            return fallback

        routes: list[Route] = []
        for vehicle, driver_day in enumerate(context.driver_days):
            stops: list[Stop] = []
            index = assignment.Value(routing.NextVar(routing.Start(vehicle)))
            while not routing.IsEnd(index):
                node = nodes[manager.IndexToNode(index)]
                stops.append(node.stop if node.stop is not None else make_stop(node.location, driver_day.driver))
                index = assignment.Value(routing.NextVar(index))
            routes.append(self._finalize_route(context, driver_day, stops))

        planned_ids = {location_id for route in routes for location_id in route.location_ids}
        unplanned = rejected + [location for location in feasible if location.location_id not in planned_ids]
        status = "budget_exhausted" if elapsed >= self.options.time_limit_seconds else "completed"
        return self._result(
            context,
            routes,
            unplanned,
            candidates,
            status=status,
            elapsed_seconds=elapsed,
            objective=assignment.ObjectiveValue(),
        )

    def _build_nodes(self, context: DayContext, candidates: Sequence[Location]) -> list[_Node]:
        nodes = [_Node(latitude=0.0, longitude=0.0)]
        for driver_day in context.driver_days:
            nodes.append(_Node(latitude=driver_day.driver.latitude, longitude=driver_day.driver.longitude))
        for vehicle, driver_day in enumerate(context.driver_days):
            route = context.routes.get(driver_day.driver_id)
            for stop in route.stops if route else ():
                nodes.append(_Node(latitude=stop.latitude, longitude=stop.longitude, stop=stop, vehicle=vehicle))
        for location in candidates:
            nodes.append(_Node(latitude=location.latitude, longitude=location.longitude, location=location))
        return nodes

    @staticmethod
    def _matrices(context: DayContext, nodes: Sequence[_Node]) -> tuple[list[list[float]], list[list[float]]]:
        """Leg matrices for the solver, priced at the earliest driver start of the day.

        Routes are re-timed stop by stop in :meth:`_finalize_route`, which trims any
        overflow caused by later departure hours.
        """
        size = len(nodes)
        departure = min(driver_day.start_at for driver_day in context.driver_days)
        km_matrix = [[0.0] * size for _ in range(size)]
        minutes_matrix = [[0.0] * size for _ in range(size)]
        for i in range(1, size):
            for j in range(1, size):
                if i == j:
                    continue
                leg = context.estimator.estimate(nodes[i].coordinate, nodes[j].coordinate, departure=departure)
                km_matrix[i][j] = leg.km
                minutes_matrix[i][j] = leg.minutes
        return km_matrix, minutes_matrix

    @staticmethod
    def _time_callback(manager, nodes: Sequence[_Node], minutes_matrix: list[list[float]], driver_day: DriverDay):
        service_seconds = [0] * len(nodes)
        for node_index, node in enumerate(nodes):
            if node.stop is not None:
                service_seconds[node_index] = node.stop.service_minutes * 60
            elif node.location is not None:
                service_seconds[node_index] = make_stop(node.location, driver_day.driver).service_minutes * 60

        def time_callback(from_index: int, to_index: int) -> int:
            from_node = manager.IndexToNode(from_index)
            to_node = manager.IndexToNode(to_index)
            if to_node == SINK_NODE or from_node == SINK_NODE:
                return 0
            return int(math.ceil(minutes_matrix[from_node][to_node] * 60)) + service_seconds[to_node]

        return time_callback

    @staticmethod
    def _drop_penalty(context: DayContext, location: Location) -> int:
        if location.is_fixed_for(context.day):
            return FIXED_DROP_PENALTY
        return DROP_PENALTY + int(context.cost_model.due_cost(location, context.day) * DUE_COST_PENALTY_SCALE)

    def _finalize_route(self, context: DayContext, driver_day: DriverDay, stops: list[Stop]) -> Route:
        route = context.routes.get(driver_day.driver_id) or Route(driver_id=driver_day.driver_id, day=context.day)
        route.stops = stops
        recompute_route(route, driver_day, context.estimator)
        removed = trim_to_capacity(route, driver_day)
        if removed:
            logger.warning(
                f"Trimmed {len(removed)} stops from driver {driver_day.driver_id} on "
                f"{context.day.isoformat()} to respect capacity"
            )
        context.routes[driver_day.driver_id] = route
        return route

    def _result(
        self,
        context: DayContext,
        routes: list[Route],
        unplanned: list[Location],
        candidates: Sequence[Location],
        *,
        status: str,
        **extra,
    ) -> PlanResult:
        if not routes:
            routes = [route for route in context.routes.values() if route.stops]
        infeasible_fixed = [location for location in unplanned if location.is_fixed_for(context.day)]
        for location in infeasible_fixed:
            logger.warning(
                f"Fixed location {location.location_id} could not be placed on {context.day.isoformat()}"
            )
        metadata = {"engine": self.name, "status": status, "candidates": len(candidates), **extra}
        return PlanResult(
            routes=[route for route in routes if route.stops],
            unplanned=unplanned,
            infeasible_fixed=infeasible_fixed,
            metadata=metadata,
        )

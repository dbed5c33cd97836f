"""Cheapest-insertion engine: one deterministic pass over the ranked candidates."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from ....models.domain import Location
from ..costs import insertion_sort_key
from ..routes import (
    DriverDay,
    fits_capacity,
    insert_stop,
    make_stop,
    minutes_after_insertion,
    neighbours,
)
from .base import DayContext, PlanResult, RoutingEngine

logger = logging.getLogger(__name__)


class GreedyEngine(RoutingEngine):
    name = "greedy"

    def plan(self, context: DayContext, candidates: Sequence[Location]) -> PlanResult:
        unplanned: list[Location] = []
        infeasible_fixed: list[Location] = []
        inserted = 0

        for location in candidates:
            best = self._best_insertion(context, location)
            if best is None:
                unplanned.append(location)
                if location.is_fixed_for(context.day):
                    infeasible_fixed.append(location)
                    logger.warning(
                        f"Fixed location {location.location_id} could not be placed on {context.day.isoformat()}"
                    )
                continue
            driver_day, position = best
            route = context.route_for(driver_day)
            insert_stop(route, driver_day, make_stop(location, driver_day.driver), position, context.estimator)
            inserted += 1

        routes = [context.routes[dd.driver_id] for dd in context.driver_days if dd.driver_id in context.routes]
        return PlanResult(
            routes=[route for route in routes if route.stops],
            unplanned=unplanned,
            infeasible_fixed=infeasible_fixed,
            metadata={"engine": self.name, "status": "completed", "inserted": inserted},
        )

    def _best_insertion(self, context: DayContext, location: Location) -> Optional[tuple[DriverDay, int]]:
        if not context.cost_model.is_feasible_on(location, context.day):
            return None

        best_key: Optional[tuple] = None
        best: Optional[tuple[DriverDay, int]] = None
        for driver_day in context.driver_days:
            route = context.route_for(driver_day)
            stop = make_stop(location, driver_day.driver)
            for position in range(len(route.stops) + 1):
                total = minutes_after_insertion(route, driver_day, stop, position, context.estimator)
                if not fits_capacity(total, driver_day):
                    continue
                prev, next_ = neighbours(route, driver_day, position)
                cost = context.cost_model.total_cost(location, context.day, prev, next_)
                key = insertion_sort_key(cost, location, driver_day.driver_id, position)
                if best_key is None or key < best_key:
                    best_key = key
                    best = (driver_day, position)
        return best

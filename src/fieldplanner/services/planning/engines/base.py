"""Base classes for daily routing engines."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Sequence

from ....models.domain import Location, Route
from ...travel.estimator import TravelTimeEstimator
from ..costs import CostModel
from ..routes import DriverDay


@dataclass(slots=True)
class DayContext:
    """Everything an engine needs to plan one date.

    ``routes`` are working copies of the day's unlocked routes keyed by driver id;
    engines extend them in place and never see locked routes.
    """

    day: date
    driver_days: list[DriverDay]
    routes: dict[int, Route]
    estimator: TravelTimeEstimator
    cost_model: CostModel

    def route_for(self, driver_day: DriverDay) -> Route:
        route = self.routes.get(driver_day.driver_id)
        if route is None:
            route = Route(driver_id=driver_day.driver_id, day=self.day)
            self.routes[driver_day.driver_id] = route
        return route


@dataclass(slots=True)
class PlanResult:
    routes: list[Route]
    unplanned: list[Location] = field(default_factory=list)
    infeasible_fixed: list[Location] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)

    @property
    def planned_location_ids(self) -> set[int]:
        return {location_id for route in self.routes for location_id in route.location_ids}


class RoutingEngine(ABC):
    """Contract for engines that extend a day's routes with ranked candidates."""

    name: str = "engine"

    @abstractmethod
    def plan(self, context: DayContext, candidates: Sequence[Location]) -> PlanResult:
        raise NotImplementedError

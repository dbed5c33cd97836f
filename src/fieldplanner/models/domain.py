"""Domain models for locations, drivers, days and routes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Iterable, Optional

from ..errors import LockedDayError


@dataclass(slots=True)
class Location:
    """A pole that needs a service visit."""

    location_id: int
    serial: str
    latitude: float
    longitude: float
    due_date: date
    fixed_date: Optional[date] = None
    service_minutes: Optional[int] = None
    planned: bool = False

    def is_fixed_for(self, day: date) -> bool:
        return self.fixed_date is not None and self.fixed_date == day


@dataclass(slots=True, frozen=True)
class AvailabilityWindow:
    day: date
    start: time
    end: time

    @property
    def span_minutes(self) -> int:
        start = datetime.combine(self.day, self.start)
        end = datetime.combine(self.day, self.end)
        return max(0, int((end - start).total_seconds() // 60))


@dataclass(slots=True)
class Driver:
    """A field technician with a home base and a daily working allowance."""

    driver_id: int
    name: str
    latitude: float
    longitude: float
    default_service_minutes: int = 30
    max_work_minutes_per_day: int = 480
    availability: tuple[AvailabilityWindow, ...] = ()

    def window_for(self, day: date) -> Optional[AvailabilityWindow]:
        for window in self.availability:
            if window.day == day:
                return window
        return None


@dataclass(slots=True)
class PlanDay:
    day: date
    locked: bool = False
    extra_work_minutes: int = 0


@dataclass(slots=True)
class Stop:
    sequence: int
    location_id: int
    latitude: float
    longitude: float
    service_minutes: int
    travel_minutes_from_prev: float = 0.0
    travel_km_from_prev: float = 0.0
    planned_start: Optional[datetime] = None
    planned_end: Optional[datetime] = None


@dataclass(slots=True)
class Route:
    """Ordered stops of one driver on one day."""

    driver_id: int
    day: date
    stops: list[Stop] = field(default_factory=list)
    locked: bool = False

    @property
    def total_minutes(self) -> float:
        return sum(stop.service_minutes + stop.travel_minutes_from_prev for stop in self.stops)

    @property
    def total_km(self) -> float:
        return sum(stop.travel_km_from_prev for stop in self.stops)

    @property
    def location_ids(self) -> list[int]:
        return [stop.location_id for stop in self.stops]


@dataclass(slots=True)
class PlanningState:
    """In-memory snapshot of the records a planning pass reads and mutates.

    Callers load it from their store, hand it to the orchestrator and persist the
    routes afterwards. Dates without a ``PlanDay`` are unlocked with no extra minutes.
    """

    locations: dict[int, Location]
    drivers: list[Driver]
    days: dict[date, PlanDay] = field(default_factory=dict)
    routes: list[Route] = field(default_factory=list)
    owner_id: str = "default"

    @classmethod
    def build(
        cls,
        *,
        locations: Iterable[Location],
        drivers: Iterable[Driver],
        days: Iterable[PlanDay] = (),
        routes: Iterable[Route] = (),
        owner_id: str = "default",
    ) -> "PlanningState":
        state = cls(
            locations={location.location_id: location for location in locations},
            drivers=sorted(drivers, key=lambda driver: driver.driver_id),
            days={plan_day.day: plan_day for plan_day in days},
            routes=list(routes),
            owner_id=owner_id,
        )
        for route in state.routes:
            for location_id in route.location_ids:
                if location_id in state.locations:
                    state.locations[location_id].planned = True
        return state

    def plan_day(self, day: date) -> PlanDay:
        return self.days.get(day) or PlanDay(day=day)

    def routes_for(self, day: date) -> list[Route]:
        return [route for route in self.routes if route.day == day]

    def backlog(self) -> list[Location]:
        return [location for location in self.locations.values() if not location.planned]

    def replace_routes(self, day: date, routes: Iterable[Route]) -> None:
        """Swap the unlocked routes of ``day`` for ``routes`` and mark their locations planned."""
        if self.plan_day(day).locked:
            raise LockedDayError(day)
        new_routes = [route for route in routes if route.stops]
        for route in new_routes:
            if route.day != day:
                raise ValueError(f"Route for driver {route.driver_id} is dated {route.day}, expected {day}.")

        kept = [route for route in self.routes if route.day != day or route.locked]
        released = {
            location_id
            for route in self.routes
            if route.day == day and not route.locked
            for location_id in route.location_ids
        }
        elsewhere = {location_id for route in kept if not route.locked for location_id in route.location_ids}
        incoming: set[int] = set()
        for route in new_routes:
            for location_id in route.location_ids:
                if location_id in elsewhere or location_id in incoming:
                    raise ValueError(f"Location {location_id} is already assigned to another route.")
                incoming.add(location_id)

        for location_id in released - incoming:
            if location_id in self.locations:
                self.locations[location_id].planned = False
        for location_id in incoming:
            if location_id in self.locations:
                self.locations[location_id].planned = True
        self.routes = kept + new_routes

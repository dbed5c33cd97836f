"""Route arithmetic: driver capacity per day, insertion checks and stop timing."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Literal, Optional

from ...models.domain import Driver, Location, PlanDay, Route, Stop
from ..travel.estimator import Coordinate, TravelTimeEstimator

CAPACITY_EPSILON = 1e-6


@dataclass(slots=True, frozen=True)
class DriverDay:
    """A driver as seen by the engines on one date."""

    driver: Driver
    day: date
    start_at: datetime
    capacity_minutes: float

    @property
    def driver_id(self) -> int:
        return self.driver.driver_id

    @property
    def home(self) -> Coordinate:
        return (self.driver.latitude, self.driver.longitude)


def resolve_driver_days(
    drivers: Iterable[Driver],
    plan_day: PlanDay,
    *,
    policy: Literal["available", "unavailable"],
    default_start: time,
) -> list[DriverDay]:
    """Return the drivers who can work on ``plan_day`` with their capacity, ordered by id."""
    resolved: list[DriverDay] = []
    for driver in sorted(drivers, key=lambda item: item.driver_id):
        allowance = driver.max_work_minutes_per_day + plan_day.extra_work_minutes
        window = driver.window_for(plan_day.day)
        if window is not None:
            capacity = min(window.span_minutes, allowance)
            start_at = datetime.combine(plan_day.day, window.start)
        elif policy == "available":
            capacity = allowance
            start_at = datetime.combine(plan_day.day, default_start)
        else:
            continue
        if capacity <= 0:
            continue
        resolved.append(DriverDay(driver=driver, day=plan_day.day, start_at=start_at, capacity_minutes=float(capacity)))
    return resolved


def service_minutes_for(location: Location, driver: Driver) -> int:
    if location.service_minutes is not None:
        return location.service_minutes
    return driver.default_service_minutes


def make_stop(location: Location, driver: Driver) -> Stop:
    return Stop(
        sequence=0,
        location_id=location.location_id,
        latitude=location.latitude,
        longitude=location.longitude,
        service_minutes=service_minutes_for(location, driver),
    )


def stop_coordinate(stop: Stop) -> Coordinate:
    return (stop.latitude, stop.longitude)


def neighbours(route: Route, driver_day: DriverDay, position: int) -> tuple[Coordinate, Optional[Coordinate]]:
    """Coordinates before and after an insertion at ``position`` (home before the first stop)."""
    prev = driver_day.home if position == 0 else stop_coordinate(route.stops[position - 1])
    next_ = stop_coordinate(route.stops[position]) if position < len(route.stops) else None
    return prev, next_


def route_tail(route: Optional[Route], driver_day: DriverDay) -> Coordinate:
    if route is None or not route.stops:
        return driver_day.home
    return stop_coordinate(route.stops[-1])


def _clock_before(route: Route, driver_day: DriverDay, position: int) -> datetime:
    if position == 0:
        return driver_day.start_at
    return route.stops[position - 1].planned_end or driver_day.start_at


def minutes_after_insertion(
    route: Route,
    driver_day: DriverDay,
    stop: Stop,
    position: int,
    estimator: TravelTimeEstimator,
) -> float:
    """Total route minutes if ``stop`` were inserted at ``position``; the route is not touched.

    Stops after the insertion point start later, so their legs are re-estimated
    with the shifted departure times, exactly as :func:`recompute_route` would.
    """
    total = sum(item.service_minutes + item.travel_minutes_from_prev for item in route.stops[:position])
    clock = _clock_before(route, driver_day, position)
    prev, _ = neighbours(route, driver_day, position)
    for item in [stop, *route.stops[position:]]:
        point = stop_coordinate(item)
        leg = estimator.estimate(prev, point, departure=clock)
        total += leg.minutes + item.service_minutes
        clock += timedelta(minutes=leg.minutes)
        clock += timedelta(minutes=item.service_minutes)
        prev = point
    return total


def fits_capacity(total_minutes: float, driver_day: DriverDay) -> bool:
    return total_minutes <= driver_day.capacity_minutes + CAPACITY_EPSILON


def recompute_route(route: Route, driver_day: DriverDay, estimator: TravelTimeEstimator, start: int = 0) -> None:
    """Renumber stops and refresh travel legs and timestamps from index ``start`` on."""
    start = max(0, min(start, len(route.stops)))
    clock = _clock_before(route, driver_day, start)
    prev, _ = neighbours(route, driver_day, start)

    for index in range(start, len(route.stops)):
        stop = route.stops[index]
        leg = estimator.estimate(prev, stop_coordinate(stop), departure=clock)
        stop.sequence = index + 1
        stop.travel_minutes_from_prev = leg.minutes
        stop.travel_km_from_prev = leg.km
        stop.planned_start = clock + timedelta(minutes=leg.minutes)
        stop.planned_end = stop.planned_start + timedelta(minutes=stop.service_minutes)
        clock = stop.planned_end
        prev = stop_coordinate(stop)


def insert_stop(
    route: Route,
    driver_day: DriverDay,
    stop: Stop,
    position: int,
    estimator: TravelTimeEstimator,
) -> None:
    route.stops.insert(position, stop)
    recompute_route(route, driver_day, estimator, start=position)


def trim_to_capacity(route: Route, driver_day: DriverDay) -> list[Stop]:
    """Drop stops from the end until the route fits; returns the removed stops."""
    removed: list[Stop] = []
    while route.stops and not fits_capacity(route.total_minutes, driver_day):
        removed.append(route.stops.pop())
    return removed

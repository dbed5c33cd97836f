"""Pick and rank the backlog locations worth offering to the engines on one date."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable, Sequence

from ...config import settings
from ...models.domain import Location, Route
from ..travel.estimator import TravelTimeEstimator
from .routes import DriverDay, route_tail


def is_eligible(location: Location, day: date, horizon_slack_days: int) -> bool:
    if location.planned:
        return False
    if location.fixed_date is not None:
        return location.fixed_date == day
    return location.due_date <= day + timedelta(days=horizon_slack_days)


def select_candidates(
    backlog: Iterable[Location],
    day: date,
    cap: int | None = None,
    *,
    driver_days: Sequence[DriverDay],
    routes: Sequence[Route] = (),
    estimator: TravelTimeEstimator,
    horizon_slack_days: int | None = None,
) -> list[Location]:
    """Return at most ``cap`` eligible locations, best first.

    Fixed-for-day locations lead, then earlier due dates, then proximity to the
    closest driver tail. Locations cut by the cap simply stay in the backlog.
    """
    cap = settings.max_daily_candidates if cap is None else cap
    slack = settings.horizon_slack_days if horizon_slack_days is None else horizon_slack_days
    if cap <= 0:
        return []

    routes_by_driver = {route.driver_id: route for route in routes}
    tails = [route_tail(routes_by_driver.get(dd.driver_id), dd) for dd in driver_days]

    def nearest_tail_km(location: Location) -> float:
        if not tails:
            return 0.0
        point = (location.latitude, location.longitude)
        return min(estimator.distance_km(tail, point) for tail in tails)

    eligible = [location for location in backlog if is_eligible(location, day, slack)]
    eligible.sort(
        key=lambda location: (
            not location.is_fixed_for(day),
            location.due_date,
            nearest_tail_km(location),
            location.location_id,
        )
    )
    return eligible[:cap]

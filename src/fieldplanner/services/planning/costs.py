"""Normalized insertion costs.

Detour distance and due-date lateness are both expressed in km-equivalents so they
can be summed: each dimension is scaled linearly against a reference value and then
clamped to its cap.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional

from ...config import settings
from ...models.domain import Location
from ..travel.estimator import Coordinate, TravelTimeEstimator

MINUTES_PER_DAY = 24 * 60


@dataclass(slots=True, frozen=True)
class CostWeights:
    due_cost_cap_km: float = settings.due_cost_cap_km
    detour_cost_cap_km: float = settings.detour_cost_cap_km
    detour_ref_km: float = settings.detour_ref_km
    late_ref_minutes: int = settings.late_ref_minutes


def _clamp(value: float, upper: float) -> float:
    return min(max(value, 0.0), upper)


class CostModel:
    def __init__(self, estimator: TravelTimeEstimator, weights: CostWeights | None = None) -> None:
        self.estimator = estimator
        self.weights = weights or CostWeights()

    @staticmethod
    def is_feasible_on(location: Location, day: date) -> bool:
        """A fixed date is a hard pin: any other day is not an option at all."""
        return location.fixed_date is None or location.fixed_date == day

    def due_cost(self, location: Location, day: date) -> float:
        if day <= location.due_date:
            return 0.0
        late_minutes = (day - location.due_date).days * MINUTES_PER_DAY
        cost = late_minutes / self.weights.late_ref_minutes * self.weights.due_cost_cap_km
        return _clamp(cost, self.weights.due_cost_cap_km)

    def raw_detour_km(self, prev: Coordinate, new: Coordinate, next_: Optional[Coordinate]) -> float:
        added = self.estimator.distance_km(prev, new)
        if next_ is None:
            return added
        return added + self.estimator.distance_km(new, next_) - self.estimator.distance_km(prev, next_)

    def detour_cost(self, prev: Coordinate, new: Coordinate, next_: Optional[Coordinate]) -> float:
        raw = self.raw_detour_km(prev, new, next_)
        scaled = raw / self.weights.detour_ref_km * self.weights.detour_cost_cap_km
        return _clamp(scaled, self.weights.detour_cost_cap_km)

    def total_cost(
        self, location: Location, day: date, prev: Coordinate, next_: Optional[Coordinate]
    ) -> float:
        new = (location.latitude, location.longitude)
        return self.detour_cost(prev, new, next_) + self.due_cost(location, day)


def insertion_sort_key(cost: float, location: Location, driver_id: int, position: int) -> tuple:
    """Lower is better; ties go to the earlier due date, then the smaller driver id."""
    return (round(cost, 9), location.due_date, driver_id, position)

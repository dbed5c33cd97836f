"""Request-level errors raised by the planning core.

Per-location outcomes (a fixed stop that does not fit, an insertion that would
exceed a driver's day, a model fallback) are reported in results and quality
signals instead of being raised.
"""

from __future__ import annotations

from datetime import date


class PlanningError(Exception):
    """Base class for errors that abort a planning request."""


class LockedDayError(PlanningError):
    def __init__(self, day: date) -> None:
        super().__init__(f"Day {day.isoformat()} is locked and cannot be re-planned.")
        self.day = day


class PlanningLockTimeoutError(PlanningError):
    def __init__(self, owner_id: str, first_day: date, last_day: date, timeout: float) -> None:
        super().__init__(
            f"Could not acquire planning ownership for owner '{owner_id}' "
            f"({first_day.isoformat()}..{last_day.isoformat()}) within {timeout:.1f}s."
        )
        self.owner_id = owner_id
        self.first_day = first_day
        self.last_day = last_day

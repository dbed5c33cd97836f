"""Per-owner ownership of planning dates.

A planning pass claims every ``(owner_id, date)`` key of its range at once so two
overlapping passes for the same owner never interleave. Non-overlapping ranges
and other owners proceed in parallel.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from datetime import date, timedelta
from typing import Iterator

from ...config import settings
from ...errors import PlanningLockTimeoutError

logger = logging.getLogger(__name__)


class PlanningLockRegistry:
    def __init__(self) -> None:
        self._held: set[tuple[str, date]] = set()
        self._condition = threading.Condition()

    @staticmethod
    def _keys(owner_id: str, first_day: date, last_day: date) -> set[tuple[str, date]]:
        span = (last_day - first_day).days
        return {(owner_id, first_day + timedelta(days=offset)) for offset in range(span + 1)}

    def is_held(self, owner_id: str, day: date) -> bool:
        with self._condition:
            return (owner_id, day) in self._held

    @contextmanager
    def hold(self, owner_id: str, first_day: date, last_day: date, timeout: float | None = None) -> Iterator[None]:
        if last_day < first_day:
            raise ValueError("last_day must not be before first_day.")
        timeout = settings.planning_lock_timeout_seconds if timeout is None else timeout
        keys = self._keys(owner_id, first_day, last_day)
        deadline = time.monotonic() + timeout

        with self._condition:
            while self._held & keys:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning(
                        f"Planning lock timeout for owner {owner_id} "
                        f"{first_day.isoformat()}..{last_day.isoformat()}"
                    )
                    raise PlanningLockTimeoutError(owner_id, first_day, last_day, timeout)
                self._condition.wait(remaining)
            self._held |= keys

        try:
            yield
        finally:
            with self._condition:
                self._held -= keys
                self._condition.notify_all()


planning_locks = PlanningLockRegistry()

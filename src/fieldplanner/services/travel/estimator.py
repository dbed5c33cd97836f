"""Travel duration and distance estimates between two coordinates."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Literal, Optional

from ..geospatial import haversine_km
from .model import (
    LearnedTravelStat,
    RouteClass,
    StatStatus,
    TravelModelSettings,
    TravelModelSnapshot,
    minute_of_day,
)
from .osrm_client import RoadDistanceMatrix

logger = logging.getLogger(__name__)

Coordinate = tuple[float, float]


@dataclass(slots=True, frozen=True)
class TravelEstimate:
    minutes: float
    km: float


@dataclass(slots=True, frozen=True)
class QualitySignal:
    """Non-fatal observation about the travel model, surfaced for monitoring only."""

    kind: Literal["fallback", "high_deviation"]
    route_class: str
    message: str
    learned_minutes_per_km: Optional[float] = None
    baseline_minutes_per_km: Optional[float] = None


@dataclass(slots=True)
class _SignalLog:
    signals: list[QualitySignal] = field(default_factory=list)
    seen: set[tuple[str, str]] = field(default_factory=set)

    def emit(self, signal: QualitySignal) -> None:
        key = (signal.kind, signal.route_class)
        if key in self.seen:
            return
        self.seen.add(key)
        self.signals.append(signal)
        logger.warning(f"Travel model quality signal [{signal.kind}] {signal.route_class}: {signal.message}")


class TravelTimeEstimator:
    """Blend learned minutes-per-km ratios with a baseline speed.

    The estimator never reads the live model: it is built from a snapshot so all
    estimates of one planning pass agree with each other.
    """

    def __init__(
        self,
        snapshot: TravelModelSnapshot,
        model_settings: TravelModelSettings | None = None,
        *,
        road_distances: RoadDistanceMatrix | None = None,
        day: date | None = None,
        _log: _SignalLog | None = None,
    ) -> None:
        self.snapshot = snapshot
        self.settings = model_settings or TravelModelSettings()
        self.road_distances = road_distances
        self.day = day
        self._log = _log or _SignalLog()
        self._ratios: dict[RouteClass, float] = {}

    @property
    def signals(self) -> list[QualitySignal]:
        return list(self._log.signals)

    def for_day(self, day: date) -> "TravelTimeEstimator":
        """Same snapshot and signal log, with route classes resolved for ``day``."""
        return TravelTimeEstimator(
            self.snapshot,
            self.settings,
            road_distances=self.road_distances,
            day=day,
            _log=self._log,
        )

    def distance_km(self, origin: Coordinate, destination: Coordinate) -> float:
        if origin == destination:
            return 0.0
        if self.road_distances is not None:
            road_km = self.road_distances.lookup(origin, destination)
            if road_km is not None:
                return road_km
        return haversine_km(origin[0], origin[1], destination[0], destination[1])

    def estimate(
        self, origin: Coordinate, destination: Coordinate, departure: datetime | None = None
    ) -> TravelEstimate:
        """Travel from ``origin`` to ``destination``; ``departure`` selects the hourly bucket."""
        km = self.distance_km(origin, destination)
        if km <= 0:
            return TravelEstimate(minutes=0.0, km=0.0)
        day = self.day or (departure.date() if departure is not None else None)
        route_class = RouteClass.for_trip(
            km,
            day,
            minute_of_day(departure) if departure is not None else None,
            self.snapshot.region_for(origin, destination),
        )
        return TravelEstimate(minutes=km * self.minutes_per_km(route_class), km=km)

    def minutes_per_km(self, route_class: RouteClass) -> float:
        ratio = self._ratios.get(route_class)
        if ratio is None:
            ratio = self._resolve_ratio(route_class)
            self._ratios[route_class] = ratio
        return ratio

    def _resolve_ratio(self, route_class: RouteClass) -> float:
        keys = [route_class]
        if route_class.bucket_start_hour is not None:
            keys.append(route_class.all_hours())

        for key in keys:
            stat = self.snapshot.stat_for(key)
            if stat is None:
                continue
            self._check_deviation(key, stat)
            failed_guard = self._failed_guard(stat)
            if failed_guard is None:
                return stat.avg_minutes_per_km
            self._log.emit(
                QualitySignal(
                    kind="fallback",
                    route_class=key.label,
                    message=f"learned ratio not used: {failed_guard}",
                    learned_minutes_per_km=stat.avg_minutes_per_km,
                    baseline_minutes_per_km=self.settings.baseline_minutes_per_km,
                )
            )

        if route_class.bucket_start_hour is not None:
            profile = self.snapshot.profile_for(
                route_class.region_id, route_class.day_type, route_class.bucket_start_hour
            )
            if profile is not None:
                return profile.avg_minutes_per_km
        return self.settings.baseline_minutes_per_km

    def _check_deviation(self, route_class: RouteClass, stat: LearnedTravelStat) -> None:
        baseline = self.settings.baseline_minutes_per_km
        if baseline <= 0 or self.settings.deviation_vs_baseline_warn_percent <= 0:
            return
        learned = stat.avg_minutes_per_km
        deviation = abs(learned - baseline) / baseline * 100.0
        if deviation >= self.settings.deviation_vs_baseline_warn_percent:
            self._log.emit(
                QualitySignal(
                    kind="high_deviation",
                    route_class=route_class.label,
                    message=f"learned ratio deviates {deviation:.0f}% from baseline",
                    learned_minutes_per_km=learned,
                    baseline_minutes_per_km=baseline,
                )
            )

    def _failed_guard(self, stat: LearnedTravelStat) -> Optional[str]:
        gate = self.settings
        if stat.sample_count < gate.learned_sample_threshold:
            return f"{stat.sample_count} samples below threshold {gate.learned_sample_threshold}"
        if gate.use_learned_only_if_approved and stat.status != StatStatus.APPROVED:
            return f"statistics are {stat.status.value}, approval required"
        if gate.stale_after_days > 0:
            cutoff = self.snapshot.taken_at - timedelta(days=gate.stale_after_days)
            if stat.last_sample_at is None or stat.last_sample_at < cutoff:
                return f"no sample within the last {gate.stale_after_days} days"
        if not gate.plausible_minutes_per_km_min <= stat.avg_minutes_per_km <= gate.plausible_minutes_per_km_max:
            return (
                f"ratio {stat.avg_minutes_per_km:.2f} outside "
                f"[{gate.plausible_minutes_per_km_min}, {gate.plausible_minutes_per_km_max}]"
            )
        return None

"""Learned travel-time statistics and the process-wide model holder.

The learned model is a minutes-per-km ratio per route class. A route class is the
region the trip runs through, the day type, the departure-hour bucket and the
distance band of the trip. Observed trips are folded in by an external trainer
through :meth:`TravelTimeModel.record_sample`; planning passes read an immutable
:class:`TravelModelSnapshot` so that every route cost in one pass is computed
against the same model.

Regions are optional bounding boxes. A trip belongs to the highest-priority region
containing its midpoint, otherwise to the catch-all region ``DEFAULT_REGION_ID``.
Each region may carry hourly speed profiles that stand in when no learned ratio
qualifies.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from ...config import settings

DISTANCE_BANDS_KM: tuple[float, ...] = (0, 5, 15, 30, 60, 120, 10000)
DEFAULT_REGION_ID = 99

logger = logging.getLogger(__name__)

Coordinate = tuple[float, float]


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps are taken to be UTC; aware ones are converted."""
    if value is None:
        return None
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def hour_bucket(departure_minute: int) -> int:
    return min(max(departure_minute // 60, 0), 23)


def minute_of_day(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


class DayType(str, Enum):
    WEEKDAY = "weekday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def for_date(cls, day: date) -> "DayType":
        weekday = day.weekday()
        if weekday == 5:
            return cls.SATURDAY
        if weekday == 6:
            return cls.SUNDAY
        return cls.WEEKDAY


class StatStatus(str, Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(slots=True, frozen=True)
class RouteClass:
    """Key of a learned ratio. ``bucket_start_hour=None`` covers the whole day."""

    day_type: DayType
    band_min_km: float
    band_max_km: float
    bucket_start_hour: Optional[int] = None
    region_id: int = DEFAULT_REGION_ID

    @classmethod
    def for_trip(
        cls,
        distance_km: float,
        day: date | None = None,
        departure_minute: int | None = None,
        region_id: int = DEFAULT_REGION_ID,
    ) -> "RouteClass":
        day_type = DayType.for_date(day) if day else DayType.WEEKDAY
        bucket = hour_bucket(departure_minute) if departure_minute is not None else None
        distance = max(0.0, distance_km)
        for lower, upper in zip(DISTANCE_BANDS_KM, DISTANCE_BANDS_KM[1:]):
            if lower <= distance < upper:
                return cls(day_type, float(lower), float(upper), bucket, region_id)
        return cls(day_type, float(DISTANCE_BANDS_KM[-2]), float(DISTANCE_BANDS_KM[-1]), bucket, region_id)

    def all_hours(self) -> "RouteClass":
        return replace(self, bucket_start_hour=None)

    @property
    def label(self) -> str:
        text = f"{self.day_type.value}:{self.band_min_km:g}-{self.band_max_km:g}km"
        if self.bucket_start_hour is not None:
            text += f"@{self.bucket_start_hour:02d}h"
        if self.region_id != DEFAULT_REGION_ID:
            text += f"/region-{self.region_id}"
        return text


@dataclass(slots=True, frozen=True)
class TravelRegion:
    region_id: int
    name: str
    min_lat: float
    min_lon: float
    max_lat: float
    max_lon: float
    priority: int = 0

    def contains(self, latitude: float, longitude: float) -> bool:
        return self.min_lat <= latitude <= self.max_lat and self.min_lon <= longitude <= self.max_lon


@dataclass(slots=True, frozen=True)
class RegionSpeedProfile:
    """Typical minutes-per-km of a region for one day type and departure hour."""

    region_id: int
    day_type: DayType
    bucket_start_hour: int
    avg_minutes_per_km: float


@dataclass(slots=True, frozen=True)
class LearnedTravelStat:
    route_class: RouteClass
    sample_count: int
    avg_minutes_per_km: float
    last_sample_at: Optional[datetime] = None
    status: StatStatus = StatStatus.DRAFT
    min_minutes_per_km: Optional[float] = None
    max_minutes_per_km: Optional[float] = None
    suspicious_sample_count: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "last_sample_at", as_utc(self.last_sample_at))


@dataclass(slots=True, frozen=True)
class TravelModelSettings:
    """Quality gate for learned ratios."""

    baseline_minutes_per_km: float = settings.baseline_minutes_per_km
    use_learned_only_if_approved: bool = settings.use_learned_only_if_approved
    learned_sample_threshold: int = settings.learned_sample_threshold
    stale_after_days: int = settings.stale_after_days
    plausible_minutes_per_km_min: float = settings.plausible_minutes_per_km_min
    plausible_minutes_per_km_max: float = settings.plausible_minutes_per_km_max
    deviation_vs_baseline_warn_percent: float = settings.deviation_vs_baseline_warn_percent


def resolve_region(regions: Iterable[TravelRegion], origin: Coordinate, destination: Coordinate) -> int:
    """Region id of the trip midpoint; ``regions`` must be ordered by descending priority."""
    mid_lat = (origin[0] + destination[0]) / 2.0
    mid_lon = (origin[1] + destination[1]) / 2.0
    for region in regions:
        if region.contains(mid_lat, mid_lon):
            return region.region_id
    return DEFAULT_REGION_ID


def _by_priority(regions: Iterable[TravelRegion]) -> tuple[TravelRegion, ...]:
    return tuple(sorted(regions, key=lambda region: (-region.priority, region.region_id)))


@dataclass(slots=True, frozen=True)
class TravelModelSnapshot:
    stats: Mapping[RouteClass, LearnedTravelStat]
    taken_at: datetime
    version: int = 0
    regions: tuple[TravelRegion, ...] = ()
    profiles: Mapping[tuple[int, DayType, int], RegionSpeedProfile] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "taken_at", as_utc(self.taken_at))

    def stat_for(self, route_class: RouteClass) -> Optional[LearnedTravelStat]:
        return self.stats.get(route_class)

    def region_for(self, origin: Coordinate, destination: Coordinate) -> int:
        if not self.regions:
            return DEFAULT_REGION_ID
        return resolve_region(self.regions, origin, destination)

    def profile_for(self, region_id: int, day_type: DayType, bucket_start_hour: int) -> Optional[RegionSpeedProfile]:
        """Speed profile of the region, falling back to the catch-all region."""
        profile = self.profiles.get((region_id, day_type, bucket_start_hour))
        if profile is None and region_id != DEFAULT_REGION_ID:
            profile = self.profiles.get((DEFAULT_REGION_ID, day_type, bucket_start_hour))
        return profile


def is_suspicious_sample(travel_minutes: float, minutes_per_km: float, route_class: RouteClass) -> bool:
    if route_class.band_min_km == 0 and route_class.band_max_km == 5 and travel_minutes > 90:
        return True
    if route_class.band_min_km == 30 and route_class.band_max_km == 60 and travel_minutes < 10:
        return True
    return minutes_per_km < 0.3 or minutes_per_km > 6.0


class TravelTimeModel:
    """Process-wide learned model; every mutation swaps the state under a lock."""

    def __init__(
        self,
        stats: Iterable[LearnedTravelStat] = (),
        regions: Iterable[TravelRegion] = (),
        profiles: Iterable[RegionSpeedProfile] = (),
    ) -> None:
        self._stats: dict[RouteClass, LearnedTravelStat] = {stat.route_class: stat for stat in stats}
        self._regions = _by_priority(regions)
        self._profiles = {(p.region_id, p.day_type, p.bucket_start_hour): p for p in profiles}
        self._version = 0
        self._lock = threading.Lock()

    def snapshot(self, now: datetime | None = None) -> TravelModelSnapshot:
        with self._lock:
            frozen = MappingProxyType(dict(self._stats))
            profiles = MappingProxyType(dict(self._profiles))
            regions = self._regions
            version = self._version
        return TravelModelSnapshot(
            stats=frozen,
            taken_at=now or datetime.now(timezone.utc),
            version=version,
            regions=regions,
            profiles=profiles,
        )

    def replace_stats(self, stats: Iterable[LearnedTravelStat]) -> None:
        fresh = {stat.route_class: stat for stat in stats}
        with self._lock:
            self._stats = fresh
            self._version += 1

    def replace_regions(self, regions: Iterable[TravelRegion], profiles: Iterable[RegionSpeedProfile] = ()) -> None:
        ordered = _by_priority(regions)
        fresh = {(p.region_id, p.day_type, p.bucket_start_hour): p for p in profiles}
        with self._lock:
            self._regions = ordered
            self._profiles = fresh
            self._version += 1

    def set_status(self, route_class: RouteClass, status: StatStatus) -> LearnedTravelStat:
        with self._lock:
            stat = self._stats.get(route_class)
            if stat is None:
                raise KeyError(f"No learned statistics for route class {route_class.label}.")
            updated = replace(stat, status=status)
            stats = dict(self._stats)
            stats[route_class] = updated
            self._stats = stats
            self._version += 1
        return updated

    def record_sample(
        self,
        *,
        distance_km: float,
        travel_minutes: float,
        day: date | None = None,
        observed_at: datetime | None = None,
        departure_minute: int | None = None,
        origin: Coordinate | None = None,
        destination: Coordinate | None = None,
    ) -> LearnedTravelStat:
        """Fold one observed trip into the running average of its route class."""
        if distance_km <= 0:
            raise ValueError("distance_km must be positive for a travel sample.")
        observed_at = as_utc(observed_at) or datetime.now(timezone.utc)
        minutes_per_km = travel_minutes / distance_km

        with self._lock:
            region_id = DEFAULT_REGION_ID
            if origin is not None and destination is not None:
                region_id = resolve_region(self._regions, origin, destination)
            route_class = RouteClass.for_trip(distance_km, day, departure_minute, region_id)
            suspicious = is_suspicious_sample(travel_minutes, minutes_per_km, route_class)
            current = self._stats.get(route_class)
            if current is None:
                updated = LearnedTravelStat(
                    route_class=route_class,
                    sample_count=1,
                    avg_minutes_per_km=minutes_per_km,
                    last_sample_at=observed_at,
                    min_minutes_per_km=minutes_per_km,
                    max_minutes_per_km=minutes_per_km,
                    suspicious_sample_count=1 if suspicious else 0,
                )
            else:
                count = current.sample_count + 1
                low = current.min_minutes_per_km
                high = current.max_minutes_per_km
                updated = replace(
                    current,
                    sample_count=count,
                    avg_minutes_per_km=(current.avg_minutes_per_km * current.sample_count + minutes_per_km) / count,
                    last_sample_at=observed_at,
                    min_minutes_per_km=minutes_per_km if low is None else min(low, minutes_per_km),
                    max_minutes_per_km=minutes_per_km if high is None else max(high, minutes_per_km),
                    suspicious_sample_count=current.suspicious_sample_count + (1 if suspicious else 0),
                )
            stats = dict(self._stats)
            stats[route_class] = updated
            self._stats = stats
            self._version += 1

        if suspicious:
            logger.warning(
                f"Suspicious travel sample for {route_class.label}: "
                f"{travel_minutes:.1f} min over {distance_km:.2f} km"
            )
        return updated


travel_time_model = TravelTimeModel()

"""Travel-time estimation services."""

from .estimator import QualitySignal, TravelEstimate, TravelTimeEstimator
from .model import (
    DayType,
    DEFAULT_REGION_ID,
    LearnedTravelStat,
    RegionSpeedProfile,
    RouteClass,
    StatStatus,
    TravelModelSettings,
    TravelModelSnapshot,
    TravelRegion,
    TravelTimeModel,
    travel_time_model,
)

__all__ = [
    "QualitySignal",
    "TravelEstimate",
    "TravelTimeEstimator",
    "DayType",
    "DEFAULT_REGION_ID",
    "LearnedTravelStat",
    "RegionSpeedProfile",
    "RouteClass",
    "StatStatus",
    "TravelModelSettings",
    "TravelModelSnapshot",
    "TravelRegion",
    "TravelTimeModel",
    "travel_time_model",
]

"""Planning request/summary schemas."""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class PlanHorizonRequest(BaseModel):
    from_date: date
    days: int = Field(..., ge=1, description="Number of consecutive dates to plan, starting at from_date.")
    persist: bool = False
    run_label: Optional[str] = Field(default=None, description="Friendly name for persisted outputs.")


class RouteStopModel(BaseModel):
    sequence: int
    location_id: int
    planned_start: Optional[datetime] = None
    planned_end: Optional[datetime] = None
    travel_minutes_from_prev: float
    travel_km_from_prev: float
    service_minutes: int


class RoutePlanModel(BaseModel):
    driver_id: int
    day: date
    locked: bool = False
    total_minutes: float
    total_km: float
    stops: List[RouteStopModel]


class DayOutcomeModel(BaseModel):
    day: date
    state: str
    candidate_count: int = 0
    planned_location_ids: List[int] = Field(default_factory=list)
    unplanned_location_ids: List[int] = Field(default_factory=list)
    infeasible_fixed_ids: List[int] = Field(default_factory=list)
    metadata: dict = Field(default_factory=dict)


class QualitySignalModel(BaseModel):
    kind: str
    route_class: str
    message: str
    learned_minutes_per_km: Optional[float] = None
    baseline_minutes_per_km: Optional[float] = None


class HorizonSummary(BaseModel):
    from_date: date
    days: int
    generated_days: int
    skipped_locked_days: int
    planned_locations_count: int
    unplanned_locations_count: int
    outcomes: List[DayOutcomeModel] = Field(default_factory=list)
    signals: List[QualitySignalModel] = Field(default_factory=list)
    routes: List[RoutePlanModel] = Field(default_factory=list)

"""Application configuration and settings management."""

from datetime import time
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="FIELDPLAN_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Field Service Route Planner"
    data_root: Path = Field(default=Path("data"), description="Root directory for plan run outputs.")

    # Engine selection and OR-Tools search parameters
    planning_engine: Literal["greedy", "constructive"] = Field(
        default="greedy",
        description="Routing engine used for every day of a planning pass.",
    )
    solver_first_solution_strategy: str = Field(default="PATH_CHEAPEST_ARC")
    solver_local_search_metaheuristic: str = Field(default="GUIDED_LOCAL_SEARCH")
    solver_time_limit_seconds: int = Field(default=2, ge=1)
    solver_solution_limit: int = Field(default=100, ge=1)
    max_daily_candidates: int = Field(default=300, ge=1)
    horizon_slack_days: int = Field(
        default=14,
        ge=0,
        description="Locations due more than this many days after the planned day are not candidates.",
    )

    # Cost normalization (km-equivalent units)
    due_cost_cap_km: float = Field(default=35.0, ge=0.0)
    detour_cost_cap_km: float = Field(default=30.0, ge=0.0)
    detour_ref_km: float = Field(default=30.0, gt=0.0)
    late_ref_minutes: int = Field(default=240, gt=0)

    # Driver availability
    default_driver_availability: Literal["available", "unavailable"] = Field(
        default="available",
        description="Whether a driver without an availability window for a date may be planned.",
    )
    default_day_start: time = Field(default=time(7, 0), description="Route start when no window is recorded.")
    planning_lock_timeout_seconds: float = Field(default=30.0, ge=0.0)

    # Travel-time model quality gate
    baseline_minutes_per_km: float = Field(default=1.2, gt=0.0, description="50 km/h average speed.")
    use_learned_only_if_approved: bool = True
    learned_sample_threshold: int = Field(default=30, ge=0)
    stale_after_days: int = Field(default=60, ge=0)
    plausible_minutes_per_km_min: float = Field(default=0.6, ge=0.0)
    plausible_minutes_per_km_max: float = Field(default=3.0, ge=0.0)
    deviation_vs_baseline_warn_percent: float = Field(default=50.0, ge=0.0)

    # Optional road-network distances
    osrm_base_url: Optional[str] = Field(
        default=None,
        description="Base URL for the OSRM routing service (e.g., http://localhost:5000).",
    )
    osrm_profile: Literal["driving", "driving-hgv"] = Field(default="driving")
    osrm_max_retries: int = Field(default=3, ge=0)
    osrm_backoff_seconds: float = Field(default=1.0, ge=0.0)

    @field_validator("data_root", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        path_value = value if isinstance(value, Path) else Path(str(value))
        return path_value.expanduser().resolve()

    @field_validator("solver_first_solution_strategy", "solver_local_search_metaheuristic", mode="before")
    @classmethod
    def _normalize_solver_tag(cls, value: Any) -> str:
        return str(value).strip().upper().replace("-", "_").replace(" ", "_")

    @field_validator("osrm_base_url", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip().rstrip("/")
        return text or None

    @model_validator(mode="after")
    def _check_plausible_range(self) -> "Settings":
        if self.plausible_minutes_per_km_min > self.plausible_minutes_per_km_max:
            raise ValueError("plausible_minutes_per_km_min must not exceed plausible_minutes_per_km_max")
        return self


settings = Settings()

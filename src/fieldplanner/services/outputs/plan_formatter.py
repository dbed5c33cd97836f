"""Serializers for planning outputs."""

from __future__ import annotations

import csv
import io
from dataclasses import asdict
from pathlib import Path
from typing import TYPE_CHECKING, Sequence

from ...models.domain import Route
from ...persistence.filesystem import PlanRunStore
from ...schemas.planning import (
    DayOutcomeModel,
    HorizonSummary,
    QualitySignalModel,
    RoutePlanModel,
    RouteStopModel,
)

if TYPE_CHECKING:
    from ..planning.orchestrator import HorizonResult


def route_to_model(route: Route) -> RoutePlanModel:
    return RoutePlanModel(
        driver_id=route.driver_id,
        day=route.day,
        locked=route.locked,
        total_minutes=route.total_minutes,
        total_km=route.total_km,
        stops=[
            RouteStopModel(
                sequence=stop.sequence,
                location_id=stop.location_id,
                planned_start=stop.planned_start,
                planned_end=stop.planned_end,
                travel_minutes_from_prev=stop.travel_minutes_from_prev,
                travel_km_from_prev=stop.travel_km_from_prev,
                service_minutes=stop.service_minutes,
            )
            for stop in route.stops
        ],
    )


def horizon_result_to_summary(result: "HorizonResult") -> HorizonSummary:
    return HorizonSummary(
        from_date=result.from_date,
        days=result.days,
        generated_days=result.generated_days,
        skipped_locked_days=result.skipped_locked_days,
        planned_locations_count=result.planned_locations_count,
        unplanned_locations_count=result.unplanned_locations_count,
        outcomes=[
            DayOutcomeModel(
                day=outcome.day,
                state=outcome.state.value,
                candidate_count=outcome.candidate_count,
                planned_location_ids=outcome.planned_location_ids,
                unplanned_location_ids=outcome.unplanned_location_ids,
                infeasible_fixed_ids=outcome.infeasible_fixed_ids,
                metadata=outcome.metadata,
            )
            for outcome in result.outcomes
        ],
        signals=[QualitySignalModel(**asdict(signal)) for signal in result.signals],
        routes=[route_to_model(route) for route in result.routes],
    )


def horizon_result_to_json(result: "HorizonResult") -> dict:
    return horizon_result_to_summary(result).model_dump(mode="json")


def routes_to_csv(routes: Sequence[Route]) -> str:
    buffer = io.StringIO()
    fieldnames = [
        "driver_id",
        "day",
        "sequence",
        "location_id",
        "planned_start",
        "planned_end",
        "travel_minutes_from_prev",
        "travel_km_from_prev",
        "service_minutes",
        "route_total_minutes",
        "route_total_km",
    ]
    writer = csv.DictWriter(buffer, fieldnames=fieldnames)
    writer.writeheader()
    for route in sorted(routes, key=lambda item: (item.day, item.driver_id)):
        for stop in route.stops:
            writer.writerow(
                {
                    "driver_id": route.driver_id,
                    "day": route.day.isoformat(),
                    "sequence": stop.sequence,
                    "location_id": stop.location_id,
                    "planned_start": stop.planned_start.isoformat() if stop.planned_start else "",
                    "planned_end": stop.planned_end.isoformat() if stop.planned_end else "",
                    "travel_minutes_from_prev": round(stop.travel_minutes_from_prev, 2),
                    "travel_km_from_prev": round(stop.travel_km_from_prev, 3),
                    "service_minutes": stop.service_minutes,
                    "route_total_minutes": round(route.total_minutes, 2),
                    "route_total_km": round(route.total_km, 3),
                }
            )
    return buffer.getvalue()


def persist_horizon_run(
    result: "HorizonResult", *, storage: PlanRunStore | None = None, run_label: str | None = None
) -> Path:
    """Archive the summary and route table of a pass; returns the run directory."""
    storage = storage or PlanRunStore()
    run_dir = storage.create_run(result.from_date, label=run_label)
    return storage.save_run(run_dir, horizon_result_to_json(result), routes_to_csv(result.routes))

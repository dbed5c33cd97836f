"""Planning orchestration across a horizon of days."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import date, time, timedelta
from enum import Enum
from typing import Literal, Optional

import httpx

from ...config import settings
from ...errors import LockedDayError
from ...models.domain import PlanningState, Route
from ...schemas.planning import HorizonSummary, PlanHorizonRequest
from ..outputs.plan_formatter import horizon_result_to_summary, persist_horizon_run
from ..travel.estimator import QualitySignal, TravelTimeEstimator
from ..travel.model import TravelModelSettings, TravelTimeModel, travel_time_model
from ..travel.osrm_client import OSRMClient, RoadDistanceMatrix, fetch_road_distances
from .candidates import select_candidates
from .costs import CostModel, CostWeights
from .engines import DayContext, RoutingEngine, get_engine
from .locks import PlanningLockRegistry, planning_locks
from .routes import recompute_route, resolve_driver_days

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PlannerOptions:
    engine: str = settings.planning_engine
    max_daily_candidates: int = settings.max_daily_candidates
    horizon_slack_days: int = settings.horizon_slack_days
    availability_policy: Literal["available", "unavailable"] = settings.default_driver_availability
    default_day_start: time = settings.default_day_start
    lock_timeout_seconds: float = settings.planning_lock_timeout_seconds
    use_road_distances: bool = settings.osrm_base_url is not None


class DayState(str, Enum):
    LOCKED = "locked"
    PENDING = "pending"
    PLANNED = "planned"
    PARTIALLY_PLANNED = "partially_planned"


@dataclass(slots=True)
class DayOutcome:
    day: date
    state: DayState
    candidate_count: int = 0
    planned_location_ids: list[int] = field(default_factory=list)
    unplanned_location_ids: list[int] = field(default_factory=list)
    infeasible_fixed_ids: list[int] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)


@dataclass(slots=True)
class HorizonResult:
    from_date: date
    days: int
    generated_days: int = 0
    skipped_locked_days: int = 0
    planned_locations_count: int = 0
    unplanned_locations_count: int = 0
    outcomes: list[DayOutcome] = field(default_factory=list)
    signals: list[QualitySignal] = field(default_factory=list)
    routes: list[Route] = field(default_factory=list)


class PlanningOrchestrator:
    """Drive the candidate selector and a routing engine over consecutive dates.

    Days are planned in order against one travel-model snapshot. Locked days are
    skipped; candidates that do not fit a day stay in the backlog and are offered
    again on the next date.
    """

    def __init__(
        self,
        state: PlanningState,
        *,
        options: PlannerOptions | None = None,
        engine: RoutingEngine | None = None,
        model: TravelTimeModel | None = None,
        model_settings: TravelModelSettings | None = None,
        cost_weights: CostWeights | None = None,
        lock_registry: PlanningLockRegistry | None = None,
        osrm_client: OSRMClient | None = None,
    ) -> None:
        self.state = state
        self.options = options or PlannerOptions()
        self.engine = engine or get_engine(self.options.engine)
        self.model = model or travel_time_model
        self.model_settings = model_settings or TravelModelSettings()
        self.cost_weights = cost_weights or CostWeights()
        self.locks = lock_registry or planning_locks
        self.osrm_client = osrm_client

    def plan_horizon(self, from_date: date, days: int) -> HorizonResult:
        if days < 1:
            raise ValueError("days must be at least 1.")
        last_day = from_date + timedelta(days=days - 1)
        with self.locks.hold(self.state.owner_id, from_date, last_day, self.options.lock_timeout_seconds):
            return self._run_pass(from_date, days)

    def plan_day(self, day: date) -> HorizonResult:
        """Plan one explicit date; a locked date is a request error rather than a skip."""
        with self.locks.hold(self.state.owner_id, day, day, self.options.lock_timeout_seconds):
            if self.state.plan_day(day).locked:
                raise LockedDayError(day)
            return self._run_pass(day, 1)

    def run(self, request: PlanHorizonRequest) -> HorizonSummary:
        result = self.plan_horizon(request.from_date, request.days)
        if request.persist:
            run_dir = persist_horizon_run(result, run_label=request.run_label)
            logger.info(f"Persisted planning run to {run_dir}")
        return horizon_result_to_summary(result)

    def _run_pass(self, from_date: date, days: int) -> HorizonResult:
        last_day = from_date + timedelta(days=days - 1)
        estimator = TravelTimeEstimator(
            self.model.snapshot(),
            self.model_settings,
            road_distances=self._prefetch_road_distances(from_date, last_day),
        )
        result = HorizonResult(from_date=from_date, days=days)
        offered: set[int] = set()
        planned: set[int] = set()

        for offset in range(days):
            day = from_date + timedelta(days=offset)
            if self.state.plan_day(day).locked:
                result.skipped_locked_days += 1
                result.outcomes.append(DayOutcome(day=day, state=DayState.LOCKED))
                logger.info(f"Skipping locked day {day.isoformat()}")
                continue

            outcome, routes = self._plan_one_day(day, estimator.for_day(day))
            result.generated_days += 1
            result.outcomes.append(outcome)
            result.routes.extend(routes)
            offered.update(outcome.planned_location_ids)
            offered.update(outcome.unplanned_location_ids)
            planned.update(outcome.planned_location_ids)

        result.planned_locations_count = len(planned)
        result.unplanned_locations_count = len(offered - planned)
        result.signals = estimator.signals
        logger.info(
            f"Planned {result.generated_days} days from {from_date.isoformat()} "
            f"(skipped {result.skipped_locked_days} locked): {result.planned_locations_count} planned, "
            f"{result.unplanned_locations_count} unplanned"
        )
        return result

    def _plan_one_day(self, day: date, estimator: TravelTimeEstimator) -> tuple[DayOutcome, list[Route]]:
        plan_day = self.state.plan_day(day)
        existing = self.state.routes_for(day)
        locked_drivers = {route.driver_id for route in existing if route.locked}
        working = {route.driver_id: copy.deepcopy(route) for route in existing if not route.locked}

        driver_days = [
            driver_day
            for driver_day in resolve_driver_days(
                self.state.drivers,
                plan_day,
                policy=self.options.availability_policy,
                default_start=self.options.default_day_start,
            )
            if driver_day.driver_id not in locked_drivers
        ]
        active_ids = {driver_day.driver_id for driver_day in driver_days}
        for driver_day in driver_days:
            route = working.get(driver_day.driver_id)
            if route is not None:
                recompute_route(route, driver_day, estimator)
        carried = [route for driver_id, route in working.items() if driver_id not in active_ids]

        candidates = select_candidates(
            self.state.backlog(),
            day,
            self.options.max_daily_candidates,
            driver_days=driver_days,
            routes=[route for driver_id, route in working.items() if driver_id in active_ids],
            estimator=estimator,
            horizon_slack_days=self.options.horizon_slack_days,
        )
        logger.info(f"Planning {day.isoformat()}: {len(candidates)} candidates, {len(driver_days)} drivers")

        context = DayContext(
            day=day,
            driver_days=driver_days,
            routes={driver_id: route for driver_id, route in working.items() if driver_id in active_ids},
            estimator=estimator,
            cost_model=CostModel(estimator, self.cost_weights),
        )
        outcome = DayOutcome(day=day, state=DayState.PENDING, candidate_count=len(candidates))
        plan = self.engine.plan(context, candidates)

        committed = plan.routes + carried
        self.state.replace_routes(day, committed)

        candidate_ids = {location.location_id for location in candidates}
        placed = plan.planned_location_ids & candidate_ids
        outcome.planned_location_ids = sorted(placed)
        outcome.unplanned_location_ids = sorted(candidate_ids - placed)
        outcome.infeasible_fixed_ids = sorted(location.location_id for location in plan.infeasible_fixed)
        outcome.metadata = dict(plan.metadata)
        outcome.state = DayState.PARTIALLY_PLANNED if outcome.unplanned_location_ids else DayState.PLANNED
        return outcome, committed

    def _prefetch_road_distances(self, first_day: date, last_day: date) -> Optional[RoadDistanceMatrix]:
        if not self.options.use_road_distances and self.osrm_client is None:
            return None
        coordinates = [(driver.latitude, driver.longitude) for driver in self.state.drivers]
        coordinates.extend((location.latitude, location.longitude) for location in self.state.backlog())
        for route in self.state.routes:
            if first_day <= route.day <= last_day:
                coordinates.extend((stop.latitude, stop.longitude) for stop in route.stops)
        try:
            matrix = fetch_road_distances(coordinates, self.osrm_client)
        except (ConnectionError, ValueError, httpx.HTTPError) as exc:
            logger.warning(f"Road distances unavailable, using haversine distances: {exc}")
            return None
        logger.info(f"Prefetched {len(matrix)} road distances for {len(coordinates)} points")
        return matrix

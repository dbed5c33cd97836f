from datetime import date, datetime, time, timedelta, timezone

import pytest

from fieldplanner.models.domain import AvailabilityWindow, Driver, Location, PlanDay, Route, Stop
from fieldplanner.services.planning.candidates import select_candidates
from fieldplanner.services.planning.routes import (
    insert_stop,
    make_stop,
    minutes_after_insertion,
    recompute_route,
    resolve_driver_days,
    trim_to_capacity,
)
from fieldplanner.services.travel.estimator import TravelTimeEstimator
from fieldplanner.services.travel.model import DayType, RegionSpeedProfile, TravelModelSettings, TravelTimeModel
from fieldplanner.services.travel.osrm_client import RoadDistanceMatrix

DAY = date(2024, 6, 3)
HOME = (24.0, 46.0)
A = (24.05, 46.0)
B = (24.1, 46.0)

# home->A 10 min, A->B 5 min, home->B 15 min at the 1.2 min/km baseline
MATRIX = RoadDistanceMatrix.from_table(
    [HOME, A, B],
    [
        [0, 25000 / 3, 12500],
        [25000 / 3, 0, 25000 / 6],
        [12500, 25000 / 6, 0],
    ],
)


def _driver(did: int = 1, *, max_minutes: int = 480, windows=()) -> Driver:
    return Driver(
        driver_id=did,
        name=f"Driver {did}",
        latitude=HOME[0],
        longitude=HOME[1],
        default_service_minutes=30,
        max_work_minutes_per_day=max_minutes,
        availability=tuple(windows),
    )


def _location(lid: int, point, due: date = DAY, *, fixed: date | None = None, planned: bool = False) -> Location:
    return Location(
        location_id=lid,
        serial=f"P-{lid}",
        latitude=point[0],
        longitude=point[1],
        due_date=due,
        fixed_date=fixed,
        planned=planned,
    )


def _estimator() -> TravelTimeEstimator:
    snapshot = TravelTimeModel().snapshot(now=datetime(2024, 6, 3, tzinfo=timezone.utc))
    return TravelTimeEstimator(snapshot, TravelModelSettings(baseline_minutes_per_km=1.2), road_distances=MATRIX, day=DAY)


def test_capacity_adds_extra_minutes_and_is_bounded_by_window():
    windowed = _driver(2, windows=[AvailabilityWindow(DAY, time(8, 0), time(12, 0))])
    plan_day = PlanDay(DAY, extra_work_minutes=60)

    driver_days = resolve_driver_days([windowed, _driver(1)], plan_day, policy="available", default_start=time(7, 0))

    assert [dd.driver_id for dd in driver_days] == [1, 2]
    assert driver_days[0].capacity_minutes == 540
    assert driver_days[0].start_at == datetime(2024, 6, 3, 7, 0)
    assert driver_days[1].capacity_minutes == 240
    assert driver_days[1].start_at == datetime(2024, 6, 3, 8, 0)


def test_unavailable_policy_requires_a_window():
    windowed = _driver(2, windows=[AvailabilityWindow(DAY, time(8, 0), time(16, 0))])

    driver_days = resolve_driver_days([_driver(1), windowed], PlanDay(DAY), policy="unavailable", default_start=time(7, 0))

    assert [dd.driver_id for dd in driver_days] == [2]


def test_insert_stop_renumbers_and_sets_timestamps():
    estimator = _estimator()
    driver = _driver()
    (driver_day,) = resolve_driver_days([driver], PlanDay(DAY), policy="available", default_start=time(7, 0))
    route = Route(driver_id=1, day=DAY)

    insert_stop(route, driver_day, make_stop(_location(2, B), driver), 0, estimator)
    expected = minutes_after_insertion(route, driver_day, make_stop(_location(1, A), driver), 0, estimator)
    insert_stop(route, driver_day, make_stop(_location(1, A), driver), 0, estimator)

    assert route.location_ids == [1, 2]
    assert [stop.sequence for stop in route.stops] == [1, 2]
    assert route.total_minutes == pytest.approx(expected)
    assert route.total_minutes == pytest.approx(10 + 30 + 5 + 30)
    first, second = route.stops
    assert first.planned_start == datetime(2024, 6, 3, 7, 10)
    assert first.planned_end == datetime(2024, 6, 3, 7, 40)
    assert second.planned_start == datetime(2024, 6, 3, 7, 45)
    assert second.travel_km_from_prev == pytest.approx(25 / 6)


def test_trim_to_capacity_drops_tail_stops():
    estimator = _estimator()
    driver = _driver(max_minutes=50)
    (driver_day,) = resolve_driver_days([driver], PlanDay(DAY), policy="available", default_start=time(7, 0))
    route = Route(driver_id=1, day=DAY)
    insert_stop(route, driver_day, make_stop(_location(1, A), driver), 0, estimator)
    insert_stop(route, driver_day, make_stop(_location(2, B), driver), 1, estimator)

    removed = trim_to_capacity(route, driver_day)

    assert [stop.location_id for stop in removed] == [2]
    assert route.location_ids == [1]


def test_select_candidates_filters_and_ranks():
    estimator = _estimator()
    (driver_day,) = resolve_driver_days([_driver()], PlanDay(DAY), policy="available", default_start=time(7, 0))
    backlog = [
        _location(1, B, due=date(2024, 6, 1)),
        _location(2, A, due=date(2024, 6, 1)),
        _location(3, B, due=date(2024, 6, 20), fixed=DAY),
        _location(4, A, due=date(2024, 5, 1), fixed=date(2024, 6, 4)),
        _location(5, A, due=date(2024, 5, 1), planned=True),
        _location(6, A, due=date(2024, 7, 30)),
        _location(7, A, due=date(2024, 6, 10)),
    ]

    selected = select_candidates(
        backlog, DAY, 10, driver_days=[driver_day], estimator=estimator, horizon_slack_days=14
    )

    assert [location.location_id for location in selected] == [3, 2, 1, 7]


def test_select_candidates_truncates_to_cap():
    estimator = _estimator()
    (driver_day,) = resolve_driver_days([_driver()], PlanDay(DAY), policy="available", default_start=time(7, 0))
    backlog = [_location(lid, A, due=date(2024, 6, lid)) for lid in range(1, 6)]

    selected = select_candidates(backlog, DAY, 2, driver_days=[driver_day], estimator=estimator, horizon_slack_days=0)

    assert [location.location_id for location in selected] == [1, 2]


def test_legs_are_priced_at_their_departure_hour():
    # 2.4 min/km before 08:00, baseline afterwards
    model = TravelTimeModel(profiles=[RegionSpeedProfile(99, DayType.WEEKDAY, 7, 2.4)])
    estimator = TravelTimeEstimator(
        model.snapshot(now=datetime(2024, 6, 3, tzinfo=timezone.utc)),
        TravelModelSettings(baseline_minutes_per_km=1.2),
        road_distances=MATRIX,
        day=DAY,
    )
    (driver_day,) = resolve_driver_days([_driver()], PlanDay(DAY), policy="available", default_start=time(7, 0))
    first = Stop(sequence=0, location_id=1, latitude=A[0], longitude=A[1], service_minutes=60)
    route = Route(driver_id=1, day=DAY, stops=[first])
    recompute_route(route, driver_day, estimator)
    second = Stop(sequence=0, location_id=2, latitude=B[0], longitude=B[1], service_minutes=30)

    projected = minutes_after_insertion(route, driver_day, second, 1, estimator)
    insert_stop(route, driver_day, second, 1, estimator)

    first_stop, second_stop = route.stops
    assert first_stop.travel_minutes_from_prev == pytest.approx(20.0)
    assert abs(first_stop.planned_end - datetime(2024, 6, 3, 8, 20)) < timedelta(seconds=1)
    assert second_stop.travel_minutes_from_prev == pytest.approx(5.0)
    assert route.total_minutes == pytest.approx(115.0)
    assert projected == pytest.approx(route.total_minutes)

from datetime import date, datetime, timezone

import pytest

from fieldplanner.models.domain import Location
from fieldplanner.services.planning.costs import CostModel, CostWeights, insertion_sort_key
from fieldplanner.services.travel.estimator import TravelTimeEstimator
from fieldplanner.services.travel.model import TravelModelSettings, TravelTimeModel
from fieldplanner.services.travel.osrm_client import RoadDistanceMatrix

DAY = date(2024, 6, 3)
WEIGHTS = CostWeights(due_cost_cap_km=35.0, detour_cost_cap_km=30.0, detour_ref_km=30.0, late_ref_minutes=240)

A = (24.0, 46.0)
B = (24.1, 46.0)
C = (24.2, 46.0)


def _location(lid: int, due: date, *, fixed: date | None = None, point=B) -> Location:
    return Location(
        location_id=lid,
        serial=f"P-{lid}",
        latitude=point[0],
        longitude=point[1],
        due_date=due,
        fixed_date=fixed,
    )


def _cost_model(matrix: RoadDistanceMatrix | None = None) -> CostModel:
    snapshot = TravelTimeModel().snapshot(now=datetime(2024, 6, 3, tzinfo=timezone.utc))
    estimator = TravelTimeEstimator(snapshot, TravelModelSettings(), road_distances=matrix)
    return CostModel(estimator, WEIGHTS)


def test_due_cost_is_zero_until_due_date():
    model = _cost_model()
    assert model.due_cost(_location(1, DAY), DAY) == 0.0
    assert model.due_cost(_location(1, date(2024, 6, 10)), DAY) == 0.0


def test_due_cost_ten_days_late_is_clamped_to_cap():
    model = _cost_model()
    location = _location(1, date(2024, 5, 24))

    assert model.due_cost(location, DAY) == pytest.approx(35.0)


def test_fixed_date_is_infeasible_on_other_days():
    location = _location(1, DAY, fixed=date(2024, 6, 5))

    assert CostModel.is_feasible_on(location, date(2024, 6, 5))
    assert not CostModel.is_feasible_on(location, DAY)
    assert CostModel.is_feasible_on(_location(2, DAY), DAY)


def test_detour_cost_scales_and_clamps():
    matrix = RoadDistanceMatrix.from_table(
        [A, B, C],
        [
            [0, 6000, 15000],
            [6000, 0, 12000],
            [15000, 12000, 0],
        ],
    )
    model = _cost_model(matrix)

    assert model.raw_detour_km(A, B, C) == pytest.approx(3.0)
    assert model.detour_cost(A, B, C) == pytest.approx(3.0)
    assert model.raw_detour_km(A, C, None) == pytest.approx(15.0)

    far = RoadDistanceMatrix.from_table([A, C], [[0, 90000], [90000, 0]])
    assert _cost_model(far).detour_cost(A, C, None) == pytest.approx(30.0)


def test_total_cost_adds_detour_and_due_cost():
    matrix = RoadDistanceMatrix.from_table([A, B], [[0, 6000], [6000, 0]])
    model = _cost_model(matrix)
    late = _location(1, date(2024, 6, 2))

    # one day late: 1440 / 240 * 35 clamps to 35
    assert model.total_cost(late, DAY, A, None) == pytest.approx(6.0 + 35.0)


def test_insertion_sort_key_breaks_ties_by_due_date_then_driver():
    early = _location(1, date(2024, 6, 1))
    late = _location(2, date(2024, 6, 2))

    assert insertion_sort_key(5.0, early, 2, 0) < insertion_sort_key(5.0, late, 1, 0)
    assert insertion_sort_key(5.0, early, 1, 3) < insertion_sort_key(5.0, early, 2, 0)
    assert insertion_sort_key(4.0, late, 9, 9) < insertion_sort_key(5.0, early, 1, 0)

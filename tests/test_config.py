import pytest
from pydantic import ValidationError

from fieldplanner.config import Settings


def test_defaults_match_planning_options():
    config = Settings(_env_file=None)

    assert config.planning_engine == "greedy"
    assert config.max_daily_candidates == 300
    assert config.due_cost_cap_km == 35.0
    assert config.late_ref_minutes == 240
    assert config.default_driver_availability == "available"
    assert config.osrm_base_url is None


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("FIELDPLAN_PLANNING_ENGINE", "constructive")
    monkeypatch.setenv("FIELDPLAN_SOLVER_FIRST_SOLUTION_STRATEGY", "savings")
    monkeypatch.setenv("FIELDPLAN_OSRM_BASE_URL", "http://localhost:5000/")

    config = Settings(_env_file=None)

    assert config.planning_engine == "constructive"
    assert config.solver_first_solution_strategy == "SAVINGS"
    assert config.osrm_base_url == "http://localhost:5000"


def test_invalid_values_are_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, planning_engine="annealing")
    with pytest.raises(ValidationError):
        Settings(_env_file=None, plausible_minutes_per_km_min=4.0, plausible_minutes_per_km_max=3.0)

"""
Tests for threshold resolution: org overrides over settings over defaults.
"""
import pytest

from opsintel.config import Settings
from opsintel.services.thresholds import parse_number, resolve_thresholds


class TestParseNumber:
    @pytest.mark.parametrize("value,expected", [
        (12, 12.0),
        (12.5, 12.5),
        ("45", 45.0),
        (" 7.5 ", 7.5),
    ])
    def test_numbers(self, value, expected):
        assert parse_number(value) == expected

    @pytest.mark.parametrize("value", [None, True, "abc", "", float("nan"), float("inf"), "inf", [1]])
    def test_not_numbers(self, value):
        assert parse_number(value) is None


class TestResolveThresholds:
    def test_defaults(self):
        thresholds = resolve_thresholds(settings=Settings())
        assert thresholds.margin_warning_percent == Settings().margin_warning_percent
        assert thresholds.crew_swap_window_minutes == Settings().crew_swap_window_minutes

    def test_shipped_defaults(self, monkeypatch):
        for name in ("LATE_RISK_MINUTES", "IDLE_THRESHOLD_MINUTES", "CREW_SWAP_WINDOW_MINUTES"):
            monkeypatch.delenv(name, raising=False)
        thresholds = resolve_thresholds(settings=Settings(_env_file=None))
        assert thresholds.late_risk_minutes == 60
        assert thresholds.idle_threshold_minutes == 90
        assert thresholds.crew_swap_window_minutes == 1440

    def test_env_overrides_default(self, monkeypatch):
        monkeypatch.setenv("LATE_RISK_MINUTES", "15")
        thresholds = resolve_thresholds(settings=Settings())
        assert thresholds.late_risk_minutes == 15

    def test_org_overrides(self):
        thresholds = resolve_thresholds(
            {
                "lateRiskMinutes": "45",
                "idle_threshold_minutes": 120,
                "defaultTravelBufferMinutes": 15,
            },
            settings=Settings(late_risk_minutes=10),
        )
        assert thresholds.late_risk_minutes == 45
        assert thresholds.idle_threshold_minutes == 120
        assert thresholds.en_route_delay_minutes == 15

    def test_invalid_org_values_fall_back(self):
        base = Settings(risk_radius_km=5, no_progress_minutes=60)
        thresholds = resolve_thresholds(
            {"riskRadiusKm": -1, "noProgressMinutes": "soon"},
            settings=base,
        )
        assert thresholds.risk_radius_km == 5
        assert thresholds.no_progress_minutes == 60

    def test_zero_is_a_valid_override(self):
        thresholds = resolve_thresholds({"crewSwapWindowMinutes": 0}, settings=Settings())
        assert thresholds.crew_swap_window_minutes == 0

    def test_negative_env_value_falls_back_to_default(self, monkeypatch):
        monkeypatch.setenv("LATE_RISK_MINUTES", "-5")
        thresholds = resolve_thresholds(settings=Settings())
        assert thresholds.late_risk_minutes == 60

    def test_negative_setting_still_overridable_by_org(self):
        thresholds = resolve_thresholds(
            {"riskRadiusKm": 2},
            settings=Settings(risk_radius_km=-1, idle_threshold_minutes=-10),
        )
        assert thresholds.risk_radius_km == 2
        assert thresholds.idle_threshold_minutes == 90

"""
Tests for schedule time helpers: parsing, rounding, formatting and
assignment offset resolution.
"""
from datetime import date, datetime, timedelta

import pytest
import pytz

from opsintel.services.schedule_time import (
    assignment_to_date_range,
    earliest_date,
    ensure_utc,
    format_currency,
    format_minutes,
    format_number,
    latest_date,
    local_to_utc,
    minutes_between,
    round_half_up,
    to_date,
    to_iso,
)
from tests.fixtures.snapshots import NOW


class TestParsing:
    @pytest.mark.parametrize("raw", [
        "2026-03-10T12:00:00Z",
        "2026-03-10T12:00:00.000Z",
        "2026-03-10T23:00:00+11:00",
        "2026-03-10T12:00:00",
    ])
    def test_equivalent_instants(self, raw):
        assert to_date(raw) == NOW

    @pytest.mark.parametrize("raw", [None, "", "soon", "2026-13-40"])
    def test_unparseable_is_none(self, raw):
        assert to_date(raw) is None

    def test_datetime_passthrough_is_utc(self):
        sydney = pytz.timezone("Australia/Sydney").localize(datetime(2026, 3, 10, 23, 0))
        parsed = to_date(sydney)
        assert parsed == NOW
        assert parsed.utcoffset() == timedelta(0)

    def test_naive_taken_as_utc(self):
        assert ensure_utc(datetime(2026, 3, 10, 12, 0)) == NOW

    def test_iso_output(self):
        assert to_iso(NOW) == "2026-03-10T12:00:00.000Z"
        assert to_iso(None) is None


class TestArithmetic:
    @pytest.mark.parametrize("value,expected", [(2.5, 3), (2.4, 2), (-2.5, -2), (-2.6, -3), (0, 0)])
    def test_round_half_up(self, value, expected):
        assert round_half_up(value) == expected

    def test_minutes_between(self):
        assert minutes_between(NOW, NOW + timedelta(minutes=45)) == 45
        assert minutes_between(NOW + timedelta(minutes=45), NOW) == -45
        assert minutes_between(NOW, NOW + timedelta(seconds=90)) == 2

    def test_latest_and_earliest_skip_none(self):
        earlier = NOW - timedelta(hours=1)
        assert latest_date(None, earlier, NOW, None) == NOW
        assert earliest_date(None, NOW, earlier) == earlier
        assert latest_date(None, None) is None
        assert earliest_date() is None


class TestFormatting:
    @pytest.mark.parametrize("minutes,expected", [
        (45, "45m"),
        (60, "1h"),
        (90, "1h 30m"),
        (59.6, "1h"),
        (-5, "0m"),
        (float("nan"), "0m"),
    ])
    def test_format_minutes(self, minutes, expected):
        assert format_minutes(minutes) == expected

    def test_format_currency(self):
        assert format_currency(5000, "aud") == "AUD 50.00"
        assert format_currency(-100, "USD") == "USD 0.00"
        assert format_currency(None, "NZD") == "NZD 0.00"

    def test_format_number(self):
        assert format_number(3.0) == "3"
        assert format_number(2.5) == "2.5"


class TestAssignmentRange:
    def test_daylight_saving_offset(self):
        # Sydney is UTC+11 in March, so 06:00 local is 19:00 UTC the day before
        start, end = assignment_to_date_range(date(2026, 3, 10), 60, 180, "Australia/Sydney")
        assert start == datetime(2026, 3, 9, 20, 0, tzinfo=pytz.UTC)
        assert end == datetime(2026, 3, 9, 22, 0, tzinfo=pytz.UTC)

    def test_standard_time_offset(self):
        start, _ = assignment_to_date_range(date(2026, 7, 1), 0, 60, "Australia/Sydney")
        assert start == datetime(2026, 6, 30, 20, 0, tzinfo=pytz.UTC)

    def test_utc_workday(self):
        start, end = assignment_to_date_range(date(2026, 3, 10), 180, 300, "UTC")
        assert start == datetime(2026, 3, 10, 9, 0, tzinfo=pytz.UTC)
        assert end == datetime(2026, 3, 10, 11, 0, tzinfo=pytz.UTC)

    def test_unknown_timezone_falls_back_to_utc(self):
        assert local_to_utc(datetime(2026, 3, 10, 6, 0), "Mars/Olympus") == datetime(
            2026, 3, 10, 6, 0, tzinfo=pytz.UTC
        )

"""Tests for time utilities."""

from datetime import datetime, timedelta, timezone

import pytest

from carrymatch.errors import ValidationError
from carrymatch.utils import days_until, from_iso, parse_local_datetime, to_iso


class TestIso:
    def test_round_trip_keeps_utc(self):
        value = datetime(2026, 3, 1, 12, 30, tzinfo=timezone.utc)
        assert to_iso(value) == "2026-03-01T12:30:00Z"
        assert from_iso("2026-03-01T12:30:00Z") == value

    def test_offsets_normalised(self):
        value = datetime(2026, 3, 1, 14, 30, tzinfo=timezone(timedelta(hours=2)))
        assert to_iso(value) == "2026-03-01T12:30:00Z"

    def test_naive_is_utc(self):
        assert from_iso("2026-03-01T12:30:00").tzinfo is not None

    def test_none(self):
        assert to_iso(None) is None
        assert from_iso(None) is None
        assert from_iso("") is None


class TestDaysUntil:
    def test_rounds_up(self):
        now = datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert days_until(now + timedelta(days=2, minutes=1), now) == 3
        assert days_until(now + timedelta(days=2), now) == 2


class TestParseLocalDatetime:
    def test_converts_to_utc(self):
        result = parse_local_datetime("07/04/2026", "09:30", "America/New_York")
        assert result == datetime(2026, 7, 4, 13, 30, tzinfo=timezone.utc)

    def test_utc_zone(self):
        result = parse_local_datetime("01/15/2026", "23:05", "UTC")
        assert result == datetime(2026, 1, 15, 23, 5, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        "date_str,time_str,tz_name",
        [
            ("2026-07-04", "09:30", "UTC"),
            ("13/01/2026", "09:30", "UTC"),
            ("02/30/2026", "09:30", "UTC"),
            ("07/04/2026", "9.30", "UTC"),
            ("07/04/2026", "24:00", "UTC"),
            ("07/04/2026", "09:30", "Mars/Olympus"),
        ],
    )
    def test_invalid(self, date_str, time_str, tz_name):
        with pytest.raises(ValidationError):
            parse_local_datetime(date_str, time_str, tz_name)

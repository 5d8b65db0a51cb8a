"""
Tests for grid arithmetic and clock/date parsing.
"""

import datetime as dt
from datetime import time

import pendulum
import pytest

from helperschedule.domain.exceptions import InvalidDate, InvalidTimeFormat
from helperschedule.domain.time_grid import (
    as_date,
    default_day_grid,
    enumerate_day_boundaries,
    format_clock_time,
    from_minutes,
    is_aligned,
    pair_consecutive,
    parse_clock_time,
    parse_date,
    to_minutes,
)


class TestClockTimes:
    """Tests for clock time parsing and formatting."""

    def test_minutes_round_trip(self):
        assert to_minutes(time(9, 30)) == 570
        assert from_minutes(570) == time(9, 30)

    def test_from_minutes_outside_day(self):
        with pytest.raises(InvalidTimeFormat):
            from_minutes(24 * 60)
        with pytest.raises(InvalidTimeFormat):
            from_minutes(-1)

    def test_parse_valid(self):
        assert parse_clock_time("09:00") == time(9, 0)
        assert parse_clock_time("23:59") == time(23, 59)

    @pytest.mark.parametrize("value", ["9:00", "24:00", "12:60", "noon", "", "09:00:00"])
    def test_parse_invalid(self, value):
        """Anything but a 24-hour HH:MM string is rejected."""
        with pytest.raises(InvalidTimeFormat):
            parse_clock_time(value)

    def test_parse_non_string(self):
        with pytest.raises(InvalidTimeFormat):
            parse_clock_time(900)

    def test_format(self):
        assert format_clock_time(time(13, 5)) == "13:05"
        assert format_clock_time(time(13, 5), twelve_hour=True) == "1:05 PM"
        assert format_clock_time(time(0, 0), twelve_hour=True) == "12:00 AM"
        assert format_clock_time(time(12, 0), twelve_hour=True) == "12:00 PM"

    def test_alignment(self):
        assert is_aligned(time(10, 30), 30)
        assert not is_aligned(time(10, 10), 30)
        assert is_aligned(time(10, 15), 15)


class TestDates:
    """Tests for date normalisation."""

    def test_parse_date(self):
        assert parse_date("2024-02-29") == pendulum.date(2024, 2, 29)

    @pytest.mark.parametrize("value", ["not-a-date", "01/02/2024"])
    def test_parse_date_invalid(self, value):
        with pytest.raises(InvalidDate):
            parse_date(value)

    def test_as_date_accepts_date_like_values(self):
        expected = pendulum.date(2024, 1, 8)

        assert as_date("2024-01-08") == expected
        assert as_date(dt.date(2024, 1, 8)) == expected
        assert as_date(dt.datetime(2024, 1, 8, 15, 30)) == expected
        assert isinstance(as_date(dt.date(2024, 1, 8)), pendulum.Date)

    def test_as_date_rejects_other_values(self):
        with pytest.raises(InvalidDate):
            as_date(42)


class TestDayGrid:
    """Tests for boundary enumeration and the default day grid."""

    def test_boundaries_include_both_ends(self):
        boundaries = enumerate_day_boundaries(30, time(8, 0), time(20, 0))

        assert len(boundaries) == 25
        assert boundaries[0] == time(8, 0)
        assert boundaries[1] == time(8, 30)
        assert boundaries[-1] == time(20, 0)

    def test_invalid_granularity(self):
        with pytest.raises(InvalidTimeFormat):
            enumerate_day_boundaries(45)

    def test_window_must_open_before_it_closes(self):
        with pytest.raises(InvalidTimeFormat):
            enumerate_day_boundaries(30, time(12, 0), time(12, 0))

    def test_unaligned_window(self):
        with pytest.raises(InvalidTimeFormat):
            enumerate_day_boundaries(30, time(8, 15), time(12, 0))

    def test_pairing_with_stride(self):
        boundaries = [time(8, 0), time(8, 30), time(9, 0), time(9, 30), time(10, 0)]

        assert pair_consecutive(boundaries) == [
            (time(8, 0), time(8, 30)),
            (time(8, 30), time(9, 0)),
            (time(9, 0), time(9, 30)),
            (time(9, 30), time(10, 0)),
        ]
        assert pair_consecutive(boundaries, stride=2) == [
            (time(8, 0), time(9, 0)),
            (time(9, 0), time(10, 0)),
        ]

    def test_pairing_drops_incomplete_tail(self):
        """A trailing half unit does not become a slot."""
        boundaries = [time(8, 0), time(8, 30), time(9, 0), time(9, 30)]

        assert pair_consecutive(boundaries, stride=2) == [(time(8, 0), time(9, 0))]

    def test_default_grid_is_hourly(self):
        grid = default_day_grid()

        assert len(grid) == 12
        assert grid[0] == (time(8, 0), time(9, 0))
        assert grid[-1] == (time(19, 0), time(20, 0))
        assert all(to_minutes(end) - to_minutes(start) == 60 for start, end in grid)

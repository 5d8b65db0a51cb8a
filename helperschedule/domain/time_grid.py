"""
Grid arithmetic and clock/date parsing.

Everything here is stateless. Clock times are plain ``datetime.time`` values
and calendar dates are ``pendulum.Date`` values without a time-of-day part.
"""

import datetime as dt
import re
from datetime import time
from typing import List, Sequence, Tuple

import pendulum
from pendulum import Date

from .exceptions import InvalidDate, InvalidTimeFormat

MINUTES_PER_DAY = 24 * 60

DEFAULT_GRANULARITY = 30
DEFAULT_DAY_START = time(8, 0)
DEFAULT_DAY_END = time(20, 0)

_CLOCK_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def to_minutes(value: time) -> int:
    """Minutes since midnight."""
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    """Convert minutes since midnight back to a clock time."""
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise InvalidTimeFormat(f"{minutes} minutes is outside a single day")
    return time(hour=minutes // 60, minute=minutes % 60)


def is_aligned(value: time, granularity_minutes: int = DEFAULT_GRANULARITY) -> bool:
    """Check that a clock time sits on a grid boundary."""
    return value.second == 0 and to_minutes(value) % granularity_minutes == 0


def parse_clock_time(value: str) -> time:
    """
    Parse a 24-hour ``HH:MM`` string.

    Raises:
        InvalidTimeFormat: If the value is not a valid ``HH:MM`` string
    """
    if not isinstance(value, str):
        raise InvalidTimeFormat(f"Expected an 'HH:MM' string, got {value!r}")

    match = _CLOCK_PATTERN.match(value.strip())
    if not match:
        raise InvalidTimeFormat(f"Invalid clock time {value!r}, expected 'HH:MM'")

    return time(hour=int(match.group(1)), minute=int(match.group(2)))


def format_clock_time(value: time, twelve_hour: bool = False) -> str:
    """
    Format a clock time as ``HH:MM``, or ``h:mm AM`` for display.
    """
    if not twelve_hour:
        return f"{value.hour:02d}:{value.minute:02d}"

    suffix = "AM" if value.hour < 12 else "PM"
    hour = value.hour % 12 or 12
    return f"{hour}:{value.minute:02d} {suffix}"


def as_date(value) -> Date:
    """
    Normalise a date-like value to ``pendulum.Date``.

    Accepts ``pendulum.Date``, ``datetime.date`` (and datetimes, whose
    time-of-day is dropped) or a ``YYYY-MM-DD`` string.
    """
    if isinstance(value, str):
        return parse_date(value)
    if isinstance(value, dt.date):
        return pendulum.date(value.year, value.month, value.day)
    raise InvalidDate(f"Expected a date, got {value!r}")


def parse_date(value: str) -> Date:
    """
    Parse a ``YYYY-MM-DD`` string.

    Raises:
        InvalidDate: If the string is not a valid calendar date
    """
    try:
        return pendulum.from_format(value.strip(), "YYYY-MM-DD").date()
    except (ValueError, TypeError, AttributeError) as exc:
        raise InvalidDate(f"Invalid date {value!r}, expected 'YYYY-MM-DD'") from exc


def enumerate_day_boundaries(
    granularity_minutes: int = DEFAULT_GRANULARITY,
    day_start: time = DEFAULT_DAY_START,
    day_end: time = DEFAULT_DAY_END,
) -> List[time]:
    """
    List every grid boundary of the bookable window, both ends included.

    Example (60 minute grid, 08:00-10:00): [08:00, 09:00, 10:00]
    """
    if granularity_minutes <= 0 or 60 % granularity_minutes != 0:
        raise InvalidTimeFormat(
            f"Granularity must divide an hour, got {granularity_minutes}"
        )
    if not (is_aligned(day_start, granularity_minutes) and is_aligned(day_end, granularity_minutes)):
        raise InvalidTimeFormat("Bookable window must start and end on grid boundaries")

    start = to_minutes(day_start)
    end = to_minutes(day_end)
    if start >= end:
        raise InvalidTimeFormat(
            f"Bookable window start {format_clock_time(day_start)} must be before "
            f"end {format_clock_time(day_end)}"
        )

    return [
        from_minutes(minutes)
        for minutes in range(start, end + 1, granularity_minutes)
    ]


def pair_consecutive(boundaries: Sequence[time], stride: int = 1) -> List[Tuple[time, time]]:
    """
    Pair boundaries into intervals of ``stride`` grid units.

    With 30 minute boundaries, ``stride=2`` yields the hourly grid:
    [08:00, 08:30, 09:00, 09:30, 10:00] -> [(08:00, 09:00), (09:00, 10:00)]
    """
    if stride < 1:
        raise ValueError(f"stride must be at least 1, got {stride}")

    return [
        (boundaries[i], boundaries[i + stride])
        for i in range(0, len(boundaries) - stride, stride)
    ]


def default_day_grid(
    granularity_minutes: int = DEFAULT_GRANULARITY,
    day_start: time = DEFAULT_DAY_START,
    day_end: time = DEFAULT_DAY_END,
    slot_units: int = 2,
) -> List[Tuple[time, time]]:
    """The hourly grid offered when a helper marks a whole day available."""
    boundaries = enumerate_day_boundaries(granularity_minutes, day_start, day_end)
    return pair_consecutive(boundaries, stride=slot_units)

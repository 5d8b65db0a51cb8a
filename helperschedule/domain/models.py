"""
Domain models for helper time slots.
"""

from dataclasses import dataclass, replace
from datetime import time
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pendulum import Date

from .exceptions import InvalidDate, InvalidSlotTransition, InvalidTimeFormat
from .time_grid import as_date, format_clock_time, parse_clock_time, to_minutes


class SlotStatus(str, Enum):
    """Lifecycle status of a slot."""
    AVAILABLE = "available"
    BOOKED = "booked"
    UNAVAILABLE = "unavailable"


class RecurrencePattern(str, Enum):
    """How a series anchor repeats."""
    NONE = "none"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"

    def label(self) -> str:
        """Human readable label, as shown next to a booking."""
        return {
            RecurrencePattern.NONE: "One-time only",
            RecurrencePattern.WEEKLY: "Weekly",
            RecurrencePattern.BIWEEKLY: "Bi-weekly",
            RecurrencePattern.MONTHLY: "Monthly",
        }[self]


# Statuses that occupy the helper's time and take part in conflict checks
BLOCKING_STATUSES = frozenset({SlotStatus.AVAILABLE, SlotStatus.BOOKED})


@dataclass(frozen=True)
class Recurrence:
    """
    Recurrence settings stored on a series anchor.

    Invariant: until_date is never set when pattern is NONE.
    """
    pattern: RecurrencePattern = RecurrencePattern.NONE
    until_date: Optional[Date] = None

    def __post_init__(self):
        object.__setattr__(self, "pattern", RecurrencePattern(self.pattern))
        if self.until_date is not None:
            object.__setattr__(self, "until_date", as_date(self.until_date))
        if self.pattern is RecurrencePattern.NONE and self.until_date is not None:
            raise InvalidDate("until_date must not be set for a non-recurring slot")

    @property
    def is_recurring(self) -> bool:
        return self.pattern is not RecurrencePattern.NONE


NO_RECURRENCE = Recurrence()


def _effective_interval(start: time, end: time, before: int, after: int) -> Tuple[int, int]:
    return to_minutes(start) - before, to_minutes(end) + after


def buffered_overlap(first, second) -> bool:
    """
    Check whether two slots or drafts conflict once buffers are applied.

    Both must fall on the same date. Touching endpoints (one effective
    interval ends exactly where the other starts) do not conflict.
    """
    if first.date != second.date:
        return False
    start, end = first.effective_interval()
    other_start, other_end = second.effective_interval()
    return start < other_end and other_start < end


@dataclass(frozen=True)
class SlotDraft:
    """
    A slot that has not been assigned an id or owner yet.

    Invariant: start_time is before end_time and buffers are non-negative.
    """
    date: Date
    start_time: time
    end_time: time
    status: SlotStatus = SlotStatus.AVAILABLE
    recurrence: Recurrence = NO_RECURRENCE
    series_id: Optional[str] = None
    buffer_before: int = 0
    buffer_after: int = 0
    notes: str = ""

    def __post_init__(self):
        object.__setattr__(self, "date", as_date(self.date))
        object.__setattr__(self, "status", SlotStatus(self.status))
        if self.status is SlotStatus.BOOKED:
            raise InvalidSlotTransition("A new slot cannot start out booked")
        if self.start_time >= self.end_time:
            raise InvalidTimeFormat(
                f"Start time {format_clock_time(self.start_time)} must be before "
                f"end time {format_clock_time(self.end_time)}"
            )
        if self.buffer_before < 0 or self.buffer_after < 0:
            raise InvalidTimeFormat("Buffer minutes must not be negative")

    def effective_interval(self) -> Tuple[int, int]:
        """Buffered span in minutes since midnight."""
        return _effective_interval(
            self.start_time, self.end_time, self.buffer_before, self.buffer_after
        )

    def conflicts_with(self, other: "TimeSlot | SlotDraft") -> bool:
        return buffered_overlap(self, other)

    def label(self) -> str:
        return f"{format_clock_time(self.start_time)}-{format_clock_time(self.end_time)}"


@dataclass(frozen=True)
class TimeSlot:
    """
    One bookable interval owned by a helper.

    Only the anchor of a recurring series stores a recurrence pattern;
    generated instances store NONE and share the anchor's series_id.
    """
    id: str
    helper_id: str
    date: Date
    start_time: time
    end_time: time
    status: SlotStatus = SlotStatus.AVAILABLE
    booking_ref: Optional[str] = None
    recurrence: Recurrence = NO_RECURRENCE
    series_id: Optional[str] = None
    buffer_before: int = 0
    buffer_after: int = 0
    notes: str = ""

    def __post_init__(self):
        object.__setattr__(self, "date", as_date(self.date))
        object.__setattr__(self, "status", SlotStatus(self.status))
        if self.start_time >= self.end_time:
            raise InvalidTimeFormat(
                f"Start time {format_clock_time(self.start_time)} must be before "
                f"end time {format_clock_time(self.end_time)}"
            )
        if self.buffer_before < 0 or self.buffer_after < 0:
            raise InvalidTimeFormat("Buffer minutes must not be negative")
        if self.status is SlotStatus.BOOKED and not self.booking_ref:
            raise ValueError(f"Booked slot {self.id} needs a booking reference")
        if self.status is not SlotStatus.BOOKED and self.booking_ref is not None:
            raise ValueError(f"Slot {self.id} is not booked but carries a booking reference")

    @classmethod
    def from_draft(cls, draft: SlotDraft, slot_id: str, helper_id: str) -> "TimeSlot":
        return cls(
            id=slot_id,
            helper_id=helper_id,
            date=draft.date,
            start_time=draft.start_time,
            end_time=draft.end_time,
            status=draft.status,
            recurrence=draft.recurrence,
            series_id=draft.series_id,
            buffer_before=draft.buffer_before,
            buffer_after=draft.buffer_after,
            notes=draft.notes,
        )

    @property
    def is_blocking(self) -> bool:
        return self.status in BLOCKING_STATUSES

    def effective_interval(self) -> Tuple[int, int]:
        """Buffered span in minutes since midnight."""
        return _effective_interval(
            self.start_time, self.end_time, self.buffer_before, self.buffer_after
        )

    def conflicts_with(self, other: "TimeSlot | SlotDraft") -> bool:
        return buffered_overlap(self, other)

    def matches(self, date: Date, start_time: time, end_time: time) -> bool:
        """Check whether the slot covers exactly the given date and times."""
        return (
            self.date == as_date(date)
            and self.start_time == start_time
            and self.end_time == end_time
        )

    def with_status(self, status: SlotStatus, booking_ref: Optional[str] = None) -> "TimeSlot":
        return replace(self, status=status, booking_ref=booking_ref)

    def label(self) -> str:
        return f"{format_clock_time(self.start_time)}-{format_clock_time(self.end_time)}"

    def format_display(self) -> str:
        """
        Format the slot for display.
        Format: Weekday, Month D, YYYY | h:mm AM - h:mm AM
        """
        day = self.date.format("dddd, MMMM D, YYYY")
        start = format_clock_time(self.start_time, twelve_hour=True)
        end = format_clock_time(self.end_time, twelve_hour=True)
        return f"{day} | {start} - {end}"

    def to_dict(self) -> Dict[str, Any]:
        """Serialise to the canonical row schema."""
        until = self.recurrence.until_date
        return {
            "id": self.id,
            "helper_id": self.helper_id,
            "date": self.date.to_date_string(),
            "start_time": format_clock_time(self.start_time),
            "end_time": format_clock_time(self.end_time),
            "status": self.status.value,
            "booking_ref": self.booking_ref,
            "recurring": self.recurrence.pattern.value,
            "recurrence_end_date": until.to_date_string() if until else None,
            "series_id": self.series_id,
            "buffer_before": self.buffer_before,
            "buffer_after": self.buffer_after,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimeSlot":
        """
        Build a slot from a canonical row.

        Raises:
            InvalidTimeFormat: If a clock time is malformed
            InvalidDate: If a date is malformed
            KeyError: If a required column is missing
        """
        until = data.get("recurrence_end_date")
        return cls(
            id=str(data["id"]),
            helper_id=str(data["helper_id"]),
            date=as_date(data["date"]),
            start_time=parse_clock_time(data["start_time"]),
            end_time=parse_clock_time(data["end_time"]),
            status=SlotStatus(data.get("status", SlotStatus.AVAILABLE.value)),
            booking_ref=data.get("booking_ref"),
            recurrence=Recurrence(
                pattern=RecurrencePattern(data.get("recurring") or RecurrencePattern.NONE.value),
                until_date=as_date(until) if until else None,
            ),
            series_id=data.get("series_id"),
            buffer_before=int(data.get("buffer_before") or 0),
            buffer_after=int(data.get("buffer_after") or 0),
            notes=data.get("notes") or "",
        )


@dataclass(frozen=True)
class SlotChange:
    """
    Event emitted when a slot changes locally.

    new_status is None when the slot was removed.
    """
    slot_id: str
    new_status: Optional[SlotStatus]

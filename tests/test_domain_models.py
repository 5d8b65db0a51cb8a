"""
Tests for domain models.
"""

from datetime import time

import pendulum
import pytest

from helperschedule.domain.exceptions import InvalidDate, InvalidSlotTransition, InvalidTimeFormat
from helperschedule.domain.models import (
    Recurrence,
    RecurrencePattern,
    SlotDraft,
    SlotStatus,
    TimeSlot,
    buffered_overlap,
)


def _slot(start, end, **kwargs):
    fields = {
        "id": "slot-1",
        "helper_id": "helper-1",
        "date": pendulum.date(2024, 1, 8),
        "start_time": start,
        "end_time": end,
    }
    fields.update(kwargs)
    return TimeSlot(**fields)


class TestSlotDraft:
    """Tests for SlotDraft."""

    def test_start_must_be_before_end(self):
        with pytest.raises(InvalidTimeFormat, match="Start time .* must be before end time"):
            SlotDraft(date="2024-01-08", start_time=time(10, 0), end_time=time(9, 0))

    def test_empty_interval_rejected(self):
        with pytest.raises(InvalidTimeFormat):
            SlotDraft(date="2024-01-08", start_time=time(10, 0), end_time=time(10, 0))

    def test_negative_buffer_rejected(self):
        with pytest.raises(InvalidTimeFormat):
            SlotDraft(date="2024-01-08", start_time=time(9, 0), end_time=time(10, 0), buffer_after=-5)

    def test_new_slot_cannot_start_booked(self):
        with pytest.raises(InvalidSlotTransition):
            SlotDraft(
                date="2024-01-08",
                start_time=time(9, 0),
                end_time=time(10, 0),
                status=SlotStatus.BOOKED,
            )

    def test_date_is_normalised(self):
        draft = SlotDraft(date="2024-01-08", start_time=time(9, 0), end_time=time(10, 0))

        assert draft.date == pendulum.date(2024, 1, 8)
        assert draft.status is SlotStatus.AVAILABLE
        assert draft.label() == "09:00-10:00"

    def test_effective_interval_includes_buffers(self):
        draft = SlotDraft(
            date="2024-01-08",
            start_time=time(9, 0),
            end_time=time(10, 0),
            buffer_before=15,
            buffer_after=15,
        )

        assert draft.effective_interval() == (525, 615)


class TestBufferedOverlap:
    """Tests for conflict detection with buffers."""

    def test_touching_slots_do_not_conflict(self):
        first = _slot(time(9, 0), time(10, 0))
        second = SlotDraft(date="2024-01-08", start_time=time(10, 0), end_time=time(11, 0))

        assert not buffered_overlap(first, second)
        assert not second.conflicts_with(first)

    def test_buffer_turns_touching_into_conflict(self):
        first = _slot(time(9, 0), time(10, 0), buffer_after=15)
        second = SlotDraft(date="2024-01-08", start_time=time(10, 0), end_time=time(11, 0))

        assert first.conflicts_with(second)
        assert second.conflicts_with(first)

    def test_buffers_ending_exactly_at_next_start(self):
        first = _slot(time(9, 0), time(10, 0), buffer_after=15)
        second = SlotDraft(date="2024-01-08", start_time=time(10, 15), end_time=time(11, 0))

        assert not first.conflicts_with(second)

    def test_different_dates_never_conflict(self):
        first = _slot(time(9, 0), time(10, 0))
        second = SlotDraft(date="2024-01-09", start_time=time(9, 0), end_time=time(10, 0))

        assert not first.conflicts_with(second)


class TestRecurrence:
    """Tests for Recurrence settings."""

    def test_until_requires_a_pattern(self):
        with pytest.raises(InvalidDate):
            Recurrence(pattern=RecurrencePattern.NONE, until_date="2024-02-01")

    def test_values_are_normalised(self):
        recurrence = Recurrence(pattern="weekly", until_date="2024-02-01")

        assert recurrence.pattern is RecurrencePattern.WEEKLY
        assert recurrence.until_date == pendulum.date(2024, 2, 1)
        assert recurrence.is_recurring

    def test_labels(self):
        assert RecurrencePattern.NONE.label() == "One-time only"
        assert RecurrencePattern.BIWEEKLY.label() == "Bi-weekly"


class TestTimeSlot:
    """Tests for TimeSlot."""

    def test_booked_slot_needs_reference(self):
        with pytest.raises(ValueError, match="booking reference"):
            _slot(time(9, 0), time(10, 0), status=SlotStatus.BOOKED)

    def test_reference_only_on_booked_slots(self):
        with pytest.raises(ValueError):
            _slot(time(9, 0), time(10, 0), booking_ref="request-1")

    def test_with_status(self):
        slot = _slot(time(9, 0), time(10, 0))

        booked = slot.with_status(SlotStatus.BOOKED, booking_ref="request-1")
        released = booked.with_status(SlotStatus.AVAILABLE)

        assert booked.booking_ref == "request-1"
        assert booked.is_blocking
        assert released.booking_ref is None
        assert released.status is SlotStatus.AVAILABLE

    def test_unavailable_slots_do_not_block(self):
        slot = _slot(time(9, 0), time(10, 0), status=SlotStatus.UNAVAILABLE)

        assert not slot.is_blocking

    def test_matches(self):
        slot = _slot(time(9, 0), time(10, 0))

        assert slot.matches("2024-01-08", time(9, 0), time(10, 0))
        assert not slot.matches("2024-01-08", time(9, 0), time(10, 30))

    def test_format_display(self):
        slot = _slot(time(9, 0), time(13, 30))

        assert slot.format_display() == "Monday, January 8, 2024 | 9:00 AM - 1:30 PM"

    def test_to_dict_uses_row_schema(self):
        slot = _slot(
            time(9, 0),
            time(10, 0),
            recurrence=Recurrence(RecurrencePattern.MONTHLY, "2024-04-30"),
            series_id="series-1",
            buffer_before=15,
            buffer_after=30,
            notes="Bring tools",
        )

        assert slot.to_dict() == {
            "id": "slot-1",
            "helper_id": "helper-1",
            "date": "2024-01-08",
            "start_time": "09:00",
            "end_time": "10:00",
            "status": "available",
            "booking_ref": None,
            "recurring": "monthly",
            "recurrence_end_date": "2024-04-30",
            "series_id": "series-1",
            "buffer_before": 15,
            "buffer_after": 30,
            "notes": "Bring tools",
        }
        assert TimeSlot.from_dict(slot.to_dict()) == slot

    def test_from_dict_defaults_optional_columns(self):
        slot = TimeSlot.from_dict(
            {
                "id": "slot-9",
                "helper_id": "helper-1",
                "date": "2024-01-08",
                "start_time": "14:00",
                "end_time": "15:00",
            }
        )

        assert slot.status is SlotStatus.AVAILABLE
        assert slot.recurrence == Recurrence()
        assert slot.buffer_before == 0
        assert slot.notes == ""

    def test_from_dict_rejects_bad_times(self):
        with pytest.raises(InvalidTimeFormat):
            TimeSlot.from_dict(
                {
                    "id": "slot-9",
                    "helper_id": "helper-1",
                    "date": "2024-01-08",
                    "start_time": "2pm",
                    "end_time": "15:00",
                }
            )

"""
Domain-specific exception hierarchy for the scheduling engine.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Sequence, Tuple

if TYPE_CHECKING:
    from .models import SlotDraft, TimeSlot


class SchedulingError(Exception):
    """Base class for all scheduling errors."""


class InvalidTimeFormat(SchedulingError, ValueError):
    """Raised when a clock time or slot interval is malformed."""


class InvalidDate(SchedulingError, ValueError):
    """Raised when a date or recurrence definition cannot be resolved."""


class SlotConflictError(SchedulingError):
    """Raised when drafts overlap existing slots (buffers included)."""

    def __init__(self, conflicts: Sequence[Tuple["SlotDraft", "TimeSlot | SlotDraft"]]):
        self.conflicts: List[Tuple["SlotDraft", "TimeSlot | SlotDraft"]] = list(conflicts)
        if self.conflicts:
            draft, blocking = self.conflicts[0]
            blocker_id = getattr(blocking, "id", None)
            if blocker_id is None:
                blocker = f"another slot of the same request ({blocking.label()})"
            else:
                blocker = f"slot {blocker_id} ({blocking.label()}, {blocking.status.value})"
            message = f"{draft.date.to_date_string()} {draft.label()} conflicts with {blocker}"
            if len(self.conflicts) > 1:
                message += f" and {len(self.conflicts) - 1} more"
        else:
            message = "Slot conflict"
        super().__init__(message)

    @property
    def blocking_slot(self) -> "TimeSlot | SlotDraft | None":
        """The first slot (or same-batch draft) that blocked the request."""
        return self.conflicts[0][1] if self.conflicts else None


class SlotNotFound(SchedulingError):
    """Raised when a slot id is unknown to the store."""


class SlotIsBooked(SchedulingError):
    """Raised when deleting a booked slot; bookings must be cancelled instead."""


class InvalidSlotTransition(SchedulingError):
    """Raised when a status change is not allowed from the current status."""


class PersistenceError(SchedulingError):
    """Raised by a sync gateway when a write could not be completed."""


class PersistenceFailed(SchedulingError):
    """Raised when persistence retries are exhausted and the change was rolled back."""


class RemoteConflict(SchedulingError):
    """Raised when the backing store rejects an optimistically applied change."""

    def __init__(self, message: str, slot_ids: Sequence[str] = ()):
        super().__init__(message)
        self.slot_ids: List[str] = list(slot_ids)

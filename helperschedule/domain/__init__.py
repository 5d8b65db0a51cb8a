"""
Domain layer - slot models, grid arithmetic, recurrence and the slot store.
"""

from .exceptions import (
    InvalidDate,
    InvalidSlotTransition,
    InvalidTimeFormat,
    PersistenceError,
    PersistenceFailed,
    RemoteConflict,
    SchedulingError,
    SlotConflictError,
    SlotIsBooked,
    SlotNotFound,
)
from .models import (
    Recurrence,
    RecurrencePattern,
    SlotChange,
    SlotDraft,
    SlotStatus,
    TimeSlot,
)
from .recurrence import RecurrenceExpander
from .slot_store import BatchResult, DayResult, SlotStore

__all__ = [
    "BatchResult",
    "DayResult",
    "InvalidDate",
    "InvalidSlotTransition",
    "InvalidTimeFormat",
    "PersistenceError",
    "PersistenceFailed",
    "Recurrence",
    "RecurrenceExpander",
    "RecurrencePattern",
    "RemoteConflict",
    "SchedulingError",
    "SlotChange",
    "SlotConflictError",
    "SlotDraft",
    "SlotIsBooked",
    "SlotNotFound",
    "SlotStatus",
    "SlotStore",
    "TimeSlot",
]

"""
Authoritative, conflict-checked collection of one helper's slots.

Invariant: no two available/booked slots of the helper overlap on the same
date once buffers are applied. Every validated mutation preserves it; the
merge primitives (``put``, ``restore``, ``discard``) trust their caller.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import time
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from pendulum import Date

from .exceptions import InvalidSlotTransition, SlotIsBooked, SlotNotFound
from .models import SlotDraft, SlotStatus, TimeSlot
from .time_grid import as_date

logger = logging.getLogger(__name__)

# (draft, blocking slot); the blocker is a draft when two drafts of one batch collide
Conflict = Tuple[SlotDraft, Union[TimeSlot, SlotDraft]]


def _new_slot_id() -> str:
    return uuid.uuid4().hex


@dataclass
class BatchResult:
    """Outcome of ``SlotStore.insert_batch``."""
    inserted: List[TimeSlot] = field(default_factory=list)
    conflicts: List[Conflict] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.conflicts


@dataclass
class DayResult:
    """Outcome of ``SlotStore.set_day_availability``."""
    inserted: List[TimeSlot] = field(default_factory=list)
    removed: List[TimeSlot] = field(default_factory=list)
    skipped: List[Tuple[time, time]] = field(default_factory=list)
    partially_cleared: bool = False


class SlotStore:
    """
    In-memory slot collection for a single helper.

    The store is synchronous and never suspends; it is the only place where
    slot state changes.
    """

    def __init__(
        self,
        helper_id: str,
        window: Optional[Tuple[Date, Date]] = None,
        id_factory: Callable[[], str] = _new_slot_id,
    ):
        self.helper_id = helper_id
        self.window = (as_date(window[0]), as_date(window[1])) if window else None
        self._id_factory = id_factory
        self._slots: Dict[str, TimeSlot] = {}
        self._by_date: Dict[Date, Set[str]] = {}

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, slot_id: object) -> bool:
        return slot_id in self._slots

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def covers(self, date) -> bool:
        """Check whether a date lies inside the hydration window (if any)."""
        if self.window is None:
            return True
        day = as_date(date)
        return self.window[0] <= day <= self.window[1]

    def get(self, slot_id: str) -> TimeSlot:
        """
        Look up a slot by id.

        Raises:
            SlotNotFound: If the id is unknown
        """
        try:
            return self._slots[slot_id]
        except KeyError:
            raise SlotNotFound(f"Slot {slot_id} does not exist") from None

    def all_slots(self) -> List[TimeSlot]:
        """Every slot, ordered by date then start time."""
        return sorted(self._slots.values(), key=lambda s: (s.date, s.start_time, s.end_time))

    def query_slots_for_date(self, date) -> List[TimeSlot]:
        """Slots on the given date, ordered by start time."""
        day = as_date(date)
        slots = [self._slots[slot_id] for slot_id in self._by_date.get(day, ())]
        return sorted(slots, key=lambda s: (s.start_time, s.end_time))

    def find_slot(self, date, start_time: time, end_time: time) -> Optional[TimeSlot]:
        """Find the slot covering exactly this date and interval."""
        for slot in self.query_slots_for_date(date):
            if slot.start_time == start_time and slot.end_time == end_time:
                return slot
        return None

    def find_conflicts(self, drafts: Sequence[SlotDraft]) -> List[Conflict]:
        """
        Check drafts against existing slots and against each other.

        Only available and booked slots take part; unavailable slots never
        block anything.
        """
        conflicts: List[Conflict] = []
        accepted: List[SlotDraft] = []

        for draft in drafts:
            if draft.status is not SlotStatus.AVAILABLE:
                continue

            blocking = self._first_blocking(draft)
            if blocking is None:
                blocking = self._first_blocking_draft(draft, accepted)
            if blocking is not None:
                conflicts.append((draft, blocking))
            accepted.append(draft)

        return conflicts

    def upcoming_bookings(self, from_date) -> List[TimeSlot]:
        """Booked slots dated on or after ``from_date``, ordered by date and start time."""
        start = as_date(from_date)
        return [
            slot for slot in self.all_slots()
            if slot.status is SlotStatus.BOOKED and slot.date >= start
        ]

    def all_default_slots_present(self, date, default_grid: Iterable[Tuple[time, time]]) -> bool:
        """
        Derived "available on this day" flag.

        True when every default grid interval exists as a slot or is covered
        by a booking.
        """
        slots = self.query_slots_for_date(date)
        booked = [s for s in slots if s.status is SlotStatus.BOOKED]
        present = {(s.start_time, s.end_time) for s in slots if s.status is not SlotStatus.UNAVAILABLE}

        for start, end in default_grid:
            if (start, end) in present:
                continue
            candidate = SlotDraft(date=date, start_time=start, end_time=end)
            if not any(slot.conflicts_with(candidate) for slot in booked):
                return False
        return True

    # ------------------------------------------------------------------
    # Validated mutations
    # ------------------------------------------------------------------

    def insert_batch(self, drafts: Sequence[SlotDraft]) -> BatchResult:
        """
        Insert all drafts or none of them.

        The whole batch is validated first. If any draft overlaps an existing
        available/booked slot (or another draft of the batch) on the same date,
        nothing is inserted and the conflicts are reported.
        """
        conflicts = self.find_conflicts(drafts)
        if conflicts:
            logger.debug(
                "Rejected batch of %d draft(s) for helper %s: %d conflict(s)",
                len(drafts), self.helper_id, len(conflicts),
            )
            return BatchResult(conflicts=conflicts)

        inserted = [
            TimeSlot.from_draft(draft, slot_id=self._id_factory(), helper_id=self.helper_id)
            for draft in drafts
        ]
        for slot in inserted:
            self._index(slot)

        logger.debug("Inserted %d slot(s) for helper %s", len(inserted), self.helper_id)
        return BatchResult(inserted=inserted)

    def remove(self, slot_id: str) -> TimeSlot:
        """
        Delete a slot that has no booking.

        Raises:
            SlotNotFound: If the id is unknown
            SlotIsBooked: If the slot is booked; cancel the booking instead
        """
        slot = self.get(slot_id)
        if slot.status is SlotStatus.BOOKED:
            raise SlotIsBooked(
                f"Slot {slot_id} is booked ({slot.booking_ref}); cancel the booking instead"
            )
        self._unindex(slot)
        return slot

    def reopen(self, slot_id: str) -> BatchResult:
        """
        Make an unavailable slot available again.

        The slot starts blocking once reopened, so it is checked against the
        other slots of its date first; on conflict nothing changes.

        Raises:
            SlotNotFound: If the id is unknown
            InvalidSlotTransition: If the slot is not unavailable
        """
        slot = self.get(slot_id)
        if slot.status is not SlotStatus.UNAVAILABLE:
            raise InvalidSlotTransition(
                f"Slot {slot_id} is {slot.status.value} and cannot be reopened"
            )

        draft = SlotDraft(
            date=slot.date,
            start_time=slot.start_time,
            end_time=slot.end_time,
            buffer_before=slot.buffer_before,
            buffer_after=slot.buffer_after,
        )
        conflicts = self.find_conflicts([draft])
        if conflicts:
            return BatchResult(conflicts=conflicts)

        reopened = slot.with_status(SlotStatus.AVAILABLE)
        self._slots[slot_id] = reopened
        return BatchResult(inserted=[reopened])

    def book(self, slot_id: str, booking_ref: str) -> TimeSlot:
        """
        Mark an available slot as booked.

        Raises:
            SlotNotFound: If the id is unknown
            InvalidSlotTransition: If the slot is not available
        """
        slot = self.get(slot_id)
        if slot.status is not SlotStatus.AVAILABLE:
            raise InvalidSlotTransition(
                f"Slot {slot_id} is {slot.status.value} and cannot be booked"
            )
        booked = slot.with_status(SlotStatus.BOOKED, booking_ref=booking_ref)
        self._slots[slot_id] = booked
        return booked

    def cancel_booking(self, slot_id: str, release: bool = True) -> Optional[TimeSlot]:
        """
        Cancel the booking on a slot.

        With ``release`` the slot goes back to available and is returned;
        otherwise it is deleted and None is returned.

        Raises:
            SlotNotFound: If the id is unknown
            InvalidSlotTransition: If the slot is not booked
        """
        slot = self.get(slot_id)
        if slot.status is not SlotStatus.BOOKED:
            raise InvalidSlotTransition(
                f"Slot {slot_id} is {slot.status.value}, there is no booking to cancel"
            )
        if release:
            released = slot.with_status(SlotStatus.AVAILABLE)
            self._slots[slot_id] = released
            return released

        self._unindex(slot)
        return None

    def set_day_availability(
        self,
        date,
        available: bool,
        default_grid: Iterable[Tuple[time, time]],
    ) -> DayResult:
        """
        Mark a whole day available or unavailable.

        Available: every non-booked slot of the day is replaced by the default
        grid. Grid intervals that would overlap a booked slot are skipped
        rather than rejecting the operation.

        Unavailable: every non-booked slot of the day is removed. Booked slots
        stay, and the result is flagged ``partially_cleared``.
        """
        day = as_date(date)
        existing = self.query_slots_for_date(day)
        booked = [s for s in existing if s.status is SlotStatus.BOOKED]
        result = DayResult()

        for slot in existing:
            if slot.status is not SlotStatus.BOOKED:
                self._unindex(slot)
                result.removed.append(slot)

        if not available:
            result.partially_cleared = bool(booked)
            return result

        for start, end in default_grid:
            draft = SlotDraft(date=day, start_time=start, end_time=end)
            if any(slot.conflicts_with(draft) for slot in booked):
                result.skipped.append((start, end))
                continue
            slot = TimeSlot.from_draft(draft, slot_id=self._id_factory(), helper_id=self.helper_id)
            self._index(slot)
            result.inserted.append(slot)

        return result

    # ------------------------------------------------------------------
    # Merge primitives (rollback, hydration and reconciliation)
    # ------------------------------------------------------------------

    def put(self, slot: TimeSlot) -> Optional[TimeSlot]:
        """Insert or replace a slot by id without validation; returns the previous value."""
        previous = self._slots.get(slot.id)
        if previous is not None:
            self._unindex(previous)
        self._index(slot)
        return previous

    def restore(self, slots: Iterable[TimeSlot]) -> None:
        """Put back previously removed or replaced slots."""
        for slot in slots:
            self.put(slot)

    def discard(self, slot_ids: Iterable[str]) -> List[TimeSlot]:
        """Drop slots by id without status checks; unknown ids are ignored."""
        dropped: List[TimeSlot] = []
        for slot_id in slot_ids:
            slot = self._slots.get(slot_id)
            if slot is not None:
                self._unindex(slot)
                dropped.append(slot)
        return dropped

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _index(self, slot: TimeSlot) -> None:
        self._slots[slot.id] = slot
        self._by_date.setdefault(slot.date, set()).add(slot.id)

    def _unindex(self, slot: TimeSlot) -> None:
        self._slots.pop(slot.id, None)
        ids = self._by_date.get(slot.date)
        if ids is not None:
            ids.discard(slot.id)
            if not ids:
                del self._by_date[slot.date]

    def _first_blocking(self, draft: SlotDraft) -> Optional[TimeSlot]:
        for slot in self.query_slots_for_date(draft.date):
            if slot.is_blocking and slot.conflicts_with(draft):
                return slot
        return None

    @staticmethod
    def _first_blocking_draft(draft: SlotDraft, accepted: Sequence[SlotDraft]) -> Optional[SlotDraft]:
        for other in accepted:
            if other.conflicts_with(draft):
                return other
        return None

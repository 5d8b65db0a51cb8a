"""
Application service turning helper intents into slot changes.

The controller applies every change to its local ``SlotStore`` synchronously
(optimistic local-first), then persists it through the sync gateway with
retries. Each operation moves through

    IDLE -> VALIDATING -> APPLYING -> PERSISTING -> CONFIRMED | ROLLED_BACK | SUPERSEDED

Validation failures go straight from VALIDATING to ROLLED_BACK without
touching the store. Every operation gets a monotonic sequence number that is
recorded per slot it touches; a later operation on the same slot supersedes
the earlier one for that slot, so stale responses are discarded instead of
undoing newer edits.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import time
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Tuple, Union

import pendulum
from pendulum import Date, DateTime

from ..config import AppConfig, DefaultsConfig, GridConfig, SyncConfig
from ..domain.exceptions import (
    InvalidDate,
    InvalidTimeFormat,
    PersistenceError,
    PersistenceFailed,
    RemoteConflict,
    SchedulingError,
    SlotConflictError,
)
from ..domain.models import (
    Recurrence,
    RecurrencePattern,
    SlotChange,
    SlotDraft,
    SlotStatus,
    TimeSlot,
)
from ..domain.recurrence import RecurrenceExpander
from ..domain.slot_store import SlotStore
from ..domain.time_grid import as_date, format_clock_time, is_aligned, parse_clock_time
from .sync_gateway import RemoteSnapshot, SyncGatewayProtocol, Unsubscribe

logger = logging.getLogger(__name__)

ClockInput = Union[str, time]
ChangeListener = Callable[[SlotChange], None]
NoticeListener = Callable[[SchedulingError], None]

_FULL_RANGE = (pendulum.date(1, 1, 1), pendulum.date(9999, 12, 31))


class OperationState(str, Enum):
    """Lifecycle of one user-issued write."""
    IDLE = "idle"
    VALIDATING = "validating"
    APPLYING = "applying"
    PERSISTING = "persisting"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"
    SUPERSEDED = "superseded"


_ALLOWED_TRANSITIONS: Dict[OperationState, Set[OperationState]] = {
    OperationState.IDLE: {OperationState.VALIDATING},
    OperationState.VALIDATING: {OperationState.APPLYING, OperationState.ROLLED_BACK},
    OperationState.APPLYING: {OperationState.PERSISTING, OperationState.CONFIRMED},
    OperationState.PERSISTING: {
        OperationState.CONFIRMED,
        OperationState.ROLLED_BACK,
        OperationState.SUPERSEDED,
    },
}


@dataclass
class PendingOperation:
    """
    Book-keeping for one write: what it changed and how to undo it.

    ``before`` maps each touched slot id to its value prior to the operation
    (None when the slot did not exist).
    """
    seq: int
    kind: str
    state: OperationState = OperationState.IDLE
    history: List[Tuple[OperationState, DateTime]] = field(default_factory=list)
    writes: Dict[str, TimeSlot] = field(default_factory=dict)
    deletes: Set[str] = field(default_factory=set)
    before: Dict[str, Optional[TimeSlot]] = field(default_factory=dict)

    def advance(self, state: OperationState) -> None:
        if state not in _ALLOWED_TRANSITIONS.get(self.state, set()):
            raise RuntimeError(
                f"Operation {self.seq} cannot move from {self.state.value} to {state.value}"
            )
        self.state = state
        self.history.append((state, pendulum.now("UTC")))

    @property
    def slot_ids(self) -> List[str]:
        return list(self.before)


@dataclass
class OperationResult:
    """Value returned by every controller write; failures never raise."""
    ok: bool
    state: OperationState
    seq: int = 0
    slots: List[TimeSlot] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    error: Optional[SchedulingError] = None
    partially_cleared: bool = False


class AvailabilityController:
    """
    Single owner of one helper's schedule view.

    The controller is the only component that talks to the sync gateway.
    Store mutations never suspend; the only suspension points are gateway
    calls and retry back-off sleeps.
    """

    def __init__(
        self,
        helper_id: str,
        gateway: SyncGatewayProtocol,
        *,
        grid: Optional[GridConfig] = None,
        defaults: Optional[DefaultsConfig] = None,
        sync: Optional[SyncConfig] = None,
        window: Optional[Tuple[Date, Date]] = None,
        store: Optional[SlotStore] = None,
        timezone: str = "UTC",
    ) -> None:
        self.helper_id = helper_id
        self.timezone = timezone
        self.grid = grid or GridConfig()
        self.defaults = defaults or DefaultsConfig()
        self.sync = sync or SyncConfig()
        self.store = store or SlotStore(helper_id, window=window)
        self.notes = ""

        self._gateway = gateway
        self._expander = RecurrenceExpander(max_instances=self.defaults.max_series_instances)
        self._default_grid = self.grid.default_grid()
        self._seq = itertools.count(1)
        self._pending: Dict[str, int] = {}
        self._operations: Dict[int, PendingOperation] = {}
        self._revision = -1
        self._last_snapshot: Optional[RemoteSnapshot] = None
        self._unsubscribe: Optional[Unsubscribe] = None
        self._listeners: List[ChangeListener] = []
        self._notice_listeners: List[NoticeListener] = []

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        gateway: SyncGatewayProtocol,
        today: Optional[Date] = None,
    ) -> "AvailabilityController":
        """Build a controller whose window starts today in the helper's timezone."""
        start = as_date(today) if today is not None else pendulum.today(config.timezone).date()
        return cls(
            config.helper_id,
            gateway,
            grid=config.grid,
            defaults=config.defaults,
            sync=config.sync,
            window=(start, start.add(days=config.defaults.window_days)),
            timezone=config.timezone,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> OperationResult:
        """Hydrate the store from the gateway and subscribe to pushes."""
        start_date, end_date = self.store.window or _FULL_RANGE
        last_error: Optional[PersistenceError] = None

        for attempt in range(self.sync.max_attempts):
            try:
                slots = await self._gateway.load_slots(self.helper_id, start_date, end_date)
                break
            except PersistenceError as exc:
                last_error = exc
                logger.warning(
                    "Loading slots for helper %s failed (attempt %d/%d): %s",
                    self.helper_id, attempt + 1, self.sync.max_attempts, exc,
                )
                if attempt + 1 < self.sync.max_attempts:
                    await self._backoff(attempt)
        else:
            error = PersistenceFailed(
                f"Could not load slots for helper {self.helper_id}: {last_error}"
            )
            error.__cause__ = last_error
            return OperationResult(ok=False, state=OperationState.ROLLED_BACK, error=error)

        for slot in slots:
            self.store.put(slot)
            self._emit(SlotChange(slot.id, slot.status))

        if self._unsubscribe is None:
            self._unsubscribe = self._gateway.subscribe(self.helper_id, self.reconcile_remote)

        logger.info("Loaded %d slot(s) for helper %s", len(slots), self.helper_id)
        return OperationResult(ok=True, state=OperationState.CONFIRMED, slots=list(slots))

    def stop(self) -> None:
        """Stop receiving pushes."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def add_listener(self, listener: ChangeListener) -> Callable[[], None]:
        """Receive a ``SlotChange`` for every local slot change."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def add_notice_listener(self, listener: NoticeListener) -> Callable[[], None]:
        """Receive ``PersistenceFailed`` and ``RemoteConflict`` notices."""
        self._notice_listeners.append(listener)
        return lambda: self._notice_listeners.remove(listener)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_slots_for_date(self, date) -> List[TimeSlot]:
        return self.store.query_slots_for_date(date)

    def is_day_available(self, date) -> bool:
        """Derived from the store: every default grid slot is present."""
        return self.store.all_default_slots_present(date, self._default_grid)

    def get_upcoming_bookings(self, today=None) -> List[TimeSlot]:
        """Booked slots from today on, ordered by date and start time."""
        start = as_date(today) if today is not None else pendulum.today(self.timezone).date()
        return self.store.upcoming_bookings(start)

    def has_pending(self, slot_id: str) -> bool:
        return slot_id in self._pending

    @property
    def pending_operations(self) -> List[PendingOperation]:
        return list(self._operations.values())

    def set_defaults(
        self,
        buffer_before: Optional[int] = None,
        buffer_after: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> None:
        """Change the buffers and notes used for newly toggled slots."""
        updates = {
            key: value
            for key, value in (("buffer_before", buffer_before), ("buffer_after", buffer_after))
            if value is not None
        }
        if updates:
            self.defaults = DefaultsConfig(**{**self.defaults.model_dump(), **updates})
        if notes is not None:
            self.notes = notes

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def toggle_slot(self, date, start: ClockInput, end: ClockInput) -> OperationResult:
        """
        Remove the identical slot if it exists, otherwise add it.

        An identical unavailable slot is made available again instead of
        being removed. A conflicting request fails with ``SlotConflictError``
        naming the blocking slot; it is never silently dropped.
        """
        op = self._begin("toggle")
        try:
            day = as_date(date)
            start_time, end_time = self._aligned_interval(start, end)

            existing = self.store.find_slot(day, start_time, end_time)
            if existing is not None and existing.status is SlotStatus.UNAVAILABLE:
                batch = self.store.reopen(existing.id)
                if not batch.ok:
                    raise SlotConflictError(batch.conflicts)
                op.advance(OperationState.APPLYING)
                self._track_write(op, batch.inserted[0], previous=existing)
            elif existing is not None:
                removed = self.store.remove(existing.id)
                op.advance(OperationState.APPLYING)
                self._track_delete(op, removed)
            else:
                draft = SlotDraft(
                    date=day,
                    start_time=start_time,
                    end_time=end_time,
                    buffer_before=self.defaults.buffer_before,
                    buffer_after=self.defaults.buffer_after,
                    notes=self.notes,
                )
                batch = self.store.insert_batch([draft])
                if not batch.ok:
                    raise SlotConflictError(batch.conflicts)
                op.advance(OperationState.APPLYING)
                for slot in batch.inserted:
                    self._track_write(op, slot, previous=None)
        except SchedulingError as exc:
            return self._reject(op, exc)

        return await self._persist(op)

    async def create_recurring_series(
        self,
        anchor_draft: SlotDraft,
        pattern: Union[RecurrencePattern, str],
        until_date=None,
    ) -> OperationResult:
        """
        Create the anchor and every generated instance, or nothing at all.

        Without ``until_date`` the series runs for ``defaults.recurrence_weeks``
        weeks after the anchor.
        """
        op = self._begin("series")
        try:
            recurrence = self._recurrence_for(anchor_draft, pattern, until_date)
            self._aligned_interval(anchor_draft.start_time, anchor_draft.end_time)
            anchor = replace(
                anchor_draft,
                recurrence=recurrence,
                series_id=uuid.uuid4().hex if recurrence.is_recurring else None,
            )
            instances = self._expander.expand(anchor, recurrence)

            batch = self.store.insert_batch([anchor, *instances])
            if not batch.ok:
                raise SlotConflictError(batch.conflicts)
            op.advance(OperationState.APPLYING)
            for slot in batch.inserted:
                self._track_write(op, slot, previous=None)
        except SchedulingError as exc:
            return self._reject(op, exc)

        logger.debug(
            "Series %s for helper %s: anchor plus %d instance(s)",
            anchor.series_id, self.helper_id, len(instances),
        )
        return await self._persist(op)

    async def set_day_availability(self, date, available: bool) -> OperationResult:
        """
        Mark a whole day available (default grid) or unavailable.

        Booked slots always survive; when they prevent a full clear the result
        is flagged ``partially_cleared`` so the caller can warn the user.
        """
        op = self._begin("day")
        try:
            day = as_date(date)
        except SchedulingError as exc:
            return self._reject(op, exc)

        outcome = self.store.set_day_availability(day, available, self._default_grid)
        op.advance(OperationState.APPLYING)
        for slot in outcome.removed:
            self._track_delete(op, slot)
        for slot in outcome.inserted:
            self._track_write(op, slot, previous=None)

        if outcome.skipped:
            logger.debug(
                "Skipped %d grid slot(s) on %s next to bookings",
                len(outcome.skipped), day.to_date_string(),
            )

        result = await self._persist(op)
        if result.ok:
            result.partially_cleared = outcome.partially_cleared
        return result

    async def remove_slot(self, slot_id: str) -> OperationResult:
        """Delete a slot without a booking (for example one series instance)."""
        op = self._begin("remove")
        try:
            removed = self.store.remove(slot_id)
        except SchedulingError as exc:
            return self._reject(op, exc)

        op.advance(OperationState.APPLYING)
        self._track_delete(op, removed)
        return await self._persist(op)

    async def cancel_booking(self, slot_id: str, release: bool = True) -> OperationResult:
        """
        Cancel the booking on a slot.

        The slot returns to available; without ``release`` it is then removed
        as a separate write, so the backing store never sees a booked row
        being deleted.
        """
        op = self._begin("cancel")
        try:
            before = self.store.get(slot_id)
            after = self.store.cancel_booking(slot_id, release=True)
        except SchedulingError as exc:
            return self._reject(op, exc)

        op.advance(OperationState.APPLYING)
        self._track_write(op, after, previous=before)
        result = await self._persist(op)

        if release or not result.ok:
            return result
        return await self.remove_slot(slot_id)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile_remote(self, snapshot: RemoteSnapshot) -> None:
        """
        Merge a pushed snapshot into the local store.

        - snapshots older than the last seen revision are ignored
        - a slot with a pending (unconfirmed) local mutation keeps its local value
        - slots present only remotely are adopted as-is
        - confirmed local slots take the remote value, or are removed when the
          snapshot no longer contains them

        Only slots inside the store window are considered.
        """
        if snapshot.helper_id != self.helper_id:
            return
        if snapshot.revision < self._revision:
            logger.debug(
                "Ignoring stale snapshot r%d for helper %s (at r%d)",
                snapshot.revision, self.helper_id, self._revision,
            )
            return
        self._revision = snapshot.revision
        self._last_snapshot = snapshot

        remote = {slot.id: slot for slot in snapshot.slots if self.store.covers(slot.date)}

        for slot_id, slot in remote.items():
            if slot_id in self._pending:
                continue
            current = self.store.get(slot_id) if slot_id in self.store else None
            if current != slot:
                self.store.put(slot)
                self._emit(SlotChange(slot_id, slot.status))

        for slot in self.store.all_slots():
            if slot.id in remote or slot.id in self._pending:
                continue
            if not self.store.covers(slot.date):
                continue
            self.store.discard([slot.id])
            self._emit(SlotChange(slot.id, None))

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _persist(self, op: PendingOperation) -> OperationResult:
        if not op.before:
            op.advance(OperationState.CONFIRMED)
            return self._finish(op, ok=True)

        op.advance(OperationState.PERSISTING)
        last_error: Optional[PersistenceError] = None

        for attempt in range(self.sync.max_attempts):
            live = self._live_ids(op)
            if not live:
                return self._supersede(op)

            inserts = [op.writes[slot_id] for slot_id in live if slot_id in op.writes]
            deletes = [slot_id for slot_id in live if slot_id in op.deletes]

            try:
                revision = await self._gateway.persist_batch(self.helper_id, inserts, deletes)
            except RemoteConflict as exc:
                if not self._live_ids(op):
                    return self._supersede(op)
                logger.warning(
                    "Backing store rejected operation %d for helper %s: %s",
                    op.seq, self.helper_id, exc,
                )
                self._rollback(op)
                self._notify(exc)
                return self._finish(op, ok=False, error=exc)
            except PersistenceError as exc:
                last_error = exc
                logger.warning(
                    "Persisting operation %d for helper %s failed (attempt %d/%d): %s",
                    op.seq, self.helper_id, attempt + 1, self.sync.max_attempts, exc,
                )
                if attempt + 1 < self.sync.max_attempts:
                    await self._backoff(attempt)
                continue

            confirmed = self._live_ids(op)
            if not confirmed:
                return self._supersede(op)
            for slot_id in confirmed:
                del self._pending[slot_id]
            self._revision = max(self._revision, revision)
            op.advance(OperationState.CONFIRMED)
            logger.info(
                "Operation %d (%s) confirmed for helper %s at r%d",
                op.seq, op.kind, self.helper_id, revision,
            )
            return self._finish(op, ok=True)

        if not self._live_ids(op):
            return self._supersede(op)

        error = PersistenceFailed(
            f"Could not save changes after {self.sync.max_attempts} attempt(s): {last_error}"
        )
        error.__cause__ = last_error
        self._rollback(op)
        self._notify(error)
        return self._finish(op, ok=False, error=error)

    async def _backoff(self, attempt: int) -> None:
        delay = self.sync.delay_for(attempt)
        if delay > 0:
            await asyncio.sleep(delay)

    def _rollback(self, op: PendingOperation) -> None:
        """
        Undo the operation for every slot no newer operation has claimed.

        Snapshots pushed while the slots were pending were skipped for them,
        so the restored slots are then merged with the last snapshot seen.
        """
        restored = self._live_ids(op)
        for slot_id in restored:
            previous = op.before[slot_id]
            if previous is None:
                self.store.discard([slot_id])
                self._emit(SlotChange(slot_id, None))
            else:
                self.store.put(previous)
                self._emit(SlotChange(slot_id, previous.status))
            del self._pending[slot_id]

        op.advance(OperationState.ROLLED_BACK)
        logger.warning("Rolled back operation %d (%s) for helper %s", op.seq, op.kind, self.helper_id)
        self._resync(restored)

    def _resync(self, slot_ids: List[str]) -> None:
        """Apply the last snapshot to the given slots, if it is still current."""
        snapshot = self._last_snapshot
        if snapshot is None or snapshot.revision < self._revision:
            return

        remote = {slot.id: slot for slot in snapshot.slots}
        for slot_id in slot_ids:
            if slot_id in self._pending:
                continue
            slot = remote.get(slot_id)
            if slot is not None:
                if not self.store.covers(slot.date):
                    continue
                current = self.store.get(slot_id) if slot_id in self.store else None
                if current != slot:
                    self.store.put(slot)
                    self._emit(SlotChange(slot_id, slot.status))
            elif slot_id in self.store and self.store.covers(self.store.get(slot_id).date):
                self.store.discard([slot_id])
                self._emit(SlotChange(slot_id, None))

    def _supersede(self, op: PendingOperation) -> OperationResult:
        op.advance(OperationState.SUPERSEDED)
        logger.debug("Operation %d superseded by a newer edit; response discarded", op.seq)
        return self._finish(op, ok=True)

    def _live_ids(self, op: PendingOperation) -> List[str]:
        return [slot_id for slot_id in op.slot_ids if self._pending.get(slot_id) == op.seq]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _begin(self, kind: str) -> PendingOperation:
        op = PendingOperation(seq=next(self._seq), kind=kind)
        op.advance(OperationState.VALIDATING)
        self._operations[op.seq] = op
        return op

    def _reject(self, op: PendingOperation, error: SchedulingError) -> OperationResult:
        op.advance(OperationState.ROLLED_BACK)
        logger.info("Rejected %s for helper %s: %s", op.kind, self.helper_id, error)
        return self._finish(op, ok=False, error=error)

    def _finish(
        self,
        op: PendingOperation,
        ok: bool,
        error: Optional[SchedulingError] = None,
    ) -> OperationResult:
        self._operations.pop(op.seq, None)
        return OperationResult(
            ok=ok,
            state=op.state,
            seq=op.seq,
            slots=list(op.writes.values()),
            removed=sorted(op.deletes),
            error=error,
        )

    def _claim(self, op: PendingOperation, slot_id: str, previous: Optional[TimeSlot]) -> None:
        op.before.setdefault(slot_id, previous)
        self._pending[slot_id] = op.seq

    def _track_write(
        self,
        op: PendingOperation,
        slot: TimeSlot,
        previous: Optional[TimeSlot],
    ) -> None:
        self._claim(op, slot.id, previous)
        op.writes[slot.id] = slot
        op.deletes.discard(slot.id)
        self._emit(SlotChange(slot.id, slot.status))

    def _track_delete(self, op: PendingOperation, slot: TimeSlot) -> None:
        self._claim(op, slot.id, slot)
        op.writes.pop(slot.id, None)
        op.deletes.add(slot.id)
        self._emit(SlotChange(slot.id, None))

    def _aligned_interval(self, start: ClockInput, end: ClockInput) -> Tuple[time, time]:
        start_time = parse_clock_time(start) if isinstance(start, str) else start
        end_time = parse_clock_time(end) if isinstance(end, str) else end
        granularity = self.grid.granularity_minutes

        for value in (start_time, end_time):
            if not is_aligned(value, granularity):
                raise InvalidTimeFormat(
                    f"{format_clock_time(value)} is not on the {granularity} minute grid"
                )
        if start_time >= end_time:
            raise InvalidTimeFormat(
                f"Start time {format_clock_time(start_time)} must be before "
                f"end time {format_clock_time(end_time)}"
            )
        return start_time, end_time

    def _recurrence_for(
        self,
        anchor: SlotDraft,
        pattern: Union[RecurrencePattern, str],
        until_date,
    ) -> Recurrence:
        try:
            pattern = RecurrencePattern(pattern)
        except ValueError:
            raise InvalidDate(f"Unknown recurrence pattern {pattern!r}") from None

        if pattern is RecurrencePattern.NONE:
            return Recurrence()
        if until_date is None:
            until = anchor.date.add(weeks=self.defaults.recurrence_weeks)
        else:
            until = as_date(until_date)
        return Recurrence(pattern=pattern, until_date=until)

    def _emit(self, change: SlotChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("Slot change listener failed for %s", change.slot_id)

    def _notify(self, error: SchedulingError) -> None:
        for listener in list(self._notice_listeners):
            try:
                listener(error)
            except Exception:
                logger.exception("Notice listener failed")

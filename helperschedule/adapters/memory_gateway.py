"""
In-memory sync gateway for tests, demos and the CLI.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from pendulum import Date

from ..domain.exceptions import (
    InvalidSlotTransition,
    PersistenceError,
    RemoteConflict,
    SlotNotFound,
)
from ..domain.models import SlotStatus, TimeSlot, buffered_overlap
from ..services.sync_gateway import RemoteSnapshot, Unsubscribe

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[RemoteSnapshot], None]


class InMemorySyncGateway:
    """
    Simulated backing store with the behaviour of the real one.

    Rows are kept per helper together with a revision counter. Every write is
    re-validated server-side (overlaps with buffers, deleting booked rows) and
    pushed to subscribers as a full snapshot. Failures and latency can be
    injected to exercise the controller's retry and rollback paths.
    """

    def __init__(self, latency: float = 0.0, auto_publish: bool = True):
        """
        Initialize the gateway.

        Args:
            latency: Seconds every persist call waits before completing
            auto_publish: Push a snapshot to subscribers after each write
        """
        self.latency = latency
        self.auto_publish = auto_publish
        self.persist_calls: List[Dict[str, object]] = []
        self._rows: Dict[str, Dict[str, TimeSlot]] = {}
        self._revisions: Dict[str, int] = {}
        self._subscribers: Dict[str, List[SnapshotCallback]] = {}
        self._failures: List[Exception] = []

    # ------------------------------------------------------------------
    # Seeding and inspection
    # ------------------------------------------------------------------

    @classmethod
    def from_json(cls, data_file: Path, **kwargs) -> "InMemorySyncGateway":
        gateway = cls(**kwargs)
        gateway.load_json(data_file)
        return gateway

    def load_json(self, data_file: Path) -> int:
        """
        Load rows from a JSON file holding a list of canonical slot rows.

        A missing file leaves the gateway empty. Returns the number of rows.
        """
        if not data_file.exists():
            return 0

        with open(data_file, "r", encoding="utf-8") as f:
            rows = json.load(f)

        if not isinstance(rows, list):
            raise ValueError(f"{data_file} must contain a list of slot rows")

        for row in rows:
            self.seed([TimeSlot.from_dict(row)])
        return len(rows)

    def dump_json(self, data_file: Path) -> None:
        """Write every helper's rows to a JSON file."""
        rows = [
            slot.to_dict()
            for helper_id in sorted(self._rows)
            for slot in self.rows(helper_id)
        ]
        data_file.parent.mkdir(parents=True, exist_ok=True)
        with open(data_file, "w", encoding="utf-8") as f:
            json.dump(rows, f, indent=2)

    def seed(self, slots: Sequence[TimeSlot]) -> None:
        """Insert rows directly, without validation, revision bump or push."""
        for slot in slots:
            self._rows.setdefault(slot.helper_id, {})[slot.id] = slot
            self._revisions.setdefault(slot.helper_id, 0)

    def rows(self, helper_id: str) -> List[TimeSlot]:
        """Current rows of a helper, ordered by date and start time."""
        return sorted(
            self._rows.get(helper_id, {}).values(),
            key=lambda s: (s.date, s.start_time, s.end_time),
        )

    def revision(self, helper_id: str) -> int:
        return self._revisions.get(helper_id, 0)

    def snapshot(self, helper_id: str) -> RemoteSnapshot:
        return RemoteSnapshot(
            helper_id=helper_id,
            revision=self.revision(helper_id),
            slots=self.rows(helper_id),
        )

    def fail_next(self, count: int = 1, error: Optional[Exception] = None) -> None:
        """Make the next ``count`` persist calls raise ``error``."""
        for _ in range(count):
            self._failures.append(error or PersistenceError("Simulated backing store outage"))

    # ------------------------------------------------------------------
    # SyncGatewayProtocol
    # ------------------------------------------------------------------

    async def load_slots(self, helper_id: str, start_date: Date, end_date: Date) -> List[TimeSlot]:
        return [
            slot for slot in self.rows(helper_id)
            if start_date <= slot.date <= end_date
        ]

    async def persist_batch(
        self,
        helper_id: str,
        inserts: Sequence[TimeSlot],
        deletes: Sequence[str],
    ) -> int:
        """
        Apply a batch atomically after re-validating it against stored rows.

        Raises:
            PersistenceError: When a failure was injected with ``fail_next``
            RemoteConflict: When the batch deletes a booked row or overlaps
                another stored row
        """
        self.persist_calls.append(
            {"helper_id": helper_id, "inserts": list(inserts), "deletes": list(deletes)}
        )

        if self.latency:
            await asyncio.sleep(self.latency)

        if self._failures:
            raise self._failures.pop(0)

        current = self._rows.get(helper_id, {})
        self._validate(helper_id, current, inserts, deletes)

        updated = {slot_id: slot for slot_id, slot in current.items() if slot_id not in deletes}
        for slot in inserts:
            updated[slot.id] = slot

        self._rows[helper_id] = updated
        return self._bump(helper_id)

    def subscribe(self, helper_id: str, on_change: SnapshotCallback) -> Unsubscribe:
        callbacks = self._subscribers.setdefault(helper_id, [])
        callbacks.append(on_change)

        def unsubscribe() -> None:
            if on_change in callbacks:
                callbacks.remove(on_change)

        return unsubscribe

    # ------------------------------------------------------------------
    # External events
    # ------------------------------------------------------------------

    def claim(self, helper_id: str, slot_id: str, booking_ref: str) -> TimeSlot:
        """
        Book a stored slot on behalf of a customer's service request.

        Raises:
            SlotNotFound: If the row does not exist
            InvalidSlotTransition: If the row is not available
        """
        rows = self._rows.get(helper_id, {})
        slot = rows.get(slot_id)
        if slot is None:
            raise SlotNotFound(f"Slot {slot_id} does not exist")
        if slot.status is not SlotStatus.AVAILABLE:
            raise InvalidSlotTransition(f"Slot {slot_id} is {slot.status.value}")

        booked = slot.with_status(SlotStatus.BOOKED, booking_ref=booking_ref)
        rows[slot_id] = booked
        self._bump(helper_id)
        return booked

    def publish(self, helper_id: str, snapshot: Optional[RemoteSnapshot] = None) -> None:
        """Push a snapshot (the current one by default) to subscribers."""
        snapshot = snapshot or self.snapshot(helper_id)
        for callback in list(self._subscribers.get(helper_id, [])):
            callback(snapshot)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _bump(self, helper_id: str) -> int:
        revision = self._revisions.get(helper_id, 0) + 1
        self._revisions[helper_id] = revision
        if self.auto_publish:
            self.publish(helper_id)
        return revision

    @staticmethod
    def _validate(
        helper_id: str,
        current: Dict[str, TimeSlot],
        inserts: Sequence[TimeSlot],
        deletes: Sequence[str],
    ) -> None:
        for slot_id in deletes:
            existing = current.get(slot_id)
            if existing is not None and existing.status is SlotStatus.BOOKED:
                raise RemoteConflict(
                    f"Slot {slot_id} is booked and cannot be deleted", slot_ids=[slot_id]
                )

        written = {slot.id for slot in inserts}
        remaining = [
            slot for slot_id, slot in current.items()
            if slot_id not in deletes and slot_id not in written
        ]

        for index, slot in enumerate(inserts):
            if slot.helper_id != helper_id:
                raise RemoteConflict(
                    f"Slot {slot.id} belongs to helper {slot.helper_id}", slot_ids=[slot.id]
                )
            if not slot.is_blocking:
                continue

            others = remaining + list(inserts[:index])
            for other in others:
                if other.is_blocking and buffered_overlap(slot, other):
                    raise RemoteConflict(
                        f"Slot {slot.id} ({slot.label()}) overlaps stored slot "
                        f"{other.id} ({other.label()}) on {slot.date.to_date_string()}",
                        slot_ids=[slot.id, other.id],
                    )

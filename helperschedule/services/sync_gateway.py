"""
Persistence and push-notification boundary used by the controller.

Only the protocol lives here; implementations are adapters. Any backing
store works as long as it round-trips the ``TimeSlot`` row schema.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Protocol, Sequence

from pendulum import Date

from ..domain.models import TimeSlot


@dataclass(frozen=True)
class RemoteSnapshot:
    """
    A helper's rows as seen by the backing store at one revision.

    Revisions grow monotonically per helper; a snapshot with a lower revision
    than one already seen is stale.
    """
    helper_id: str
    revision: int
    slots: List[TimeSlot] = field(default_factory=list)


Unsubscribe = Callable[[], None]


class SyncGatewayProtocol(Protocol):
    """Protocol describing the backing store behaviour needed by the controller."""

    async def load_slots(
        self,
        helper_id: str,
        start_date: Date,
        end_date: Date,
    ) -> List[TimeSlot]:
        """Return the helper's slots dated within the range (inclusive)."""

    async def persist_batch(
        self,
        helper_id: str,
        inserts: Sequence[TimeSlot],
        deletes: Sequence[str],
    ) -> int:
        """
        Atomically write rows by id (insert or replace) and delete ids.

        Returns the new revision. Raises ``PersistenceError`` on transient
        failure and ``RemoteConflict`` when the store rejects the change.
        """

    def subscribe(
        self,
        helper_id: str,
        on_change: Callable[[RemoteSnapshot], None],
    ) -> Unsubscribe:
        """Register for change pushes; delivery is at-least-once and unordered."""

"""
Tests for the in-memory sync gateway.
"""

import asyncio
import json
from datetime import time

import pendulum
import pytest

from helperschedule.adapters.memory_gateway import InMemorySyncGateway
from helperschedule.domain.exceptions import (
    InvalidSlotTransition,
    PersistenceError,
    RemoteConflict,
    SlotNotFound,
)
from helperschedule.domain.models import SlotStatus, TimeSlot

DAY = pendulum.date(2024, 1, 8)


def _slot(slot_id, start, end, helper_id="helper-1", **kwargs):
    return TimeSlot(
        id=slot_id,
        helper_id=helper_id,
        date=kwargs.pop("date", DAY),
        start_time=start,
        end_time=end,
        **kwargs,
    )


class TestPersistBatch:
    """Tests for server-side validation and revisions."""

    def test_persist_and_load(self, gateway):
        slot = _slot("a", time(9, 0), time(10, 0))
        later = _slot("b", time(9, 0), time(10, 0), date=DAY.add(days=30))

        revision = asyncio.run(gateway.persist_batch("helper-1", [slot, later], []))
        loaded = asyncio.run(gateway.load_slots("helper-1", DAY, DAY.add(days=7)))

        assert revision == 1
        assert loaded == [slot]

    def test_delete_booked_row_is_rejected(self, gateway, booked_slot):
        gateway.seed([booked_slot])

        with pytest.raises(RemoteConflict) as exc_info:
            asyncio.run(gateway.persist_batch("helper-1", [], [booked_slot.id]))

        assert exc_info.value.slot_ids == [booked_slot.id]
        assert gateway.rows("helper-1") == [booked_slot]

    def test_overlap_is_rejected(self, gateway):
        gateway.seed([_slot("a", time(9, 0), time(10, 0), buffer_after=15)])

        with pytest.raises(RemoteConflict) as exc_info:
            asyncio.run(gateway.persist_batch("helper-1", [_slot("b", time(10, 0), time(11, 0))], []))

        assert exc_info.value.slot_ids == ["b", "a"]
        assert gateway.revision("helper-1") == 0

    def test_replacing_and_deleting_in_one_batch(self, gateway):
        gateway.seed([_slot("a", time(9, 0), time(10, 0))])

        asyncio.run(gateway.persist_batch("helper-1", [_slot("b", time(9, 30), time(10, 30))], ["a"]))

        assert [slot.id for slot in gateway.rows("helper-1")] == ["b"]

    def test_wrong_helper_is_rejected(self, gateway):
        with pytest.raises(RemoteConflict):
            asyncio.run(
                gateway.persist_batch("helper-1", [_slot("a", time(9, 0), time(10, 0), helper_id="helper-2")], [])
            )

    def test_injected_failure(self, gateway):
        gateway.fail_next()

        with pytest.raises(PersistenceError):
            asyncio.run(gateway.persist_batch("helper-1", [_slot("a", time(9, 0), time(10, 0))], []))

        assert gateway.rows("helper-1") == []
        assert len(gateway.persist_calls) == 1


class TestSubscriptions:
    """Tests for snapshot pushes."""

    def test_subscribers_receive_snapshots(self, gateway):
        snapshots = []
        unsubscribe = gateway.subscribe("helper-1", snapshots.append)

        asyncio.run(gateway.persist_batch("helper-1", [_slot("a", time(9, 0), time(10, 0))], []))
        unsubscribe()
        asyncio.run(gateway.persist_batch("helper-1", [], ["a"]))

        assert len(snapshots) == 1
        assert snapshots[0].revision == 1
        assert [slot.id for slot in snapshots[0].slots] == ["a"]

    def test_claim_books_and_publishes(self, gateway):
        gateway.seed([_slot("a", time(9, 0), time(10, 0))])
        snapshots = []
        gateway.subscribe("helper-1", snapshots.append)

        booked = gateway.claim("helper-1", "a", "request-1")

        assert booked.status is SlotStatus.BOOKED
        assert snapshots[0].slots == [booked]

    def test_claim_errors(self, gateway, booked_slot):
        gateway.seed([booked_slot])

        with pytest.raises(SlotNotFound):
            gateway.claim("helper-1", "missing", "request-2")
        with pytest.raises(InvalidSlotTransition):
            gateway.claim("helper-1", booked_slot.id, "request-2")


class TestJsonFile:
    """Tests for loading and saving the data file."""

    def test_dump_and_load(self, tmp_path, booked_slot):
        data_file = tmp_path / "schedule.json"
        gateway = InMemorySyncGateway()
        gateway.seed([booked_slot, _slot("a", time(14, 0), time(15, 0), notes="Garden")])

        gateway.dump_json(data_file)
        reloaded = InMemorySyncGateway.from_json(data_file)

        assert reloaded.rows("helper-1") == gateway.rows("helper-1")
        assert json.loads(data_file.read_text())[0]["booking_ref"] == "request-1"

    def test_missing_file(self, tmp_path):
        gateway = InMemorySyncGateway()

        assert gateway.load_json(tmp_path / "missing.json") == 0

    def test_file_must_hold_a_list(self, tmp_path):
        data_file = tmp_path / "schedule.json"
        data_file.write_text('{"id": "a"}')

        with pytest.raises(ValueError):
            InMemorySyncGateway.from_json(data_file)

"""
Shared fixtures for the scheduling tests.
"""

import itertools
from datetime import time

import pendulum
import pytest

from helperschedule.adapters.memory_gateway import InMemorySyncGateway
from helperschedule.config import DefaultsConfig, SyncConfig
from helperschedule.domain.models import SlotStatus, TimeSlot
from helperschedule.domain.slot_store import SlotStore
from helperschedule.services.availability_controller import AvailabilityController


@pytest.fixture
def id_factory():
    """Deterministic slot ids: slot-1, slot-2, ..."""
    counter = itertools.count(1)
    return lambda: f"slot-{next(counter)}"


@pytest.fixture
def store(id_factory):
    return SlotStore("helper-1", id_factory=id_factory)


@pytest.fixture
def gateway():
    return InMemorySyncGateway()


@pytest.fixture
def make_controller(gateway):
    """Build a controller without buffers or back-off delays."""

    def factory(target_gateway=None, **defaults):
        options = {"buffer_before": 0, "buffer_after": 0}
        options.update(defaults)
        return AvailabilityController(
            "helper-1",
            target_gateway or gateway,
            defaults=DefaultsConfig(**options),
            sync=SyncConfig(max_attempts=3, backoff_seconds=0),
        )

    return factory


@pytest.fixture
def booked_slot():
    return TimeSlot(
        id="booked-1",
        helper_id="helper-1",
        date=pendulum.date(2024, 1, 8),
        start_time=time(10, 0),
        end_time=time(11, 0),
        status=SlotStatus.BOOKED,
        booking_ref="request-1",
    )

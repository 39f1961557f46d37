"""
Shared fixtures: a manual clock, an in-memory store and an engine wired
to both, so timer expiry can be driven without sleeping.
"""
import pytest

from app.services.lifecycle import OrderItemLifecycle
from app.services.sweeper import ExpirySweeper
from tests.helpers import T0, FlakyStore, ManualClock


@pytest.fixture
def clock():
    return ManualClock(T0)


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def lifecycle(store, clock):
    return OrderItemLifecycle(store, clock=clock, default_delay_seconds=15)


@pytest.fixture
def sweeper(lifecycle):
    return ExpirySweeper(lifecycle, interval_seconds=0.01, initial_delay_seconds=0)

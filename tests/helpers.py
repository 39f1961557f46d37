"""Test helpers shared across modules."""
from datetime import datetime, timedelta, timezone
from typing import Optional

from app.core.clock import utc_now
from app.core.exceptions import PersistenceError
from app.models import ItemState
from app.services.store import InMemoryOrderItemStore

T0 = datetime(2026, 1, 15, 18, 30, tzinfo=timezone.utc)


class ManualClock:
    """
    Clock that only moves when told to, so timer expiry can be driven
    without sleeping.

    Example:
        >>> clock = ManualClock()
        >>> start = clock()
        >>> clock.advance(15)
        >>> (clock() - start).total_seconds()
        15.0
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or utc_now()

    def __call__(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> datetime:
        self._now = self._now + timedelta(seconds=seconds)
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value


class FlakyStore(InMemoryOrderItemStore):
    """Memory store whose writes fail for selected item ids."""

    def __init__(self):
        super().__init__()
        self.failing_ids: set[str] = set()

    async def save(self, item, expected_version):
        if item.id in self.failing_ids:
            raise PersistenceError("connection reset by peer", item_id=item.id)
        return await super().save(item, expected_version)


def assert_invariants(item):
    """Lifecycle invariants that hold after every operation."""
    assert item.locked == (item.state in (ItemState.DISPATCHED, ItemState.COMPLETED))
    if item.expiry_at is not None:
        assert item.state == ItemState.PENDING
    if item.locked:
        assert item.dispatched_at is not None
    assert item.quantity >= 1
    assert item.unit_price >= 0

"""
In-Memory Order Item Store

Reference implementation of the store contract. Used in development mode
(ENV_MODE=development) and by the test suite to:
    - Run the full lifecycle without a database
    - Exercise concurrent writers deterministically
    - Simulate persistence latency

Writes are compare-and-swap on the item version. There is no await
between the version check and the write, so on a single event loop the
check and the write are one atomic step for that record.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from app.core.exceptions import StaleRecordError
from app.models import ItemState
from app.services.store.base import BaseOrderItemStore, OrderItem

logger = logging.getLogger(__name__)


class InMemoryOrderItemStore(BaseOrderItemStore):
    """
    Dictionary-backed order item store.

    Attributes:
        latency: Simulated I/O delay in seconds before each operation.
            Even 0 yields to the event loop, so concurrent callers
            interleave between their read and their write.

    Example:
        >>> store = InMemoryOrderItemStore()
        >>> await store.add(item)
        >>> (await store.get_by_id(item.id)).state
        <ItemState.DRAFT: 'draft'>
    """

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self._items: dict[str, OrderItem] = {}

        logger.info(f"InMemoryOrderItemStore initialized (latency={latency}s)")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "memory"

    async def _simulate_latency(self) -> None:
        await asyncio.sleep(self.latency)

    def _select(self, predicate: Callable[[OrderItem], bool]) -> list[OrderItem]:
        matches = [item.copy() for item in self._items.values() if predicate(item)]
        return sorted(matches, key=lambda item: (item.created_at, item.id))

    async def get_by_id(self, item_id: str) -> Optional[OrderItem]:
        await self._simulate_latency()
        item = self._items.get(item_id)
        return item.copy() if item is not None else None

    async def add(self, item: OrderItem) -> OrderItem:
        await self._simulate_latency()
        if item.id in self._items:
            raise StaleRecordError(f"Order item {item.id} already exists", item_id=item.id)
        self._items[item.id] = item.copy()
        logger.debug(f"Memory: Added item {item.id}")
        return item.copy()

    async def save(self, item: OrderItem, expected_version: int) -> OrderItem:
        await self._simulate_latency()
        current = self._items.get(item.id)
        if current is None or current.version != expected_version:
            raise StaleRecordError(
                f"Order item {item.id} changed since version {expected_version}",
                item_id=item.id,
            )
        stored = item.copy(version=expected_version + 1)
        self._items[item.id] = stored
        return stored.copy()

    async def delete(self, item_id: str, expected_version: int) -> None:
        await self._simulate_latency()
        current = self._items.get(item_id)
        if current is None or current.version != expected_version:
            raise StaleRecordError(
                f"Order item {item_id} changed since version {expected_version}",
                item_id=item_id,
            )
        del self._items[item_id]
        logger.debug(f"Memory: Deleted item {item_id}")

    async def find_by_order_and_state(
        self,
        order_id: str,
        state: ItemState,
    ) -> list[OrderItem]:
        await self._simulate_latency()
        return self._select(lambda item: item.order_id == order_id and item.state == state)

    async def find_expired_unlocked(self, now: datetime) -> list[OrderItem]:
        await self._simulate_latency()
        return self._select(
            lambda item: (
                item.state == ItemState.PENDING
                and not item.locked
                and item.expiry_at is not None
                and item.expiry_at <= now
            )
        )

    async def find_by_order(self, order_id: str) -> list[OrderItem]:
        await self._simulate_latency()
        return self._select(lambda item: item.order_id == order_id)

    async def find_by_state(self, state: ItemState) -> list[OrderItem]:
        await self._simulate_latency()
        return self._select(lambda item: item.state == state)

    async def find_by_menu_item(self, menu_item_id: str) -> list[OrderItem]:
        await self._simulate_latency()
        return self._select(lambda item: item.menu_item_id == menu_item_id)

    async def list_all(self) -> list[OrderItem]:
        await self._simulate_latency()
        return self._select(lambda item: True)

    async def health_check(self) -> bool:
        """
        Memory health check always returns True.
        """
        logger.debug("Memory: Health check passed")
        return True

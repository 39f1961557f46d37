"""
Order Item Store Abstract Base Class

Defines the persistence contract the lifecycle engine depends on.
Both InMemoryOrderItemStore and SqlOrderItemStore implement these methods,
so the engine and the sweeper behave identically on either backend.

Write contract:
    Every write is a compare-and-swap on OrderItem.version. save() and
    delete() take the version the caller read; if the stored version has
    moved on, they raise StaleRecordError and change nothing. A successful
    save() stores the item with version + 1 and returns the stored copy.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Optional

from app.models import ItemState


@dataclass
class OrderItem:
    """
    One line item on an order.

    Attributes:
        id: Opaque unique id, assigned at creation
        order_id: Owning order
        menu_item_id: Catalog item this line refers to
        quantity: Number of portions (>= 1)
        unit_price: Price captured at creation, never changed afterwards
        delay_seconds: Holding-window length for this item
        created_at: Creation timestamp
        updated_at: Last successful write
        special_instructions: Free text for the kitchen/bar
        state: Lifecycle state
        expiry_at: Timer expiry, only while pending
        dispatched_at: When the item was sent to preparation
        started_at: When preparation began (informational)
        completed_at: When preparation finished
        version: Write counter used for compare-and-swap
    """
    id: str
    order_id: str
    menu_item_id: str
    quantity: int
    unit_price: Decimal
    delay_seconds: int
    created_at: datetime
    updated_at: datetime
    special_instructions: Optional[str] = None
    state: ItemState = ItemState.DRAFT
    expiry_at: Optional[datetime] = None
    dispatched_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    version: int = 1

    @property
    def locked(self) -> bool:
        """True once the item has been dispatched or completed."""
        return self.state.is_locked

    def copy(self, **changes) -> "OrderItem":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "order_id": self.order_id,
            "menu_item_id": self.menu_item_id,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "delay_seconds": self.delay_seconds,
            "special_instructions": self.special_instructions,
            "state": self.state.value,
            "locked": self.locked,
            "expiry_at": self.expiry_at.isoformat() if self.expiry_at else None,
            "dispatched_at": self.dispatched_at.isoformat() if self.dispatched_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "version": self.version,
        }


class BaseOrderItemStore(ABC):
    """
    Abstract base class for order item stores.

    Example:
        >>> store = get_order_item_store()  # Returns memory or database store
        >>> item = await store.get_by_id("3f2a...")
        >>> if item is not None:
        ...     print(item.state)
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """
        Return the name of the backend.

        Returns:
            str: Backend name (e.g., "memory", "database")
        """
        pass

    @abstractmethod
    async def get_by_id(self, item_id: str) -> Optional[OrderItem]:
        """
        Load one item.

        Returns:
            OrderItem, or None if no item has this id
        """
        pass

    @abstractmethod
    async def add(self, item: OrderItem) -> OrderItem:
        """Insert a new item and return the stored copy."""
        pass

    @abstractmethod
    async def save(self, item: OrderItem, expected_version: int) -> OrderItem:
        """
        Overwrite an existing item if its stored version is expected_version.

        Raises:
            StaleRecordError: The item changed or vanished since it was read
        """
        pass

    @abstractmethod
    async def delete(self, item_id: str, expected_version: int) -> None:
        """
        Remove an item if its stored version is expected_version.

        Raises:
            StaleRecordError: The item changed or vanished since it was read
        """
        pass

    @abstractmethod
    async def find_by_order_and_state(
        self,
        order_id: str,
        state: ItemState,
    ) -> list[OrderItem]:
        """Items of one order currently in the given state."""
        pass

    @abstractmethod
    async def find_expired_unlocked(self, now: datetime) -> list[OrderItem]:
        """
        Items the sweeper must dispatch.

        Predicate: state == pending AND expiry_at <= now AND not locked,
        evaluated against committed state by the store itself.
        """
        pass

    @abstractmethod
    async def find_by_order(self, order_id: str) -> list[OrderItem]:
        """All items of one order."""
        pass

    @abstractmethod
    async def find_by_state(self, state: ItemState) -> list[OrderItem]:
        """All items in one state, across orders."""
        pass

    @abstractmethod
    async def find_by_menu_item(self, menu_item_id: str) -> list[OrderItem]:
        """All items referring to one menu item."""
        pass

    @abstractmethod
    async def list_all(self) -> list[OrderItem]:
        """Every item in the store."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Verify the backend is reachable.

        Returns:
            bool: True if reads can be served
        """
        pass

    async def close(self) -> None:
        """Release backend resources. No-op by default."""
        return None

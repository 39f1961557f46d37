"""
Order Item Error Taxonomy

Every failure the lifecycle engine can surface is a subclass of
OrderItemError, so callers (the API layer, the sweeper, Celery tasks)
can catch the family or a specific kind.

    OrderItemError
    ├── NotFoundError           - item id does not exist
    ├── LockedItemError         - edit/delete on a dispatched or completed item
    ├── InvalidTransitionError  - operation not allowed from the current state
    ├── InvalidItemError        - quantity/price/delay out of range
    └── PersistenceError        - the store failed
        └── StaleRecordError    - compare-and-swap lost to a concurrent writer
"""

from typing import Optional


class OrderItemError(Exception):
    """Base class for all order item errors."""

    def __init__(self, message: str, item_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.item_id = item_id


class NotFoundError(OrderItemError):
    """Referenced order item does not exist."""

    def __init__(self, item_id: str):
        super().__init__(f"Order item {item_id} not found", item_id=item_id)


class LockedItemError(OrderItemError):
    """Item already left the holding window and can no longer change."""

    def __init__(self, item_id: str, action: str):
        super().__init__(
            f"Cannot {action} locked item {item_id}",
            item_id=item_id,
        )
        self.action = action


class InvalidTransitionError(OrderItemError):
    """Requested transition is not defined from the item's current state."""

    def __init__(self, item_id: str, current: str, action: str):
        super().__init__(
            f"Cannot {action} item {item_id} in state '{current}'",
            item_id=item_id,
        )
        self.current = current
        self.action = action


class InvalidItemError(OrderItemError):
    """Field values violate the order item invariants."""


class PersistenceError(OrderItemError):
    """The order item store failed to read or write."""


class StaleRecordError(PersistenceError):
    """
    Raised when an optimistic lock conflict is detected:
    the record version changed between our read and our write,
    meaning another concurrent writer won the race.
    """

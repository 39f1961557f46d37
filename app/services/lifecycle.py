"""
Order Item Lifecycle Engine

Owns the holding-window state machine for order items:

    draft ──send──▶ pending ──timer / send-now──▶ dispatched ──complete──▶ completed
      └────────────────send-now─────────────────────▲

- draft: added to the order, not yet sent, fully editable
- pending: timer armed; still editable, every edit restarts the timer
- dispatched: locked and visible to the kitchen/bar
- completed: preparation finished (terminal)

Every mutation is one read-modify-write cycle: load the record, check the
guard on what was just read, and save with compare-and-swap on the record
version. When another writer got there first the store raises
StaleRecordError and the whole cycle runs again against the fresh record,
so a guard is never evaluated on stale data. The dispatch transition is
shared by send_now() and the expiry sweeper.
"""

import asyncio
import functools
import logging
import random
import uuid
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Any, Optional, Union

from app.core.clock import Clock, utc_now
from app.core.config import get_settings
from app.core.exceptions import (
    InvalidItemError,
    InvalidTransitionError,
    LockedItemError,
    NotFoundError,
    PersistenceError,
    StaleRecordError,
)
from app.models import ItemState
from app.services.store import BaseOrderItemStore, OrderItem, get_order_item_store

logger = logging.getLogger(__name__)

PriceLike = Union[Decimal, int, float, str]

PRICE_STEP = Decimal("0.01")
MAX_UNIT_PRICE = Decimal("100000000")

# Default for edit fields where None is a real value
_UNSET: Any = object()


def with_optimistic_retry(max_retries: Optional[int] = None):
    """
    Decorator for async functions that perform compare-and-swap writes.
    On StaleRecordError, retries with exponential backoff + jitter.

    Usage:
        @with_optimistic_retry()
        async def edit(self, item_id, ...):
            ...
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            settings = get_settings()
            attempts = max_retries or settings.opt_lock_max_retries
            for attempt in range(1, attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except StaleRecordError:
                    if attempt == attempts:
                        logger.error(
                            "Optimistic lock conflict unresolved after %d attempts for %s",
                            attempts, func.__name__,
                        )
                        raise
                    # Exponential backoff: base * 2^attempt + jitter
                    base_delay = settings.opt_lock_base_delay_ms / 1000.0
                    max_delay = settings.opt_lock_max_delay_ms / 1000.0
                    jitter = random.uniform(0, settings.opt_lock_jitter_ms / 1000.0)
                    delay = min(base_delay * (2 ** attempt), max_delay) + jitter
                    logger.warning(
                        "StaleRecordError in %s on attempt %d/%d, retrying in %.3fs",
                        func.__name__, attempt, attempts, delay,
                    )
                    await asyncio.sleep(delay)
        return wrapper
    return decorator


def _validate_quantity(quantity: Any) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidItemError(f"Quantity must be a positive integer, got {quantity!r}")
    return quantity


def _validate_price(unit_price: PriceLike) -> Decimal:
    try:
        price = Decimal(str(unit_price))
    except InvalidOperation:
        raise InvalidItemError(f"Unit price is not a number: {unit_price!r}")
    if not price.is_finite() or price < 0:
        raise InvalidItemError(f"Unit price must be zero or more, got {unit_price!r}")
    # Must fit the Numeric(10, 2) column unchanged
    if price >= MAX_UNIT_PRICE:
        raise InvalidItemError(f"Unit price must be below {MAX_UNIT_PRICE}, got {unit_price!r}")
    if price != price.quantize(PRICE_STEP):
        raise InvalidItemError(f"Unit price has more than 2 decimal places: {unit_price!r}")
    return price.quantize(PRICE_STEP)


def _validate_delay(delay_seconds: Any) -> int:
    if isinstance(delay_seconds, bool) or not isinstance(delay_seconds, int) or delay_seconds < 0:
        raise InvalidItemError(f"Delay must be a non-negative integer, got {delay_seconds!r}")
    return delay_seconds


class OrderItemLifecycle:
    """
    State machine over order items stored in a BaseOrderItemStore.

    Attributes:
        store: Persistence port
        clock: Source of "now"
        default_delay_seconds: Holding window for items created without one

    Example:
        >>> lifecycle = OrderItemLifecycle(InMemoryOrderItemStore())
        >>> item = await lifecycle.create("order-1", "margherita", 1, "14.99")
        >>> await lifecycle.send("order-1")
        >>> item = await lifecycle.send_now(item.id)
        >>> item.locked
        True
    """

    def __init__(
        self,
        store: BaseOrderItemStore,
        clock: Clock = utc_now,
        default_delay_seconds: Optional[int] = None,
    ):
        if default_delay_seconds is None:
            default_delay_seconds = get_settings().default_delay_seconds
        self.store = store
        self.clock = clock
        self.default_delay_seconds = _validate_delay(default_delay_seconds)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _load(self, item_id: str) -> OrderItem:
        item = await self.store.get_by_id(item_id)
        if item is None:
            raise NotFoundError(item_id)
        return item

    async def _write(self, item: OrderItem, **changes: Any) -> OrderItem:
        """Save a modified copy of item, conditional on the version we read."""
        changes.setdefault("updated_at", self.clock())
        return await self.store.save(item.copy(**changes), expected_version=item.version)

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def create(
        self,
        order_id: str,
        menu_item_id: str,
        quantity: int,
        unit_price: PriceLike,
        special_instructions: Optional[str] = None,
        delay_seconds: Optional[int] = None,
    ) -> OrderItem:
        """Add a new draft item to an order."""
        if delay_seconds is None:
            delay_seconds = self.default_delay_seconds

        now = self.clock()
        item = OrderItem(
            id=uuid.uuid4().hex,
            order_id=order_id,
            menu_item_id=menu_item_id,
            quantity=_validate_quantity(quantity),
            unit_price=_validate_price(unit_price),
            delay_seconds=_validate_delay(delay_seconds),
            created_at=now,
            updated_at=now,
            special_instructions=special_instructions,
        )
        created = await self.store.add(item)
        logger.info(f"Created item {created.id} on order {order_id} ({menu_item_id} x{quantity})")
        return created

    @with_optimistic_retry()
    async def edit(
        self,
        item_id: str,
        quantity: Optional[int] = None,
        special_instructions: Optional[str] = _UNSET,
    ) -> OrderItem:
        """
        Change an unlocked item. Omitted fields keep their value; a quantity
        of None is treated as omitted, special_instructions=None clears them.

        Editing a pending item restarts its holding window from now.

        Raises:
            NotFoundError: No such item
            LockedItemError: Item already dispatched or completed
            InvalidItemError: Quantity out of range
        """
        item = await self._load(item_id)
        if item.locked:
            raise LockedItemError(item_id, "update")

        now = self.clock()
        changes: dict[str, Any] = {"updated_at": now}
        if quantity is not None:
            changes["quantity"] = _validate_quantity(quantity)
        if special_instructions is not _UNSET:
            changes["special_instructions"] = special_instructions
        if item.state == ItemState.PENDING:
            changes["expiry_at"] = now + timedelta(seconds=item.delay_seconds)

        updated = await self._write(item, **changes)
        if item.state == ItemState.PENDING:
            logger.info(f"Item {item_id} edited in holding window, timer restarted until {updated.expiry_at.isoformat()}")
        return updated

    async def send(self, order_id: str) -> list[OrderItem]:
        """
        Arm the holding-window timer on every draft item of an order.

        Items that are not draft are skipped, so the call is safe on orders
        that mix fresh and already-sent items. An item whose write fails is
        logged and left in draft while the rest of the order goes ahead;
        sending the order again picks it up.

        Returns:
            The items this call moved to pending
        """
        drafts = await self.store.find_by_order_and_state(order_id, ItemState.DRAFT)
        sent = []
        failed = []
        for draft in drafts:
            try:
                item = await self._arm_timer(draft.id)
            except PersistenceError:
                logger.exception(f"Order {order_id}: failed to send item {draft.id}")
                failed.append(draft.id)
                continue
            if item is not None:
                sent.append(item)

        logger.info(f"Order {order_id}: {len(sent)} item(s) sent to holding window")
        if failed:
            logger.warning(f"Order {order_id}: {len(failed)} item(s) left in draft after write failures")
        return sent

    @with_optimistic_retry()
    async def _arm_timer(self, item_id: str) -> Optional[OrderItem]:
        item = await self.store.get_by_id(item_id)
        if item is None or item.state != ItemState.DRAFT:
            # Deleted or sent by someone else since the order was queried
            return None
        now = self.clock()
        return await self._write(
            item,
            state=ItemState.PENDING,
            expiry_at=now + timedelta(seconds=item.delay_seconds),
            updated_at=now,
        )

    @with_optimistic_retry()
    async def dispatch(
        self,
        item_id: str,
        expired_as_of: Optional[datetime] = None,
    ) -> tuple[OrderItem, bool]:
        """
        Lock an item and hand it to preparation, at most once.

        Args:
            item_id: Item to dispatch
            expired_as_of: Sweeper cut-off. When given, the item is only
                dispatched if it is still pending with expiry_at at or before
                this instant, so an edit that restarted the timer wins.

        Returns:
            (item, dispatched): the current record and whether this call
            performed the transition. A locked item comes back unchanged
            with dispatched=False.
        """
        item = await self._load(item_id)
        if item.locked:
            logger.debug(f"Item {item_id} already locked ({item.state.value}), dispatch skipped")
            return item, False

        if expired_as_of is not None and (
            item.state != ItemState.PENDING
            or item.expiry_at is None
            or item.expiry_at > expired_as_of
        ):
            logger.debug(f"Item {item_id} no longer expired, dispatch skipped")
            return item, False

        now = self.clock()
        dispatched = await self._write(
            item,
            state=ItemState.DISPATCHED,
            dispatched_at=now,
            expiry_at=None,
            updated_at=now,
        )
        trigger = "timer" if expired_as_of is not None else "manual"
        logger.info(f"🔥 Item {item_id} dispatched to preparation ({trigger})")
        return dispatched, True

    async def send_now(self, item_id: str) -> OrderItem:
        """
        Manual override: dispatch immediately, skipping any remaining timer.

        No-op on an item that is already locked.
        """
        item, _ = await self.dispatch(item_id)
        return item

    @with_optimistic_retry()
    async def delete(self, item_id: str) -> None:
        """
        Remove an item that has not been dispatched.

        Raises:
            NotFoundError: No such item
            LockedItemError: Item already dispatched or completed
        """
        item = await self._load(item_id)
        if item.locked:
            raise LockedItemError(item_id, "delete")
        await self.store.delete(item_id, expected_version=item.version)
        logger.info(f"Deleted item {item_id} from order {item.order_id}")

    @with_optimistic_retry()
    async def start(self, item_id: str) -> OrderItem:
        """
        Record that preparation began. Informational only: the state stays
        dispatched and the first started_at is kept on repeat calls.
        """
        item = await self._load(item_id)
        if item.state != ItemState.DISPATCHED:
            raise InvalidTransitionError(item_id, item.state.value, "start")
        if item.started_at is not None:
            return item
        now = self.clock()
        return await self._write(item, started_at=now, updated_at=now)

    @with_optimistic_retry()
    async def complete(self, item_id: str) -> OrderItem:
        """
        Mark a dispatched item as finished.

        Raises:
            NotFoundError: No such item
            InvalidTransitionError: Item is not dispatched
        """
        item = await self._load(item_id)
        if item.state != ItemState.DISPATCHED:
            raise InvalidTransitionError(item_id, item.state.value, "complete")
        now = self.clock()
        completed = await self._write(
            item,
            state=ItemState.COMPLETED,
            completed_at=now,
            updated_at=now,
        )
        logger.info(f"✅ Item {item_id} completed")
        return completed

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get(self, item_id: str) -> OrderItem:
        return await self._load(item_id)

    async def list_items(self) -> list[OrderItem]:
        return await self.store.list_all()

    async def list_for_order(self, order_id: str) -> list[OrderItem]:
        return await self.store.find_by_order(order_id)

    async def list_for_order_in_state(self, order_id: str, state: ItemState) -> list[OrderItem]:
        return await self.store.find_by_order_and_state(order_id, state)

    async def list_by_state(self, state: ItemState) -> list[OrderItem]:
        return await self.store.find_by_state(state)

    async def list_for_menu_item(self, menu_item_id: str) -> list[OrderItem]:
        return await self.store.find_by_menu_item(menu_item_id)


@lru_cache()
def get_lifecycle() -> OrderItemLifecycle:
    """Process-wide engine bound to the configured store."""
    return OrderItemLifecycle(get_order_item_store())

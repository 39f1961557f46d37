"""
SQLAlchemy Order Item Store

PostgreSQL-backed implementation of the store contract, used in staging
and production. Every write is a single conditional statement:

    UPDATE order_items SET ..., version = :expected + 1
    WHERE id = :id AND version = :expected

If another writer committed first, no row matches, rowcount is 0 and we
raise StaleRecordError. The sweeper predicate is a WHERE clause, so it
always reflects committed state rather than anything cached in process.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.clock import ensure_utc
from app.core.exceptions import PersistenceError, StaleRecordError
from app.models import ItemState, OrderItemRecord
from app.services.store.base import BaseOrderItemStore, OrderItem

logger = logging.getLogger(__name__)

_MUTABLE_COLUMNS = (
    "quantity",
    "special_instructions",
    "state",
    "expiry_at",
    "dispatched_at",
    "started_at",
    "completed_at",
    "updated_at",
)


def _to_domain(record: OrderItemRecord) -> OrderItem:
    return OrderItem(
        id=record.id,
        order_id=record.order_id,
        menu_item_id=record.menu_item_id,
        quantity=record.quantity,
        unit_price=record.unit_price,
        delay_seconds=record.delay_seconds,
        created_at=ensure_utc(record.created_at),
        updated_at=ensure_utc(record.updated_at),
        special_instructions=record.special_instructions,
        state=record.state,
        expiry_at=ensure_utc(record.expiry_at),
        dispatched_at=ensure_utc(record.dispatched_at),
        started_at=ensure_utc(record.started_at),
        completed_at=ensure_utc(record.completed_at),
        version=record.version,
    )


def _to_record(item: OrderItem) -> OrderItemRecord:
    return OrderItemRecord(
        id=item.id,
        order_id=item.order_id,
        menu_item_id=item.menu_item_id,
        quantity=item.quantity,
        unit_price=item.unit_price,
        special_instructions=item.special_instructions,
        delay_seconds=item.delay_seconds,
        state=item.state,
        locked=item.locked,
        expiry_at=item.expiry_at,
        dispatched_at=item.dispatched_at,
        started_at=item.started_at,
        completed_at=item.completed_at,
        version=item.version,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


class SqlOrderItemStore(BaseOrderItemStore):
    """
    Order item store on top of an async SQLAlchemy session factory.

    Each call opens its own short session, so no transaction is held
    open across the engine's read and write.

    Example:
        >>> store = SqlOrderItemStore(get_session_maker())
        >>> expired = await store.find_expired_unlocked(utc_now())
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "database"

    async def _fetch(self, statement) -> list[OrderItem]:
        try:
            async with self._session_maker() as session:
                result = await session.execute(statement)
                return [_to_domain(record) for record in result.scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Database read failed: {e}")
            raise PersistenceError(f"Database read failed: {e}") from e

    async def get_by_id(self, item_id: str) -> Optional[OrderItem]:
        items = await self._fetch(
            select(OrderItemRecord).where(OrderItemRecord.id == item_id)
        )
        return items[0] if items else None

    async def add(self, item: OrderItem) -> OrderItem:
        try:
            async with self._session_maker() as session:
                session.add(_to_record(item))
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Database insert failed for item {item.id}: {e}")
            raise PersistenceError(f"Database insert failed: {e}", item_id=item.id) from e
        return item.copy()

    async def save(self, item: OrderItem, expected_version: int) -> OrderItem:
        values = {column: getattr(item, column) for column in _MUTABLE_COLUMNS}
        values["locked"] = item.locked
        values["version"] = expected_version + 1

        statement = (
            update(OrderItemRecord)
            .where(
                OrderItemRecord.id == item.id,
                OrderItemRecord.version == expected_version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        try:
            async with self._session_maker() as session:
                result = await session.execute(statement)
                if result.rowcount == 0:
                    await session.rollback()
                    raise StaleRecordError(
                        f"Order item {item.id} changed since version {expected_version}",
                        item_id=item.id,
                    )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Database update failed for item {item.id}: {e}")
            raise PersistenceError(f"Database update failed: {e}", item_id=item.id) from e

        return item.copy(version=expected_version + 1)

    async def delete(self, item_id: str, expected_version: int) -> None:
        statement = (
            delete(OrderItemRecord)
            .where(
                OrderItemRecord.id == item_id,
                OrderItemRecord.version == expected_version,
            )
            .execution_options(synchronize_session=False)
        )

        try:
            async with self._session_maker() as session:
                result = await session.execute(statement)
                if result.rowcount == 0:
                    await session.rollback()
                    raise StaleRecordError(
                        f"Order item {item_id} changed since version {expected_version}",
                        item_id=item_id,
                    )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Database delete failed for item {item_id}: {e}")
            raise PersistenceError(f"Database delete failed: {e}", item_id=item_id) from e

    async def find_by_order_and_state(
        self,
        order_id: str,
        state: ItemState,
    ) -> list[OrderItem]:
        return await self._fetch(
            select(OrderItemRecord)
            .where(
                OrderItemRecord.order_id == order_id,
                OrderItemRecord.state == state,
            )
            .order_by(OrderItemRecord.created_at, OrderItemRecord.id)
        )

    async def find_expired_unlocked(self, now: datetime) -> list[OrderItem]:
        return await self._fetch(
            select(OrderItemRecord)
            .where(
                OrderItemRecord.state == ItemState.PENDING,
                OrderItemRecord.locked.is_(False),
                OrderItemRecord.expiry_at.is_not(None),
                OrderItemRecord.expiry_at <= now,
            )
            .order_by(OrderItemRecord.expiry_at, OrderItemRecord.id)
        )

    async def find_by_order(self, order_id: str) -> list[OrderItem]:
        return await self._fetch(
            select(OrderItemRecord)
            .where(OrderItemRecord.order_id == order_id)
            .order_by(OrderItemRecord.created_at, OrderItemRecord.id)
        )

    async def find_by_state(self, state: ItemState) -> list[OrderItem]:
        return await self._fetch(
            select(OrderItemRecord)
            .where(OrderItemRecord.state == state)
            .order_by(OrderItemRecord.created_at, OrderItemRecord.id)
        )

    async def find_by_menu_item(self, menu_item_id: str) -> list[OrderItem]:
        return await self._fetch(
            select(OrderItemRecord)
            .where(OrderItemRecord.menu_item_id == menu_item_id)
            .order_by(OrderItemRecord.created_at, OrderItemRecord.id)
        )

    async def list_all(self) -> list[OrderItem]:
        return await self._fetch(
            select(OrderItemRecord).order_by(OrderItemRecord.created_at, OrderItemRecord.id)
        )

    async def health_check(self) -> bool:
        """Run a trivial query against the database."""
        try:
            async with self._session_maker() as session:
                await session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False

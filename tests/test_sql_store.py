"""
SQL store tests against an in-memory SQLite database.

The schema comes from init_db(), so these also cover the table
definition and its indexes.
"""
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.pool import StaticPool

from app.core.exceptions import InvalidItemError, StaleRecordError
from app.database import build_engine, build_session_maker, init_db
from app.models import ItemState
from app.services.lifecycle import OrderItemLifecycle
from app.services.store import OrderItem, SqlOrderItemStore
from app.services.sweeper import ExpirySweeper
from tests.helpers import T0


@pytest.fixture
async def sql_store():
    engine = build_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield SqlOrderItemStore(build_session_maker(engine))
    await engine.dispose()


def _item(item_id="a" * 32, order_id="order-1", **changes):
    item = OrderItem(
        id=item_id,
        order_id=order_id,
        menu_item_id="negroni",
        quantity=2,
        unit_price=Decimal("11.50"),
        delay_seconds=15,
        created_at=T0,
        updated_at=T0,
        special_instructions="Orange peel",
    )
    return item.copy(**changes)


async def test_add_and_get_roundtrip(sql_store):
    item = _item(state=ItemState.PENDING, expiry_at=T0 + timedelta(seconds=15))
    await sql_store.add(item)

    loaded = await sql_store.get_by_id(item.id)

    assert loaded == item
    assert loaded.unit_price == Decimal("11.50")
    assert loaded.expiry_at.tzinfo is not None
    assert loaded.created_at == T0


async def test_get_missing_returns_none(sql_store):
    assert await sql_store.get_by_id("nope") is None


async def test_save_bumps_version(sql_store):
    item = _item()
    await sql_store.add(item)

    saved = await sql_store.save(item.copy(quantity=4), expected_version=1)

    assert saved.version == 2
    loaded = await sql_store.get_by_id(item.id)
    assert loaded.quantity == 4
    assert loaded.version == 2


async def test_stale_save_changes_nothing(sql_store):
    item = _item()
    await sql_store.add(item)
    await sql_store.save(item.copy(quantity=4), expected_version=1)

    with pytest.raises(StaleRecordError):
        await sql_store.save(item.copy(quantity=9), expected_version=1)

    loaded = await sql_store.get_by_id(item.id)
    assert loaded.quantity == 4
    assert loaded.version == 2


async def test_save_missing_item_is_stale(sql_store):
    with pytest.raises(StaleRecordError):
        await sql_store.save(_item(), expected_version=1)


async def test_delete_requires_current_version(sql_store):
    item = _item()
    await sql_store.add(item)
    await sql_store.save(item.copy(quantity=3), expected_version=1)

    with pytest.raises(StaleRecordError):
        await sql_store.delete(item.id, expected_version=1)
    assert await sql_store.get_by_id(item.id) is not None

    await sql_store.delete(item.id, expected_version=2)
    assert await sql_store.get_by_id(item.id) is None


async def test_find_expired_unlocked_filters_state_and_time(sql_store):
    expired = _item("1" * 32, state=ItemState.PENDING, expiry_at=T0 + timedelta(seconds=5))
    boundary = _item("2" * 32, state=ItemState.PENDING, expiry_at=T0 + timedelta(seconds=10))
    waiting = _item("3" * 32, state=ItemState.PENDING, expiry_at=T0 + timedelta(seconds=30))
    draft = _item("4" * 32)
    dispatched = _item("5" * 32, state=ItemState.DISPATCHED, dispatched_at=T0)
    for item in (expired, boundary, waiting, draft, dispatched):
        await sql_store.add(item)

    found = await sql_store.find_expired_unlocked(T0 + timedelta(seconds=10))

    assert [item.id for item in found] == [expired.id, boundary.id]


async def test_order_and_state_queries(sql_store):
    await sql_store.add(_item("1" * 32, order_id="order-1"))
    await sql_store.add(_item("2" * 32, order_id="order-1", state=ItemState.PENDING,
                              expiry_at=T0 + timedelta(seconds=15)))
    await sql_store.add(_item("3" * 32, order_id="order-2", menu_item_id="spritz"))

    drafts = await sql_store.find_by_order_and_state("order-1", ItemState.DRAFT)
    assert [item.id for item in drafts] == ["1" * 32]
    assert len(await sql_store.find_by_order("order-1")) == 2
    assert [item.id for item in await sql_store.find_by_state(ItemState.PENDING)] == ["2" * 32]
    assert [item.id for item in await sql_store.find_by_menu_item("spritz")] == ["3" * 32]
    assert len(await sql_store.list_all()) == 3


async def test_health_check(sql_store):
    assert await sql_store.health_check() is True
    assert sql_store.provider_name == "database"


async def test_lifecycle_end_to_end_on_sql(sql_store, clock):
    lifecycle = OrderItemLifecycle(sql_store, clock=clock, default_delay_seconds=15)
    sweeper = ExpirySweeper(lifecycle, interval_seconds=1, initial_delay_seconds=0)

    item = await lifecycle.create("order-9", "margherita", 1, "14.99")
    await lifecycle.send("order-9")
    clock.advance(10)
    edited = await lifecycle.edit(item.id, quantity=2)
    assert edited.expiry_at == T0 + timedelta(seconds=25)

    clock.advance(10)
    assert (await sweeper.sweep_once()).checked == 0

    clock.advance(5)
    report = await sweeper.sweep_once()
    assert report.dispatched == [item.id]

    dispatched = await lifecycle.get(item.id)
    assert dispatched.state == ItemState.DISPATCHED
    assert dispatched.locked is True
    assert dispatched.expiry_at is None
    assert dispatched.dispatched_at == T0 + timedelta(seconds=25)
    assert dispatched.unit_price == Decimal("14.99")

    completed = await lifecycle.complete(item.id)
    assert completed.state == ItemState.COMPLETED
    assert (await lifecycle.get(item.id)).version == completed.version


@pytest.mark.parametrize("unit_price", ["14.999", "0.001", "100000000", "1000000000"])
async def test_prices_the_column_cannot_hold_are_rejected(sql_store, clock, unit_price):
    lifecycle = OrderItemLifecycle(sql_store, clock=clock, default_delay_seconds=15)

    with pytest.raises(InvalidItemError):
        await lifecycle.create("order-9", "margherita", 1, unit_price)

    assert await sql_store.list_all() == []


@pytest.mark.parametrize("unit_price", ["0", "4.5", "14.99", "99999999.99"])
async def test_created_price_matches_stored_price(sql_store, clock, unit_price):
    lifecycle = OrderItemLifecycle(sql_store, clock=clock, default_delay_seconds=15)

    created = await lifecycle.create("order-9", "margherita", 1, unit_price)
    stored = await lifecycle.get(created.id)

    assert stored.unit_price == created.unit_price == Decimal(unit_price)
    assert stored == created

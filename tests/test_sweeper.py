"""
Expiry sweeper tests

One-shot cycles are driven with the manual clock; the background loop
tests use real (tiny) intervals.
"""
import asyncio
from datetime import timedelta

import pytest

from app.core.exceptions import PersistenceError
from app.models import ItemState
from app.services.sweeper import ExpirySweeper, SweepReport
from tests.helpers import T0, assert_invariants


async def _pending(lifecycle, order_id, delay_seconds=15):
    item = await lifecycle.create(order_id, "tiramisu", 1, "6.50", delay_seconds=delay_seconds)
    await lifecycle.send(order_id)
    return await lifecycle.get(item.id)


async def _wait_until(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not await predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


# ─── Single cycle ──────────────────────────────────────────────────────────────
async def test_sweep_dispatches_only_expired_items(lifecycle, sweeper, clock):
    expired = await _pending(lifecycle, "order-a", delay_seconds=5)
    waiting = await _pending(lifecycle, "order-b", delay_seconds=30)
    clock.advance(10)

    report = await sweeper.sweep_once()

    assert report.checked == 1
    assert report.dispatched == [expired.id]
    assert report.failed == []

    a = await lifecycle.get(expired.id)
    b = await lifecycle.get(waiting.id)
    assert a.state == ItemState.DISPATCHED
    assert a.dispatched_at == T0 + timedelta(seconds=10)
    assert a.expiry_at is None
    assert b.state == ItemState.PENDING
    assert b.expiry_at == T0 + timedelta(seconds=30)
    assert_invariants(a)
    assert_invariants(b)


async def test_sweep_with_nothing_expired_does_nothing(lifecycle, sweeper, store):
    item = await _pending(lifecycle, "order-a")

    report = await sweeper.sweep_once()

    assert report == SweepReport(checked=0)
    assert await store.get_by_id(item.id) == item


async def test_expiry_boundary_is_inclusive(lifecycle, sweeper, clock):
    item = await _pending(lifecycle, "order-a")

    clock.advance(14)
    assert (await sweeper.sweep_once()).dispatched == []

    clock.advance(1)
    assert (await sweeper.sweep_once()).dispatched == [item.id]


async def test_edit_inside_window_postpones_dispatch(lifecycle, sweeper, clock):
    item = await _pending(lifecycle, "order-a")
    clock.advance(10)
    await lifecycle.edit(item.id, quantity=2)

    clock.advance(10)
    assert (await sweeper.sweep_once()).dispatched == []

    clock.advance(5)
    report = await sweeper.sweep_once()
    assert report.dispatched == [item.id]
    dispatched = await lifecycle.get(item.id)
    assert dispatched.quantity == 2
    assert dispatched.dispatched_at == T0 + timedelta(seconds=25)


async def test_sweep_ignores_draft_and_locked_items(lifecycle, sweeper, store, clock):
    draft = await lifecycle.create("order-a", "espresso", 1, "2.20")
    locked = await lifecycle.create("order-b", "espresso", 1, "2.20")
    await lifecycle.send_now(locked.id)
    before = await store.get_by_id(locked.id)
    clock.advance(3600)

    report = await sweeper.sweep_once()

    assert report.checked == 0
    assert (await store.get_by_id(draft.id)).state == ItemState.DRAFT
    assert await store.get_by_id(locked.id) == before


async def test_sweep_after_send_now_does_not_redispatch(lifecycle, sweeper, clock):
    item = await _pending(lifecycle, "order-a")
    sent = await lifecycle.send_now(item.id)
    clock.advance(20)

    report = await sweeper.sweep_once()

    assert report.checked == 0
    assert await lifecycle.get(item.id) == sent


async def test_failed_item_does_not_stop_the_cycle(lifecycle, sweeper, store, clock):
    broken = await _pending(lifecycle, "order-a")
    healthy = await _pending(lifecycle, "order-b")
    store.failing_ids.add(broken.id)
    clock.advance(15)

    report = await sweeper.sweep_once()

    assert report.checked == 2
    assert report.dispatched == [healthy.id]
    assert report.failed == [broken.id]
    assert (await lifecycle.get(broken.id)).state == ItemState.PENDING

    # picked up again once the store recovers
    store.failing_ids.clear()
    clock.advance(1)
    assert (await sweeper.sweep_once()).dispatched == [broken.id]


async def test_item_deleted_after_query_is_skipped(lifecycle, sweeper, store, clock, monkeypatch):
    doomed = await _pending(lifecycle, "order-a")
    survivor = await _pending(lifecycle, "order-b")
    clock.advance(15)

    original_query = store.find_expired_unlocked

    async def query_then_delete(now):
        found = await original_query(now)
        await lifecycle.delete(doomed.id)
        return found

    monkeypatch.setattr(store, "find_expired_unlocked", query_then_delete)

    report = await sweeper.sweep_once()

    assert report.checked == 2
    assert report.skipped == [doomed.id]
    assert report.dispatched == [survivor.id]


async def test_query_failure_propagates_from_single_cycle(sweeper, store, monkeypatch):
    async def broken_query(now):
        raise PersistenceError("database unavailable")

    monkeypatch.setattr(store, "find_expired_unlocked", broken_query)

    with pytest.raises(PersistenceError):
        await sweeper.sweep_once()


def test_report_to_dict():
    report = SweepReport(checked=3, dispatched=["a"], skipped=["b"], failed=["c"])
    assert report.to_dict() == {
        "checked": 3,
        "dispatched": ["a"],
        "skipped": ["b"],
        "failed": ["c"],
    }


# ─── Background loop ───────────────────────────────────────────────────────────
async def test_background_loop_dispatches_expired_items(lifecycle, sweeper, clock):
    item = await _pending(lifecycle, "order-a")
    clock.advance(15)

    await sweeper.start()
    try:
        assert sweeper.running

        async def dispatched():
            return (await lifecycle.get(item.id)).state == ItemState.DISPATCHED

        await _wait_until(dispatched)
    finally:
        await sweeper.stop()

    assert not sweeper.running


async def test_start_twice_keeps_one_loop(sweeper):
    await sweeper.start()
    task = sweeper._task
    await sweeper.start()
    try:
        assert sweeper._task is task
    finally:
        await sweeper.stop()


async def test_start_replaces_a_finished_loop(sweeper):
    await sweeper.start()
    finished = sweeper._task
    finished.cancel()
    with pytest.raises(asyncio.CancelledError):
        await finished
    assert not sweeper.running

    await sweeper.start()
    try:
        assert sweeper.running
        assert sweeper._task is not finished
    finally:
        await sweeper.stop()


async def test_stop_without_start_is_a_noop(sweeper):
    await sweeper.stop()
    assert not sweeper.running


async def test_loop_survives_failing_cycles(lifecycle, store, clock, monkeypatch):
    item = await _pending(lifecycle, "order-a")
    clock.advance(15)

    original_query = store.find_expired_unlocked
    calls = {"n": 0}

    async def flaky_query(now):
        calls["n"] += 1
        if calls["n"] <= 2:
            raise PersistenceError("database unavailable")
        return await original_query(now)

    monkeypatch.setattr(store, "find_expired_unlocked", flaky_query)
    sweeper = ExpirySweeper(lifecycle, interval_seconds=0.01, initial_delay_seconds=0)

    await sweeper.start()
    try:
        async def dispatched():
            return (await lifecycle.get(item.id)).state == ItemState.DISPATCHED

        await _wait_until(dispatched)
    finally:
        await sweeper.stop()

    assert calls["n"] >= 3

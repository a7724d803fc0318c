"""Replay guard and per-payment locks"""
import asyncio

import pytest

from core.responses import DatastoreException
from mocks import FIXED_NOW
from schemas.payments import Vendor, WebhookEvent
from services.payment_locks import PaymentLockManager
from services.replay_guard import ReplayGuard


def _event(event_id="evt_1"):
    return WebhookEvent(
        vendor=Vendor.GREEN,
        vendor_event_id=event_id,
        event_type="payment.completed",
        raw_payload={"event_id": event_id},
        received_at=FIXED_NOW,
    )


@pytest.mark.asyncio
async def test_guard_lets_new_events_through_and_blocks_recorded_ones(store):
    guard = ReplayGuard(store)
    assert await guard.should_process(Vendor.GREEN, "evt_1")

    await guard.mark_processed(_event("evt_1"))

    assert not await guard.should_process(Vendor.GREEN, "evt_1")
    assert await guard.should_process(Vendor.HOTMART, "evt_1")


@pytest.mark.asyncio
async def test_failed_deliveries_do_not_count_as_processed(store):
    guard = ReplayGuard(store)
    await guard.mark_processed(_event("evt_2"), status="failed")
    assert await guard.should_process(Vendor.GREEN, "evt_2")


@pytest.mark.asyncio
async def test_datastore_errors_surface_as_datastore_exception(store):
    store.fail_on.add("has_processed_webhook_event")
    guard = ReplayGuard(store)
    with pytest.raises(DatastoreException):
        await guard.should_process(Vendor.GREEN, "evt_1")

    store.fail_on = {"record_webhook_event"}
    with pytest.raises(DatastoreException):
        await guard.mark_processed(_event())


@pytest.mark.asyncio
async def test_same_transaction_is_serialised():
    locks = PaymentLockManager()
    order = []

    async def worker(name, delay):
        async with locks.hold("green", "tx_1"):
            order.append(f"{name}:start")
            await asyncio.sleep(delay)
            order.append(f"{name}:end")

    await asyncio.gather(worker("a", 0.02), worker("b", 0))

    assert order == ["a:start", "a:end", "b:start", "b:end"]
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_different_transactions_run_concurrently():
    locks = PaymentLockManager()
    inside = asyncio.Event()
    release = asyncio.Event()

    async def first():
        async with locks.hold("green", "tx_1"):
            inside.set()
            await release.wait()

    async def second():
        await inside.wait()
        async with locks.hold("green", "tx_2"):
            release.set()

    await asyncio.wait_for(asyncio.gather(first(), second()), timeout=1)
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_lock_is_released_when_the_body_raises():
    locks = PaymentLockManager()
    with pytest.raises(RuntimeError):
        async with locks.hold("hotmart", "tx_9"):
            raise RuntimeError("boom")

    assert len(locks) == 0
    async with locks.hold("hotmart", "tx_9"):
        pass

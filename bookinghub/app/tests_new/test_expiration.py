import asyncio
import logging
from datetime import UTC, datetime

import pytest

from bookinghub.app.core.errors import InternalStoreError
from bookinghub.app.domain.entities import ReapResult, ReservationKind
from bookinghub.app.domain.models import BookingStatus
from bookinghub.app.tests_new.fakes import MONDAY
from bookinghub.app.workers import expiration

MONDAY_NOON = datetime(MONDAY.year, MONDAY.month, MONDAY.day, 12, 0, tzinfo=UTC)


async def _hold(manager, salon, time):
    return await manager.reserve(salon.tenant, salon.service_id, salon.staff_id, MONDAY, time)


async def test_reap_deletes_only_expired_holds(manager, store, salon, clock):
    old = await _hold(manager, salon, "09:00")
    clock.advance(minutes=10)
    fresh = await _hold(manager, salon, "11:00")
    clock.advance(minutes=6)

    result = await expiration.reap_expired(store, clock())
    assert result == ReapResult(holds_deleted=1, pending_cancelled=0)
    assert old.id not in store.holds
    assert fresh.id in store.holds

    # A second sweep finds nothing left to do
    assert (await expiration.reap_expired(store, clock())).total == 0


async def test_reap_cancels_expired_placeholders(manager, store, salon, clock):
    store.reservation_kind = ReservationKind.PENDING_BOOKING
    placeholder = await _hold(manager, salon, "09:00")
    confirmed = store.add_booking(salon.tenant, salon.service_id, salon.staff_id, MONDAY_NOON)
    clock.advance(minutes=30)

    result = await expiration.reap_expired(store, clock())
    assert result.pending_cancelled == 1
    reaped = store.bookings[placeholder.id]
    assert reaped.status is BookingStatus.CANCELLED
    assert reaped.cancelled_by == "expired"
    assert store.bookings[confirmed.id].status is BookingStatus.CONFIRMED


async def test_reap_is_scoped_to_tenant(manager, store, salon, clock):
    await _hold(manager, salon, "09:00")
    other = store.add_tenant("elsewhere")
    clock.advance(minutes=30)

    assert (await expiration.reap_expired(store, clock(), other.id)).total == 0
    assert (await expiration.reap_expired(store, clock(), salon.tenant.id)).holds_deleted == 1


async def test_reap_quietly_swallows_store_errors(store, caplog):
    store.failing.add("delete_expired")

    with pytest.raises(InternalStoreError):
        await expiration.reap_expired(store)

    with caplog.at_level(logging.WARNING, logger="bookinghub.app.workers.expiration"):
        result = await expiration.reap_quietly(store)
    assert result == ReapResult()
    assert "Inline expiry sweep failed" in caplog.text


async def test_reserve_proceeds_when_inline_sweep_fails(manager, store, salon):
    store.failing.add("delete_expired")
    reservation = await _hold(manager, salon, "10:00")
    assert reservation.id in store.holds


async def test_worker_sweeps_and_stops(manager, store, salon, monkeypatch):
    await _hold(manager, salon, "10:00")
    # The worker uses the wall clock, which is far past the fixture clock
    monkeypatch.setenv("RESERVATION_EXPIRE_CHECK_SECONDS", "1")

    stop = await expiration.start_expiration_worker(store, initial_delay=0.01)
    for _ in range(200):
        if not store.holds:
            break
        await asyncio.sleep(0.01)
    await expiration.stop_expiration_worker(stop)

    assert store.holds == {}
    assert "delete_expired" in store.calls


async def test_worker_survives_store_errors(store, caplog):
    store.failing.add("delete_expired")
    stop = await expiration.start_expiration_worker(store, initial_delay=0.01)
    for _ in range(200):
        if "delete_expired" in store.calls:
            break
        await asyncio.sleep(0.01)
    await stop()
    assert "delete_expired" in store.calls
    assert "Expiration worker iteration error" in caplog.text


async def test_stop_without_worker_is_noop():
    await expiration.stop_expiration_worker(None)

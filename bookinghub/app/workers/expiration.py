"""Background worker to reclaim abandoned reservations.

Each sweep deletes slot holds whose ``expires_at`` has passed and cancels
pending ``RESERVED`` placeholder bookings past their deadline. Sweeps are
conditional statements, so running several at once (worker, inline call,
cron endpoint) is harmless.

start_expiration_worker returns an async callable that stops the worker gracefully.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from bookinghub.app.core.constants import RESERVATION_EXPIRE_CHECK_SECONDS
from bookinghub.app.domain.entities import ReapResult
from bookinghub.app.services.shared_services import get_env_int as _get_env_int, utc_now

if TYPE_CHECKING:
    from bookinghub.app.services.repositories import OccupancyStore

logger = logging.getLogger(__name__)


async def reap_expired(
    store: "OccupancyStore", now: datetime | None = None, tenant_id: uuid.UUID | None = None
) -> ReapResult:
    """Run one sweep and report what it reclaimed. Errors propagate."""
    result = await store.delete_expired(now or utc_now(), tenant_id)
    if result.total:
        logger.info(
            "Reclaimed %d expired holds and %d pending placeholders%s",
            result.holds_deleted,
            result.pending_cancelled,
            f" for tenant {tenant_id}" if tenant_id else "",
        )
    return result


async def reap_quietly(
    store: "OccupancyStore", now: datetime | None = None, tenant_id: uuid.UUID | None = None
) -> ReapResult:
    """Inline best-effort sweep before a reservation; never blocks the caller."""
    try:
        return await reap_expired(store, now, tenant_id)
    except Exception as e:
        logger.warning("Inline expiry sweep failed (ignored): %s", e)
        return ReapResult()


async def _run_loop(store: "OccupancyStore", stop_event: asyncio.Event, initial_delay: float = 2) -> None:
    # initial small delay to avoid hammering immediately at startup
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=initial_delay)
        return
    except asyncio.TimeoutError:
        pass
    while not stop_event.is_set():
        try:
            await reap_expired(store)
        except Exception as e:
            logger.exception("Expiration worker iteration error: %s", e)
        # Recompute interval each iteration from ENV so changes
        # take effect without restarting the process.
        cur_interval = max(1, _get_env_int("RESERVATION_EXPIRE_CHECK_SECONDS", RESERVATION_EXPIRE_CHECK_SECONDS))
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=cur_interval)
        except asyncio.TimeoutError:
            continue


async def start_expiration_worker(
    store: Optional["OccupancyStore"] = None, *, initial_delay: float = 2
) -> Callable[[], Awaitable[None]]:
    """Start the expiration worker and return an async stop() function."""
    if store is None:
        from bookinghub.app.services.repositories import SqlBookingStore

        store = SqlBookingStore()
    interval_seconds = _get_env_int("RESERVATION_EXPIRE_CHECK_SECONDS", RESERVATION_EXPIRE_CHECK_SECONDS)
    stop_event: asyncio.Event = asyncio.Event()
    task = asyncio.create_task(_run_loop(store, stop_event, initial_delay), name="expire-worker")

    async def _stop() -> None:
        stop_event.set()
        try:
            await asyncio.wait_for(task, timeout=5)
        except asyncio.TimeoutError:
            logger.warning("expiration: worker did not stop in time, cancelling")
            task.cancel()

    logger.info("Expiration worker started (interval=%ss)", interval_seconds)
    return _stop


async def stop_expiration_worker(stop_callable: Optional[Callable[[], Awaitable[None]]] = None) -> None:
    """Call the stop callable returned by start_expiration_worker, if any."""
    if stop_callable:
        await stop_callable()


__all__ = ["reap_expired", "reap_quietly", "start_expiration_worker", "stop_expiration_worker"]

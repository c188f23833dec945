"""
Background Sweeper
==================

Every ``SWEEP_INTERVAL_SECONDS`` (default 15 s) one API process:

1. re-dispatches every ride still ``requested`` after an earlier
   ``NoCandidate``;
2. settles payments left ``pending`` or ``authorized`` by processor
   outages or lost background tasks.

A Redis ``DistributedLock`` keeps two processes from sweeping at once.
That only avoids duplicate work: every reservation and transition is
still protected by its own database transaction.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from rideconnect.config import settings
from rideconnect.infrastructure.database import async_session_factory
from rideconnect.infrastructure.locks import DistributedLock
from rideconnect.infrastructure.redis_client import get_redis
from rideconnect.services.container import Services, build_services

logger = logging.getLogger(__name__)

LOCK_NAME = "sweeper"
LOCK_TTL_SECONDS = 60

_task: Optional[asyncio.Task] = None
_stop_event: Optional[asyncio.Event] = None


async def start_sweeper(services: Optional[Services] = None) -> None:
    global _task, _stop_event
    if services is None:
        services = build_services(async_session_factory, settings)
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_run(services, _stop_event))
    logger.info("Sweeper started (interval=%ds)", settings.sweep_interval_seconds)


async def stop_sweeper() -> None:
    global _task, _stop_event
    if _stop_event is not None:
        _stop_event.set()
    if _task is not None:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    _task = _stop_event = None
    logger.info("Sweeper stopped")


async def _run(services: Services, stop: asyncio.Event) -> None:
    while not stop.is_set():
        try:
            await run_sweep_cycle(services)
        except Exception:
            logger.exception("Sweep cycle failed")
        try:
            await asyncio.wait_for(stop.wait(), timeout=settings.sweep_interval_seconds)
        except asyncio.TimeoutError:
            continue


async def run_sweep_cycle(services: Services, redis=None) -> tuple[int, int]:
    """One locked pass.  Returns (rides assigned, payments settled)."""
    if redis is None:
        redis = await get_redis()
    lock = DistributedLock(redis, LOCK_NAME, ttl_seconds=LOCK_TTL_SECONDS)

    if not await lock.acquire():
        logger.debug("Sweeper lock held elsewhere; skipping cycle")
        return 0, 0

    settled = 0
    try:
        assigned = await services.coordinator.redispatch_pending()
        if await lock.extend():
            settled = await services.payments.settle_outstanding()
        else:
            logger.warning("Sweeper lock expired during re-dispatch; skipping payments")
    finally:
        await lock.release()

    if assigned or settled:
        logger.info("Sweep cycle: %d rides assigned, %d payments settled", assigned, settled)
    return assigned, settled

"""
Dispatch Coordinator
====================

Request -> assignment under contention.

1. Persist the ride as ``requested`` (its own commit, so no request is
   ever lost).
2. Ask the matcher for the best driver from an availability snapshot.
3. Reserve the driver and move the ride to ``assigned`` in one
   transaction (``RideLifecycle.assign``).
4. If another dispatch claimed that driver first (``ReservationConflict``),
   exclude it and go back to 2, at most ``max_retries`` times.
5. No driver, or retries exhausted: bump the ride's no-candidate counter,
   log a ``no_candidate`` event and raise ``NoCandidate``.  The ride stays
   ``requested`` and the sweeper will try again.

Two coordinators may work on the same ride (sweeper and admin re-dispatch
overlapping a request).  The one that loses finds the ride already
``assigned`` and returns it; its driver reservation rolls back.

Nothing here takes a global lock; contention is resolved per driver row.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rideconnect.domain.entities import Actor, Location, RideRequest
from rideconnect.domain.enums import RideStatus
from rideconnect.domain.errors import (
    InvalidTransition,
    NoCandidate,
    ReservationConflict,
    RideNotFound,
)
from rideconnect.domain.matching import Matcher
from rideconnect.domain.pricing import PricingEngine
from rideconnect.infrastructure.models import RideModel
from rideconnect.infrastructure.repositories import (
    DriverRepository,
    RideEventRepository,
    RideRepository,
)
from rideconnect.services.lifecycle import RideLifecycle

logger = logging.getLogger(__name__)


class DispatchCoordinator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        matcher: Matcher,
        lifecycle: RideLifecycle,
        pricing: PricingEngine,
        max_retries: int = 3,
    ):
        self.session_factory = session_factory
        self.matcher = matcher
        self.lifecycle = lifecycle
        self.pricing = pricing
        self.max_retries = max_retries

    async def dispatch(self, request: RideRequest) -> RideModel:
        """Submit and assign.  Returns the assigned ride or raises
        ``NoCandidate`` with the ride left ``requested``."""
        ride = await self.submit(request)
        if ride.status != RideStatus.REQUESTED:
            # idempotent resubmission of a ride that already moved on
            return ride
        return await self.assign(ride.id)

    async def submit(self, request: RideRequest) -> RideModel:
        async with self.session_factory() as session, session.begin():
            rides = RideRepository(session)

            # ── Idempotency guard ─────────────────────────────────────
            if request.idempotency_key:
                existing = await rides.get_by_idempotency_key(request.idempotency_key)
                if existing is not None:
                    return existing

            surge = self.pricing.compute_surge(
                await rides.count_requested() + 1,
                await DriverRepository(session).count_available(),
            )
            ride = await rides.create_ride(
                rider_id=request.rider_id,
                origin=request.origin,
                destination=request.destination,
                surge_multiplier=surge,
                idempotency_key=request.idempotency_key,
            )
            await RideEventRepository(session).append(
                ride.id,
                RideStatus.REQUESTED.value,
                {
                    "prior_status": None,
                    "new_status": RideStatus.REQUESTED.value,
                    "actor": Actor.rider(request.rider_id).as_payload(),
                    "surge_multiplier": surge,
                },
            )

        logger.info("Ride %s requested by rider %s", ride.id, request.rider_id)
        return ride

    async def assign(self, ride_id: UUID) -> RideModel:
        """Find and reserve a driver for a requested ride.

        A ride that is no longer ``requested`` (another dispatch won, or it
        was canceled) is returned unchanged.
        """
        ride = await self.lifecycle.get_ride(ride_id)
        if ride.status != RideStatus.REQUESTED:
            logger.info("Ride %s is already %s; nothing to assign", ride_id, ride.status.value)
            return ride
        request = RideRequest(
            rider_id=ride.rider_id,
            origin=Location(ride.origin_lat, ride.origin_lng),
            destination=Location(ride.dest_lat, ride.dest_lng),
        )

        excluded: set[UUID] = set()
        attempts = 0
        while attempts <= self.max_retries:
            attempts += 1
            try:
                driver_id = await self.matcher.select(request, exclude=excluded)
            except NoCandidate:
                break
            try:
                return await self.lifecycle.assign(ride_id, driver_id)
            except ReservationConflict:
                logger.info(
                    "Driver %s claimed concurrently; retrying ride %s (attempt %d)",
                    driver_id, ride_id, attempts,
                )
                excluded.add(driver_id)
            except InvalidTransition:
                ride = await self.lifecycle.get_ride(ride_id)
                if ride.status == RideStatus.REQUESTED:
                    raise
                logger.info(
                    "Ride %s became %s during dispatch; driver %s not needed",
                    ride_id, ride.status.value, driver_id,
                )
                return ride

        ride = await self.lifecycle.get_ride(ride_id)
        if ride.status != RideStatus.REQUESTED:
            return ride
        await self._record_no_candidate(ride_id, attempts)
        raise NoCandidate(ride_id, attempts)

    async def redispatch_pending(self, limit: int = 100) -> int:
        """Retry every ride still waiting for a driver.  Returns how many
        were assigned."""
        async with self.session_factory() as session:
            pending = await RideRepository(session).get_requested_rides(limit)

        assigned = 0
        for ride in pending:
            try:
                ride = await self.assign(ride.id)
            except (NoCandidate, InvalidTransition, RideNotFound):
                continue
            if ride.status == RideStatus.ASSIGNED:
                assigned += 1
        return assigned

    async def _record_no_candidate(self, ride_id: UUID, attempts: int) -> None:
        async with self.session_factory() as session, session.begin():
            rides = RideRepository(session)
            ride = await rides.lock(ride_id)
            if ride is None or ride.status != RideStatus.REQUESTED:
                return
            await rides.record_no_candidate(ride_id)
            await RideEventRepository(session).append(
                ride_id,
                "no_candidate",
                {
                    "prior_status": RideStatus.REQUESTED.value,
                    "new_status": RideStatus.REQUESTED.value,
                    "actor": Actor.system().as_payload(),
                    "attempts": attempts,
                },
            )
        logger.info("No candidate for ride %s after %d attempt(s)", ride_id, attempts)

"""
Lifecycle State Machine
=======================

Validates and applies ride status transitions.  Every transition runs in
a single database transaction:

1. lock the ride's driver row (if any), then the ride row  -- driver
   before ride, always, so two transitions can never deadlock; if the
   ride changed driver before its row was locked, start over;
2. check the transition table and the actor guard;
3. compare-and-set the ride status (``WHERE status = :current``);
4. apply side effects (driver reservation/release, payment creation);
5. append one ``ride_events`` row.

A failure at any step rolls the whole transaction back, so a transition is
applied completely or not at all.  Re-applying the transition a ride is
already in is a no-op success, which makes duplicate deliveries harmless.

Transition table
----------------
    requested -> assigned   (dispatch; driver must still be available)
    assigned  -> enroute    (assigned driver)
    enroute   -> started    (assigned driver)
    started   -> completed  (assigned driver; fare + pending payment)
    requested|assigned|enroute|started -> canceled  (rider, driver, system)
"""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rideconnect.domain.entities import Actor, Location, ensure_transition
from rideconnect.domain.enums import ACTIVE_STATUSES, ActorKind, RideStatus
from rideconnect.domain.errors import (
    InvalidTransition,
    ReservationConflict,
    RideNotFound,
)
from rideconnect.domain.pricing import PricingEngine
from rideconnect.infrastructure.models import RideEventModel, RideModel
from rideconnect.infrastructure.repositories import (
    DriverRepository,
    PaymentRepository,
    RideEventRepository,
    RideRepository,
)

logger = logging.getLogger(__name__)

DRIVER_TRIGGERED = frozenset(
    {RideStatus.ENROUTE, RideStatus.STARTED, RideStatus.COMPLETED}
)

# Fresh transactions tried when the ride's driver changes mid-lock
LOCK_ATTEMPTS = 3


class _DriverChanged(Exception):
    pass


class RideLifecycle:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        pricing: PricingEngine,
        currency: str = "USD",
    ):
        self.session_factory = session_factory
        self.pricing = pricing
        self.currency = currency

    # ── Public API ────────────────────────────────────────────────────

    async def assign(self, ride_id: UUID, driver_id: UUID) -> RideModel:
        """Reserve *driver_id* and move the ride requested -> assigned.

        Raises ``ReservationConflict`` if the driver was claimed since the
        matcher's snapshot, ``InvalidTransition`` if the ride left
        ``requested`` (e.g. canceled).  Either way nothing is changed.
        """
        async with self.session_factory() as session, session.begin():
            rides = RideRepository(session)
            if not await DriverRepository(session).try_reserve(driver_id):
                raise ReservationConflict(driver_id)

            ride = await rides.lock(ride_id)
            if ride is None:
                raise RideNotFound(ride_id)
            if ride.status == RideStatus.ASSIGNED:
                raise InvalidTransition(
                    ride.status, RideStatus.ASSIGNED, "already assigned by a concurrent dispatch"
                )
            ensure_transition(ride.status, RideStatus.ASSIGNED)
            if not await rides.compare_and_set_status(
                ride_id, RideStatus.REQUESTED, RideStatus.ASSIGNED,
                driver_id=driver_id,
            ):
                raise InvalidTransition(
                    ride.status, RideStatus.ASSIGNED, "ride changed concurrently"
                )
            await session.refresh(ride)
            await self._emit(
                session, ride, RideStatus.REQUESTED, Actor.system(),
                driver_id=str(driver_id),
            )

        logger.info("Ride %s assigned to driver %s", ride_id, driver_id)
        return ride

    async def confirm_enroute(self, ride_id: UUID, driver_id: UUID) -> RideModel:
        return await self.apply(ride_id, RideStatus.ENROUTE, Actor.driver(driver_id))

    async def confirm_pickup(self, ride_id: UUID, driver_id: UUID) -> RideModel:
        return await self.apply(ride_id, RideStatus.STARTED, Actor.driver(driver_id))

    async def confirm_dropoff(self, ride_id: UUID, driver_id: UUID) -> RideModel:
        return await self.apply(ride_id, RideStatus.COMPLETED, Actor.driver(driver_id))

    async def cancel(
        self, ride_id: UUID, actor: Actor, reason: Optional[str] = None
    ) -> RideModel:
        return await self.apply(ride_id, RideStatus.CANCELED, actor, reason=reason)

    async def apply(
        self,
        ride_id: UUID,
        target: RideStatus,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> RideModel:
        """Apply a driver- or rider-triggered transition."""
        if target == RideStatus.ASSIGNED:
            raise InvalidTransition(None, target, "assignment goes through dispatch")

        for _ in range(LOCK_ATTEMPTS):
            try:
                return await self._apply_once(ride_id, target, actor, reason)
            except _DriverChanged:
                logger.debug("Ride %s changed driver while locking; retrying", ride_id)
        raise InvalidTransition(None, target, "ride kept changing while locking")

    async def _apply_once(
        self,
        ride_id: UUID,
        target: RideStatus,
        actor: Actor,
        reason: Optional[str],
    ) -> RideModel:
        async with self.session_factory() as session, session.begin():
            rides = RideRepository(session)
            ride = await self._lock_driver_then_ride(session, ride_id)
            current = RideStatus(ride.status)

            if current == target:
                await self._check_duplicate(session, ride, target, actor)
                logger.debug("Ride %s already %s; ignoring duplicate", ride_id, target.value)
                return ride

            ensure_transition(current, target)
            self._check_actor(ride, target, actor)

            driver_id = ride.driver_id
            values: dict = {}
            extra: dict = {}
            if target == RideStatus.COMPLETED:
                values["fare_cents"] = self.pricing.fare_cents(
                    Location(ride.origin_lat, ride.origin_lng),
                    Location(ride.dest_lat, ride.dest_lng),
                    ride.surge_multiplier,
                )
                extra["fare_cents"] = values["fare_cents"]
            elif target == RideStatus.CANCELED:
                values["driver_id"] = None
                extra["reason"] = reason
                extra["driver_id"] = str(driver_id) if driver_id else None

            if not await rides.compare_and_set_status(ride_id, current, target, **values):
                raise InvalidTransition(current, target, "ride changed concurrently")

            if target == RideStatus.COMPLETED:
                payment = await PaymentRepository(session).create(
                    ride_id=ride_id,
                    amount_cents=values["fare_cents"],
                    currency=self.currency,
                )
                extra["payment_id"] = str(payment.id)
            if target in (RideStatus.COMPLETED, RideStatus.CANCELED) and driver_id:
                await DriverRepository(session).release(driver_id)

            await session.refresh(ride)
            await self._emit(session, ride, current, actor, **extra)

        logger.info(
            "Ride %s %s -> %s by %s", ride_id, current.value, target.value, actor.kind.value
        )
        return ride

    async def get_ride(self, ride_id: UUID) -> RideModel:
        async with self.session_factory() as session:
            ride = await RideRepository(session).get_by_id(ride_id)
        if ride is None:
            raise RideNotFound(ride_id)
        return ride

    async def events(self, ride_id: UUID) -> list[RideEventModel]:
        async with self.session_factory() as session:
            if await RideRepository(session).get_by_id(ride_id) is None:
                raise RideNotFound(ride_id)
            return await RideEventRepository(session).list_for_ride(ride_id)

    async def purge_ride(self, ride_id: UUID) -> None:
        """Administrative deletion.  Cascades events and payment and frees
        the driver if the ride was still active."""
        for _ in range(LOCK_ATTEMPTS):
            try:
                async with self.session_factory() as session, session.begin():
                    ride = await self._lock_driver_then_ride(session, ride_id)
                    if ride.status in ACTIVE_STATUSES:
                        await DriverRepository(session).release(ride.driver_id)
                    await RideRepository(session).delete_cascade(ride_id)
                break
            except _DriverChanged:
                logger.debug("Ride %s changed driver while locking; retrying", ride_id)
        else:
            raise InvalidTransition(None, "purged", "ride kept changing while locking")
        logger.warning("Ride %s purged administratively", ride_id)

    async def _lock_driver_then_ride(self, session: AsyncSession, ride_id: UUID) -> RideModel:
        """Lock the ride's driver, then the ride.

        The driver is chosen from an unlocked read, so the ride is checked
        again once locked; ``_DriverChanged`` means start a fresh transaction.
        """
        rides = RideRepository(session)
        snapshot = await rides.get_by_id(ride_id)
        if snapshot is None:
            raise RideNotFound(ride_id)
        locked_driver = snapshot.driver_id
        if locked_driver is not None:
            await DriverRepository(session).lock(locked_driver)

        ride = await rides.lock(ride_id)
        if ride is None:
            raise RideNotFound(ride_id)
        if ride.driver_id != locked_driver:
            raise _DriverChanged()
        return ride

    # ── Guards ────────────────────────────────────────────────────────

    def _check_actor(self, ride: RideModel, target: RideStatus, actor: Actor) -> None:
        if target in DRIVER_TRIGGERED:
            if actor.kind != ActorKind.DRIVER or actor.user_id != ride.driver_id:
                raise InvalidTransition(
                    ride.status, target, "only the assigned driver may do this"
                )
            return

        # cancel
        if actor.kind == ActorKind.SYSTEM:
            return
        if actor.kind == ActorKind.RIDER and actor.user_id == ride.rider_id:
            return
        if actor.kind == ActorKind.DRIVER and actor.user_id == ride.driver_id:
            return
        raise InvalidTransition(ride.status, target, "actor is not part of this ride")

    async def _check_duplicate(
        self, session: AsyncSession, ride: RideModel, target: RideStatus, actor: Actor
    ) -> None:
        if target != RideStatus.CANCELED:
            self._check_actor(ride, target, actor)
            return
        # driver_id is cleared on cancel; the cancel event remembers it
        if actor.kind == ActorKind.DRIVER:
            events = await RideEventRepository(session).list_for_ride(ride.id)
            last = events[-1].payload if events else {}
            if last.get("driver_id") == str(actor.user_id):
                return
            raise InvalidTransition(ride.status, target, "actor is not part of this ride")
        self._check_actor(ride, target, actor)

    # ── Events ────────────────────────────────────────────────────────

    async def _emit(
        self,
        session: AsyncSession,
        ride: RideModel,
        prior: RideStatus,
        actor: Actor,
        **extra,
    ) -> None:
        status = RideStatus(ride.status)
        await RideEventRepository(session).append(
            ride.id,
            status.value,
            {
                "prior_status": prior.value,
                "new_status": status.value,
                "actor": actor.as_payload(),
                **extra,
            },
        )

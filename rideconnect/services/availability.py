"""
Availability Index
==================

The ``drivers`` table *is* the index: ``is_available`` plus an H3 cell
column kept current by the methods below.  ``candidates`` returns a
point-in-time snapshot (a tuple), never a live cursor; staleness between
the snapshot and the reservation is resolved by the dispatch
coordinator's optimistic retry.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rideconnect.domain.clock import utcnow
from rideconnect.domain.distance import distance_km
from rideconnect.domain.entities import DriverCandidate, Location
from rideconnect.domain.errors import DriverNotFound, DriverReserved
from rideconnect.domain.matching import (
    covering_cells,
    driver_h3_cell,
    rank_candidates,
)
from rideconnect.infrastructure.models import DriverModel
from rideconnect.infrastructure.repositories import DriverRepository, RideRepository

logger = logging.getLogger(__name__)


class AvailabilityIndex:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        h3_resolution: int = 7,
    ):
        self.session_factory = session_factory
        self.h3_resolution = h3_resolution

    async def mark_available(self, driver_id: UUID, location: Location) -> DriverModel:
        """Put a driver online at *location*.

        Raises ``DriverReserved`` (and changes nothing) while the driver
        still holds an assigned, en-route or started ride.
        """
        async with self.session_factory() as session, session.begin():
            driver = await self._lock(session, driver_id)
            driver.is_online = True
            driver.is_available = True
            self._place(driver, location)
            driver.updated_at = utcnow()
            # write first, then verify, so the check runs inside the write lock
            await session.flush()

            active = await RideRepository(session).get_active_for_driver(driver_id)
            if active is not None:
                raise DriverReserved(driver_id, active.id)

        logger.info("Driver %s available at %s", driver_id, driver.h3_cell)
        return driver

    async def mark_unavailable(self, driver_id: UUID) -> DriverModel:
        """Take a driver offline.  A ride in progress is not affected, but
        the driver will not become available again when it ends."""
        async with self.session_factory() as session, session.begin():
            driver = await self._lock(session, driver_id)
            driver.is_online = False
            driver.is_available = False
            driver.updated_at = utcnow()

        logger.info("Driver %s offline", driver_id)
        return driver

    async def update_location(self, driver_id: UUID, location: Location) -> DriverModel:
        async with self.session_factory() as session, session.begin():
            driver = await self._lock(session, driver_id)
            self._place(driver, location)
            driver.updated_at = utcnow()
        return driver

    async def candidates(
        self, origin: Location, radius_km: float
    ) -> tuple[DriverCandidate, ...]:
        """Available drivers within *radius_km* of *origin*, best first."""
        cells = covering_cells(origin, radius_km, self.h3_resolution)
        async with self.session_factory() as session:
            drivers = await DriverRepository(session).get_available_in_cells(cells)

        found = []
        for driver in drivers:
            position = Location(driver.location_lat, driver.location_lng)
            distance = distance_km(origin, position)
            if distance > radius_km:
                continue
            found.append(
                DriverCandidate(
                    driver_id=driver.id,
                    location=position,
                    distance_km=distance,
                    rating=float(driver.rating),
                    updated_at=driver.updated_at,
                )
            )
        return rank_candidates(found)

    async def count_available(self) -> int:
        async with self.session_factory() as session:
            return await DriverRepository(session).count_available()

    # ── helpers ───────────────────────────────────────────────────────

    async def _lock(self, session: AsyncSession, driver_id: UUID) -> DriverModel:
        driver = await DriverRepository(session).lock(driver_id)
        if driver is None:
            raise DriverNotFound(driver_id)
        return driver

    def _place(self, driver: DriverModel, location: Location) -> None:
        driver.location_lat = location.latitude
        driver.location_lng = location.longitude
        driver.h3_cell = driver_h3_cell(
            location.latitude, location.longitude, self.h3_resolution
        )

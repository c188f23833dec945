"""
Shared test fixtures.

Uses a throw-away SQLite file per test (via aiosqlite) so tests run
without Docker / PostgreSQL / Redis.  A file rather than ``:memory:`` keeps
sessions on separate connections, so concurrent dispatches really contend.
"""

from __future__ import annotations

import uuid
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from rideconnect.config import Settings
from rideconnect.domain.distance import offset
from rideconnect.domain.entities import Location, RideRequest
from rideconnect.domain.enums import (
    ACTIVE_STATUSES,
    DRIVER_BOUND_STATUSES,
    RideStatus,
    UserRole,
)
from rideconnect.infrastructure.database import Base
from rideconnect.infrastructure.models import (
    DriverModel,
    PaymentModel,
    RideEventModel,
    RideModel,
)
from rideconnect.infrastructure.repositories import DriverRepository, UserRepository
from rideconnect.services.container import Services, build_services

# San Francisco, as in the RideConnect seed data
ORIGIN = Location(37.7749, -122.4194)
DESTINATION = Location(37.7849, -122.4094)


def north_of(origin: Location, km: float) -> Location:
    return offset(origin, north_km=km)


def east_of(origin: Location, km: float) -> Location:
    return offset(origin, east_km=km)


def request_for(rider_id, origin: Location = ORIGIN, key: str | None = None) -> RideRequest:
    return RideRequest(
        rider_id=rider_id, origin=origin, destination=DESTINATION, idempotency_key=key
    )


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite://",
        initial_search_radius_km=1.0,
        max_search_radius_km=8.0,
        search_radius_growth=2.0,
        dispatch_max_retries=3,
        base_fare_cents=250,
        rate_per_km_cents=120,
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Create tables in a fresh database file, yield a factory, dispose."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'rideconnect.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def services(session_factory, test_settings) -> Services:
    return build_services(session_factory, test_settings)


@pytest.fixture
def make_rider(session_factory):
    async def _make(name: str = "Rita Rider") -> uuid.UUID:
        async with session_factory() as session, session.begin():
            user = await UserRepository(session).create_user(
                name=name,
                email=f"rider-{uuid.uuid4().hex[:10]}@example.com",
                password_hash="dev_hash",
                role=UserRole.RIDER,
            )
        return user.id

    return _make


@pytest.fixture
def make_driver(session_factory, services):
    async def _make(
        location: Location | None = None, rating: float = 5.0, name: str = "Dina Driver"
    ) -> uuid.UUID:
        async with session_factory() as session, session.begin():
            user = await UserRepository(session).create_user(
                name=name,
                email=f"driver-{uuid.uuid4().hex[:10]}@example.com",
                password_hash="dev_hash",
                role=UserRole.DRIVER,
            )
            await DriverRepository(session).create_profile(
                user_id=user.id,
                vehicle_info="Toyota Prius - Blue - ABC-123",
                license_no=f"LIC-{user.id.hex[:6]}",
                rating=rating,
            )
        if location is not None:
            await services.index.mark_available(user.id, location)
        return user.id

    return _make


@pytest.fixture
def load(session_factory):
    """Fetch a fresh copy of a row by primary key."""

    async def _load(model, pk):
        async with session_factory() as session:
            return await session.get(model, pk)

    return _load


@pytest.fixture
def ride_at(services, make_rider, make_driver):
    """Dispatch a ride to a nearby driver and drive it to *status*."""

    async def _ride_at(status: RideStatus):
        rider_id = await make_rider()
        driver_id = await make_driver(north_of(ORIGIN, 0.5))
        ride = await services.coordinator.dispatch(request_for(rider_id))
        steps = [
            (RideStatus.ENROUTE, services.lifecycle.confirm_enroute),
            (RideStatus.STARTED, services.lifecycle.confirm_pickup),
            (RideStatus.COMPLETED, services.lifecycle.confirm_dropoff),
        ]
        for target, step in steps:
            if ride.status == status:
                break
            ride = await step(ride.id, driver_id)
        assert ride.status == status
        return ride, rider_id, driver_id

    return _ride_at


@pytest.fixture
def check_invariants(session_factory):
    """Assert the cross-entity invariants over the whole store."""

    async def _check():
        async with session_factory() as session:
            rides = (await session.execute(select(RideModel))).scalars().all()
            drivers = (await session.execute(select(DriverModel))).scalars().all()
            payments = (await session.execute(select(PaymentModel))).scalars().all()
            events = (
                await session.execute(
                    select(RideEventModel).order_by(RideEventModel.sequence)
                )
            ).scalars().all()

        paid = {p.ride_id for p in payments}
        assert len(paid) == len(payments)
        busy = set()
        for ride in rides:
            bound = ride.status in DRIVER_BOUND_STATUSES
            assert (ride.driver_id is not None) == bound, ride.status
            if ride.status in ACTIVE_STATUSES:
                busy.add(ride.driver_id)
            assert (ride.id in paid) == (ride.status == RideStatus.COMPLETED)

            log = [e for e in events if e.ride_id == ride.id]
            assert log, "every ride has at least its request event"
            assert log[-1].payload["new_status"] == ride.status.value
            assert [e.sequence for e in log] == list(range(1, len(log) + 1))
            stamps = [e.created_at for e in log]
            assert stamps == sorted(stamps)

        for driver in drivers:
            if driver.id in busy:
                assert driver.is_available is False

    return _check

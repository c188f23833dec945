"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 2 riders (Rita, Rob)
  - 2 drivers in San Francisco (Dina online, Dan offline)
  - 2 completed rides, dispatched and driven through the engine so that
    their events and captured payments are real
"""

import asyncio

from sqlalchemy import func, select

from rideconnect.config import settings
from rideconnect.domain.entities import Location, RideRequest
from rideconnect.domain.enums import UserRole
from rideconnect.infrastructure.database import async_session_factory, engine
from rideconnect.infrastructure.models import UserModel
from rideconnect.infrastructure.repositories import DriverRepository, UserRepository
from rideconnect.services.container import build_services

RIDERS = [
    {"name": "Rita Rider", "email": "rita.rider@example.com", "password_hash": "dev_hash_rita"},
    {"name": "Rob Rider", "email": "rob.rider@example.com", "password_hash": "dev_hash_rob"},
]

DRIVERS = [
    {
        "name": "Dina Driver", "email": "dina.driver@example.com",
        "password_hash": "dev_hash_dina",
        "vehicle_info": "Toyota Prius - Blue - ABC-123", "license_no": "LIC-DINA-001",
        "rating": 4.90, "online": True, "lat": 37.7749, "lng": -122.4194,
    },
    {
        "name": "Dan Driver", "email": "dan.driver@example.com",
        "password_hash": "dev_hash_dan",
        "vehicle_info": "Honda Civic - White - XYZ-789", "license_no": "LIC-DAN-002",
        "rating": 4.70, "online": False, "lat": 37.7849, "lng": -122.4094,
    },
]

# (rider index, origin, destination)
TRIPS = [
    (0, (37.7730, -122.4310), (37.7840, -122.4090)),
    (1, (37.7680, -122.4290), (37.7950, -122.3940)),
]


async def seed():
    async with async_session_factory() as session:
        count = await session.scalar(select(func.count()).select_from(UserModel))
        if count:
            print("Database already seeded. Skipping.")
            return

    services = build_services(async_session_factory, settings)

    # ── Users ─────────────────────────────────────────────────────────
    async with async_session_factory() as session, session.begin():
        users = UserRepository(session)
        drivers = DriverRepository(session)
        rider_ids = [
            (await users.create_user(role=UserRole.RIDER, **r)).id for r in RIDERS
        ]
        driver_ids = []
        for d in DRIVERS:
            user = await users.create_user(
                name=d["name"], email=d["email"],
                password_hash=d["password_hash"], role=UserRole.DRIVER,
            )
            await drivers.create_profile(
                user_id=user.id, vehicle_info=d["vehicle_info"],
                license_no=d["license_no"], rating=d["rating"],
            )
            driver_ids.append(user.id)
    print(f"  Created {len(rider_ids)} riders, {len(driver_ids)} drivers")

    for driver_id, d in zip(driver_ids, DRIVERS):
        if d["online"]:
            await services.index.mark_available(driver_id, Location(d["lat"], d["lng"]))

    # ── Rides ─────────────────────────────────────────────────────────
    for rider, origin, dest in TRIPS:
        ride = await services.coordinator.dispatch(
            RideRequest(
                rider_id=rider_ids[rider],
                origin=Location(*origin),
                destination=Location(*dest),
            )
        )
        lifecycle = services.lifecycle
        await lifecycle.confirm_enroute(ride.id, ride.driver_id)
        await lifecycle.confirm_pickup(ride.id, ride.driver_id)
        await lifecycle.confirm_dropoff(ride.id, ride.driver_id)
        payment = await services.payments.settle_ride(ride.id)
        print(f"  Ride {ride.id}: {payment.amount_cents} cents {payment.status.value}")

    print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())

"""Dispatch coordinator scenarios: matching, reservation conflicts, retries."""

import uuid

import pytest

from rideconnect.domain.entities import Actor
from rideconnect.domain.enums import RideStatus
from rideconnect.domain.errors import InvalidTransition, NoCandidate, RideNotFound
from rideconnect.domain.matching import Matcher
from rideconnect.domain.pricing import PricingEngine
from rideconnect.infrastructure.models import DriverModel, RideModel
from rideconnect.services.dispatch import DispatchCoordinator
from tests.conftest import ORIGIN, north_of, request_for


class StaleIndex:
    """Serves a snapshot taken earlier for the first *stale_reads* calls."""

    def __init__(self, index, snapshot, stale_reads=1):
        self.index = index
        self.snapshot = snapshot
        self.stale_reads = stale_reads

    async def candidates(self, origin, radius_km):
        if self.stale_reads > 0:
            self.stale_reads -= 1
            return tuple(c for c in self.snapshot if c.distance_km <= radius_km)
        return await self.index.candidates(origin, radius_km)


def coordinator_over(services, session_factory, index, max_retries=3):
    return DispatchCoordinator(
        session_factory,
        Matcher(index, 1.0, 8.0),
        services.lifecycle,
        PricingEngine(250, 120),
        max_retries=max_retries,
    )


@pytest.mark.asyncio
async def test_closest_driver_is_assigned(services, make_rider, make_driver, load, check_invariants):
    near = await make_driver(north_of(ORIGIN, 0.5))
    far = await make_driver(north_of(ORIGIN, 2.0))

    ride = await services.coordinator.dispatch(request_for(await make_rider()))

    assert ride.status == RideStatus.ASSIGNED
    assert ride.driver_id == near
    assert (await load(DriverModel, near)).is_available is False
    assert (await load(DriverModel, far)).is_available is True
    await check_invariants()


@pytest.mark.asyncio
async def test_falls_back_when_closest_was_claimed(
    services, session_factory, make_rider, make_driver, check_invariants
):
    near = await make_driver(north_of(ORIGIN, 0.5))
    far = await make_driver(north_of(ORIGIN, 2.0))
    snapshot = await services.index.candidates(ORIGIN, 8.0)

    # another request reserves the closer driver after our snapshot
    first = await services.coordinator.dispatch(request_for(await make_rider()))
    assert first.driver_id == near

    coordinator = coordinator_over(
        services, session_factory, StaleIndex(services.index, snapshot)
    )
    ride = await coordinator.dispatch(request_for(await make_rider()))

    assert ride.status == RideStatus.ASSIGNED
    assert ride.driver_id == far
    await check_invariants()


@pytest.mark.asyncio
async def test_no_driver_in_range(services, make_rider, make_driver, load, check_invariants):
    await make_driver(north_of(ORIGIN, 20.0))
    rider_id = await make_rider()

    with pytest.raises(NoCandidate) as info:
        await services.coordinator.dispatch(request_for(rider_id))

    ride = await load(RideModel, info.value.ride_id)
    assert ride.status == RideStatus.REQUESTED
    assert ride.driver_id is None
    assert ride.no_candidate_count == 1
    events = await services.lifecycle.events(ride.id)
    assert [e.event_type for e in events] == ["requested", "no_candidate"]
    await check_invariants()


@pytest.mark.asyncio
async def test_retries_are_bounded(services, session_factory, make_rider, make_driver, load):
    drivers = [await make_driver(north_of(ORIGIN, 0.1 * (i + 1))) for i in range(5)]
    snapshot = await services.index.candidates(ORIGIN, 8.0)
    for driver_id in drivers:
        await services.index.mark_unavailable(driver_id)

    coordinator = coordinator_over(
        services, session_factory, StaleIndex(services.index, snapshot, stale_reads=10),
        max_retries=3,
    )
    with pytest.raises(NoCandidate) as info:
        await coordinator.dispatch(request_for(await make_rider()))

    assert info.value.attempts == 4
    ride = await load(RideModel, info.value.ride_id)
    assert ride.status == RideStatus.REQUESTED
    for driver_id in drivers:
        assert (await load(DriverModel, driver_id)).is_available is False


@pytest.mark.asyncio
async def test_surge_frozen_at_request(services, make_rider):
    with pytest.raises(NoCandidate) as info:
        await services.coordinator.dispatch(request_for(await make_rider()))
    ride = await services.lifecycle.get_ride(info.value.ride_id)
    assert ride.surge_multiplier == 3.0  # nobody available


@pytest.mark.asyncio
async def test_idempotency_key(services, make_rider, make_driver):
    await make_driver(north_of(ORIGIN, 0.5))
    await make_driver(north_of(ORIGIN, 0.7))
    rider_id = await make_rider()

    first = await services.coordinator.dispatch(request_for(rider_id, key="unique-key-123"))
    second = await services.coordinator.dispatch(request_for(rider_id, key="unique-key-123"))

    assert first.id == second.id
    assert second.driver_id == first.driver_id
    assert await services.index.count_available() == 1


@pytest.mark.asyncio
async def test_canceled_ride_is_not_assigned(services, make_rider, make_driver, load):
    driver_id = await make_driver(north_of(ORIGIN, 0.5))
    rider_id = await make_rider()
    ride = await services.coordinator.submit(request_for(rider_id))
    await services.lifecycle.cancel(ride.id, Actor.rider(rider_id))

    result = await services.coordinator.assign(ride.id)
    assert result.status == RideStatus.CANCELED
    assert result.driver_id is None
    assert (await load(DriverModel, driver_id)).is_available is True


@pytest.mark.asyncio
async def test_reservation_rolled_back_when_ride_moved_on(
    services, make_rider, make_driver, load
):
    driver_id = await make_driver(north_of(ORIGIN, 0.5))
    rider_id = await make_rider()
    ride = await services.coordinator.submit(request_for(rider_id))
    await services.lifecycle.cancel(ride.id, Actor.rider(rider_id))

    with pytest.raises(InvalidTransition):
        await services.lifecycle.assign(ride.id, driver_id)
    assert (await load(DriverModel, driver_id)).is_available is True


@pytest.mark.asyncio
async def test_redispatch_pending(services, make_rider, make_driver, check_invariants):
    with pytest.raises(NoCandidate) as info:
        await services.coordinator.dispatch(request_for(await make_rider()))
    driver_id = await make_driver(north_of(ORIGIN, 1.5))

    assert await services.coordinator.redispatch_pending() == 1

    ride = await services.lifecycle.get_ride(info.value.ride_id)
    assert ride.status == RideStatus.ASSIGNED
    assert ride.driver_id == driver_id
    await check_invariants()


@pytest.mark.asyncio
async def test_assign_unknown_ride(services):
    with pytest.raises(RideNotFound):
        await services.coordinator.assign(uuid.uuid4())


class RacingIndex:
    """Lets another dispatch assign the ride right after the snapshot."""

    def __init__(self, index, lifecycle, ride_id, rival_driver):
        self.index = index
        self.lifecycle = lifecycle
        self.ride_id = ride_id
        self.rival_driver = rival_driver

    async def candidates(self, origin, radius_km):
        snapshot = await self.index.candidates(origin, radius_km)
        rival, self.rival_driver = self.rival_driver, None
        if rival is not None:
            await self.lifecycle.assign(self.ride_id, rival)
        return tuple(c for c in snapshot if c.driver_id != rival)


@pytest.mark.asyncio
async def test_losing_dispatch_returns_ride_assigned_elsewhere(
    services, session_factory, make_rider, make_driver, load, check_invariants
):
    rival = await make_driver(north_of(ORIGIN, 0.3))
    ours = await make_driver(north_of(ORIGIN, 0.6))
    ride = await services.coordinator.submit(request_for(await make_rider()))
    coordinator = coordinator_over(
        services, session_factory,
        RacingIndex(services.index, services.lifecycle, ride.id, rival),
    )

    result = await coordinator.assign(ride.id)

    assert result.status == RideStatus.ASSIGNED
    assert result.driver_id == rival
    assert (await load(DriverModel, ours)).is_available is True
    await check_invariants()


@pytest.mark.asyncio
async def test_assign_on_assigned_ride_is_a_no_op(services, make_rider, make_driver, load):
    first = await make_driver(north_of(ORIGIN, 0.5))
    spare = await make_driver(north_of(ORIGIN, 0.7))
    ride = await services.coordinator.dispatch(request_for(await make_rider()))

    again = await services.coordinator.assign(ride.id)

    assert again.driver_id == first
    assert (await load(DriverModel, spare)).is_available is True
    assert await services.coordinator.redispatch_pending() == 0

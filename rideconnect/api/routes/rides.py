"""
Ride endpoints
==============

POST  /api/v1/rides                    -- request a ride and dispatch it (202)
GET   /api/v1/rides/{ride_id}          -- current status, driver and fare
GET   /api/v1/rides/{ride_id}/events   -- audit log
POST  /api/v1/rides/{ride_id}/enroute  -- driver heading to pickup
POST  /api/v1/rides/{ride_id}/pickup   -- driver picked the rider up
POST  /api/v1/rides/{ride_id}/dropoff  -- driver dropped the rider off
PATCH /api/v1/rides/{ride_id}/cancel   -- rider, driver or system cancel
"""

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Request

from rideconnect.api.dependencies import get_services
from rideconnect.api.middleware import limiter
from rideconnect.api.schemas import (
    CancelRequest,
    DriverActionRequest,
    RideCreateRequest,
    RideEventResponse,
    RideResponse,
)
from rideconnect.domain.entities import Actor, Location, RideRequest
from rideconnect.domain.errors import NoCandidate
from rideconnect.services.container import Services

router = APIRouter(prefix="/rides", tags=["rides"])


@router.post(
    "",
    status_code=202,
    response_model=RideResponse,
    summary="Request a ride",
    responses={
        202: {
            "description": (
                "Ride accepted.  Status is `assigned` when a driver was "
                "reserved, `requested` when none was found yet."
            )
        }
    },
)
@limiter.limit("100/minute")
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    services: Services = Depends(get_services),
):
    ride_request = RideRequest(
        rider_id=body.rider_id,
        origin=Location(body.origin_lat, body.origin_lng),
        destination=Location(body.dest_lat, body.dest_lng),
        idempotency_key=body.idempotency_key,
    )
    try:
        return await services.coordinator.dispatch(ride_request)
    except NoCandidate as exc:
        # the ride stays requested; the sweeper keeps trying
        return await services.lifecycle.get_ride(exc.ride_id)


@router.get("/{ride_id}", response_model=RideResponse, summary="Get a ride")
@limiter.limit("100/minute")
async def get_ride(
    request: Request,
    ride_id: UUID,
    services: Services = Depends(get_services),
):
    return await services.lifecycle.get_ride(ride_id)


@router.get(
    "/{ride_id}/events",
    response_model=list[RideEventResponse],
    summary="List the ride's events in order",
)
@limiter.limit("100/minute")
async def get_ride_events(
    request: Request,
    ride_id: UUID,
    services: Services = Depends(get_services),
):
    return await services.lifecycle.events(ride_id)


@router.post("/{ride_id}/enroute", response_model=RideResponse, summary="Driver en route")
@limiter.limit("100/minute")
async def confirm_enroute(
    request: Request,
    ride_id: UUID,
    body: DriverActionRequest,
    services: Services = Depends(get_services),
):
    return await services.lifecycle.confirm_enroute(ride_id, body.driver_id)


@router.post("/{ride_id}/pickup", response_model=RideResponse, summary="Rider picked up")
@limiter.limit("100/minute")
async def confirm_pickup(
    request: Request,
    ride_id: UUID,
    body: DriverActionRequest,
    services: Services = Depends(get_services),
):
    return await services.lifecycle.confirm_pickup(ride_id, body.driver_id)


@router.post(
    "/{ride_id}/dropoff",
    response_model=RideResponse,
    summary="Rider dropped off",
    description=(
        "Completes the ride, fixes the fare and creates a pending payment. "
        "The payment is settled in the background."
    ),
)
@limiter.limit("100/minute")
async def confirm_dropoff(
    request: Request,
    ride_id: UUID,
    body: DriverActionRequest,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
):
    ride = await services.lifecycle.confirm_dropoff(ride_id, body.driver_id)
    background_tasks.add_task(services.payments.settle_ride, ride.id)
    return ride


@router.patch(
    "/{ride_id}/cancel",
    response_model=RideResponse,
    summary="Cancel a ride",
    description=(
        "Cancels any non-terminal ride.  An assigned driver becomes "
        "available again.  Cancelling twice is harmless."
    ),
)
@limiter.limit("100/minute")
async def cancel_ride(
    request: Request,
    ride_id: UUID,
    body: CancelRequest,
    services: Services = Depends(get_services),
):
    actor = Actor(body.actor, body.user_id)
    return await services.lifecycle.cancel(ride_id, actor, reason=body.reason)

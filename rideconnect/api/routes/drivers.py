"""
Driver endpoints
================

PUT /api/v1/drivers/{driver_id}/availability -- go online / offline
PUT /api/v1/drivers/{driver_id}/location     -- location heartbeat
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Request

from rideconnect.api.dependencies import get_services
from rideconnect.api.middleware import limiter
from rideconnect.api.schemas import AvailabilityRequest, DriverResponse, LocationRequest
from rideconnect.domain.entities import Location
from rideconnect.services.container import Services

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.put(
    "/{driver_id}/availability",
    response_model=DriverResponse,
    summary="Toggle driver availability",
    responses={409: {"description": "Driver is still on an active ride."}},
)
@limiter.limit("100/minute")
async def set_availability(
    request: Request,
    driver_id: UUID,
    body: AvailabilityRequest,
    services: Services = Depends(get_services),
):
    if body.available:
        return await services.index.mark_available(driver_id, Location(body.lat, body.lng))
    return await services.index.mark_unavailable(driver_id)


@router.put("/{driver_id}/location", response_model=DriverResponse, summary="Update location")
@limiter.limit("600/minute")
async def update_location(
    request: Request,
    driver_id: UUID,
    body: LocationRequest,
    services: Services = Depends(get_services),
):
    return await services.index.update_location(driver_id, Location(body.lat, body.lng))

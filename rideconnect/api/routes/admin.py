"""
Admin / observability endpoints
===============================

GET    /api/v1/admin/health                       -- simple health check
GET    /api/v1/admin/payments/failed              -- billing reconciliation queue
POST   /api/v1/admin/rides/{ride_id}/redispatch   -- retry matching now
DELETE /api/v1/admin/rides/{ride_id}              -- purge ride, events, payment
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Request, Response

from rideconnect.api.dependencies import get_services
from rideconnect.api.middleware import limiter
from rideconnect.api.schemas import HealthResponse, PaymentResponse, RideResponse
from rideconnect.domain.errors import NoCandidate
from rideconnect.services.container import Services

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()


@router.get(
    "/payments/failed",
    response_model=list[PaymentResponse],
    summary="Payments that need billing follow-up",
)
@limiter.limit("100/minute")
async def failed_payments(
    request: Request,
    services: Services = Depends(get_services),
):
    return await services.payments.failed_payments()


@router.post(
    "/rides/{ride_id}/redispatch",
    status_code=202,
    response_model=RideResponse,
    summary="Retry matching for a requested ride",
)
@limiter.limit("100/minute")
async def redispatch(
    request: Request,
    ride_id: UUID,
    services: Services = Depends(get_services),
):
    try:
        return await services.coordinator.assign(ride_id)
    except NoCandidate:
        return await services.lifecycle.get_ride(ride_id)


@router.delete("/rides/{ride_id}", status_code=204, summary="Purge a ride")
@limiter.limit("100/minute")
async def purge_ride(
    request: Request,
    ride_id: UUID,
    services: Services = Depends(get_services),
):
    await services.lifecycle.purge_ride(ride_id)
    return Response(status_code=204)

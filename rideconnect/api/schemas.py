"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from rideconnect.domain.enums import ActorKind, PaymentStatus, RideStatus


# ── Requests ──────────────────────────────────────────────────────────


class RideCreateRequest(BaseModel):
    rider_id: UUID
    origin_lat: float = Field(..., ge=-90, le=90)
    origin_lng: float = Field(..., ge=-180, le=180)
    dest_lat: float = Field(..., ge=-90, le=90)
    dest_lng: float = Field(..., ge=-180, le=180)
    idempotency_key: Optional[str] = Field(
        None,
        max_length=64,
        description="Client-generated UUID to prevent double-booking on retries.",
    )


class DriverActionRequest(BaseModel):
    driver_id: UUID


class CancelRequest(BaseModel):
    actor: ActorKind
    user_id: Optional[UUID] = None
    reason: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def _user_required(self):
        if self.actor != ActorKind.SYSTEM and self.user_id is None:
            raise ValueError("user_id is required for rider and driver cancellations")
        return self


class LocationRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class AvailabilityRequest(BaseModel):
    available: bool
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)

    @model_validator(mode="after")
    def _location_required(self):
        if self.available and (self.lat is None or self.lng is None):
            raise ValueError("lat and lng are required to become available")
        return self


# ── Responses ─────────────────────────────────────────────────────────


class RideResponse(BaseModel):
    id: UUID
    rider_id: UUID
    driver_id: Optional[UUID] = None
    origin_lat: float
    origin_lng: float
    dest_lat: float
    dest_lng: float
    status: RideStatus
    fare_cents: Optional[int] = None
    surge_multiplier: float = 1.0
    no_candidate_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RideEventResponse(BaseModel):
    sequence: int
    event_type: str
    payload: dict[str, Any]
    created_at: datetime

    model_config = {"from_attributes": True}


class DriverResponse(BaseModel):
    id: UUID
    is_available: bool
    is_online: bool
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    rating: float
    updated_at: datetime

    model_config = {"from_attributes": True}


class PaymentResponse(BaseModel):
    id: UUID
    ride_id: UUID
    amount_cents: int
    currency: str
    status: PaymentStatus
    processor_ref: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str

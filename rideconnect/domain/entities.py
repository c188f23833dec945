"""
Domain value objects and the ride transition guard.

Patterns used
-------------
- **State Pattern** via ``ensure_transition``: enforces valid lifecycle
  transitions (REQUESTED -> ASSIGNED -> ENROUTE -> STARTED -> COMPLETED,
  any non-terminal status -> CANCELED).
- Immutable snapshots (``DriverCandidate``, ``PaymentIntent``) are what the
  index and the payment processor hand around, never live ORM rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

from .enums import RIDE_TRANSITIONS, ActorKind, RideStatus
from .errors import InvalidTransition


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class RideRequest:
    rider_id: UUID
    origin: Location
    destination: Location
    idempotency_key: Optional[str] = None


@dataclass(frozen=True)
class Actor:
    """Who triggered a transition."""

    kind: ActorKind
    user_id: Optional[UUID] = None

    @classmethod
    def rider(cls, user_id: UUID) -> "Actor":
        return cls(ActorKind.RIDER, user_id)

    @classmethod
    def driver(cls, user_id: UUID) -> "Actor":
        return cls(ActorKind.DRIVER, user_id)

    @classmethod
    def system(cls) -> "Actor":
        return cls(ActorKind.SYSTEM)

    def as_payload(self) -> dict:
        return {
            "kind": self.kind.value,
            "id": str(self.user_id) if self.user_id else None,
        }


@dataclass(frozen=True)
class DriverCandidate:
    driver_id: UUID
    location: Location
    distance_km: float
    rating: float
    updated_at: datetime


@dataclass(frozen=True)
class PaymentIntent:
    """What the payment processor sees of a payment."""

    payment_id: UUID
    ride_id: UUID
    amount_cents: int
    currency: str
    processor_ref: Optional[str] = None


# ── Guards ────────────────────────────────────────────────────────────


def can_transition(current: RideStatus, target: RideStatus) -> bool:
    return target in RIDE_TRANSITIONS.get(current, set())


def ensure_transition(current: RideStatus, target: RideStatus) -> None:
    """Raise ``InvalidTransition`` unless *current* -> *target* is legal."""
    if not can_transition(current, target):
        raise InvalidTransition(current, target)

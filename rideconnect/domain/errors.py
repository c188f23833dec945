"""
Error taxonomy of the dispatch engine.

None of these are fatal to the process: each describes the outcome of a
single operation and leaves every ride, driver and payment record in a
committed, consistent state.
"""

from __future__ import annotations

from typing import Optional
from uuid import UUID


class RideConnectError(Exception):
    """Base class for all dispatch-engine errors."""


class NotFound(RideConnectError, LookupError):
    entity = "entity"

    def __init__(self, entity_id: UUID):
        self.entity_id = entity_id
        super().__init__(f"{self.entity} {entity_id} not found")


class RideNotFound(NotFound):
    entity = "Ride"


class DriverNotFound(NotFound):
    entity = "Driver"


class PaymentNotFound(NotFound):
    entity = "Payment"


class NoCandidate(RideConnectError):
    """No eligible driver within the maximum search radius.

    The ride stays ``requested``; the caller may resubmit or escalate.
    """

    def __init__(self, ride_id: Optional[UUID] = None, attempts: int = 0):
        self.ride_id = ride_id
        self.attempts = attempts
        super().__init__(f"No candidate driver for ride {ride_id} after {attempts} attempt(s)")


class InvalidTransition(RideConnectError):
    """A transition guard failed; nothing was applied."""

    def __init__(self, current, attempted, reason: str = ""):
        self.current = current
        self.attempted = attempted
        self.reason = reason
        msg = f"Cannot transition from {_value(current)} to {_value(attempted)}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class ReservationConflict(RideConnectError):
    """Another dispatch claimed the driver first. Retried internally."""

    def __init__(self, driver_id: UUID):
        self.driver_id = driver_id
        super().__init__(f"Driver {driver_id} is no longer available")


class UserHasRides(RideConnectError):
    """A rider referenced by rides cannot be deleted."""

    def __init__(self, user_id: UUID, ride_count: int):
        self.user_id = user_id
        self.ride_count = ride_count
        super().__init__(f"User {user_id} is the rider of {ride_count} ride(s)")


class DriverReserved(RideConnectError):
    """The driver is bound to an active ride and cannot be marked available."""

    def __init__(self, driver_id: UUID, ride_id: UUID):
        self.driver_id = driver_id
        self.ride_id = ride_id
        super().__init__(f"Driver {driver_id} is reserved for ride {ride_id}")


class PaymentFailure(RideConnectError):
    """Raised by a payment processor when it declines a payment."""

    def __init__(self, reason: str, processor_ref: Optional[str] = None):
        self.reason = reason
        self.processor_ref = processor_ref
        super().__init__(reason)


def _value(status) -> str:
    return getattr(status, "value", str(status))

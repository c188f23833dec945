"""Domain enumerations and state-transition rules."""

import enum


class UserRole(str, enum.Enum):
    RIDER = "rider"
    DRIVER = "driver"


class RideStatus(str, enum.Enum):
    REQUESTED = "requested"
    ASSIGNED = "assigned"
    ENROUTE = "enroute"
    STARTED = "started"
    COMPLETED = "completed"
    CANCELED = "canceled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    FAILED = "failed"


class ActorKind(str, enum.Enum):
    RIDER = "rider"
    DRIVER = "driver"
    SYSTEM = "system"


# State machine: maps current status -> set of valid next statuses
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.REQUESTED: {RideStatus.ASSIGNED, RideStatus.CANCELED},
    RideStatus.ASSIGNED: {RideStatus.ENROUTE, RideStatus.CANCELED},
    RideStatus.ENROUTE: {RideStatus.STARTED, RideStatus.CANCELED},
    RideStatus.STARTED: {RideStatus.COMPLETED, RideStatus.CANCELED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELED: set(),
}

TERMINAL_STATUSES = frozenset({RideStatus.COMPLETED, RideStatus.CANCELED})

# A driver holding a ride in one of these statuses is not eligible for matching
ACTIVE_STATUSES = frozenset(
    {RideStatus.ASSIGNED, RideStatus.ENROUTE, RideStatus.STARTED}
)

# Statuses in which ride.driver_id must be set
DRIVER_BOUND_STATUSES = ACTIVE_STATUSES | {RideStatus.COMPLETED}

SETTLED_PAYMENT_STATUSES = frozenset({PaymentStatus.CAPTURED, PaymentStatus.FAILED})

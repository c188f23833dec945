"""
SQLAlchemy ORM models  (maps to PostgreSQL, also runs on SQLite).

Tables
------
* ``users``        -- riders and drivers (role is fixed at creation)
* ``drivers``      -- 1:1 driver profile, availability and location
* ``rides``        -- ride requests and their lifecycle status
* ``ride_events``  -- append-only audit log, one row per transition
* ``payments``     -- at most one per ride, created on completion

Indexes
-------
* **B-Tree** on ``drivers.is_available`` and ``drivers.h3_cell`` for the
  availability index, on ``rides.status`` / ``rides.created_at`` for the
  sweeper, and on ``rides.driver_id`` for the reserved-driver check.
"""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB

from .database import Base
from rideconnect.domain.clock import utcnow
from rideconnect.domain.enums import PaymentStatus, RideStatus, UserRole


def _values(enum_cls):
    return [member.value for member in enum_cls]


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    email = Column(Text, unique=True, nullable=False)
    password_hash = Column(Text, nullable=False)
    role = Column(
        Enum(UserRole, name="user_role", values_callable=_values), nullable=False
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    vehicle_info = Column(Text, nullable=True)
    license_no = Column(Text, nullable=True)
    rating = Column(Numeric(3, 2, asdecimal=False), nullable=False, default=5.00)
    is_available = Column(Boolean, nullable=False, default=False)
    # Manual on/offline toggle; reservation release restores availability from it
    is_online = Column(Boolean, nullable=False, default=False)
    location_lat = Column(Float, nullable=True)
    location_lng = Column(Float, nullable=True)
    h3_cell = Column(String(20), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_drivers_is_available", "is_available"),
        Index("idx_drivers_h3_cell", "h3_cell"),
    )


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    rider_id = Column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    driver_id = Column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    origin_lat = Column(Float, nullable=False)
    origin_lng = Column(Float, nullable=False)
    dest_lat = Column(Float, nullable=False)
    dest_lng = Column(Float, nullable=False)

    status = Column(
        Enum(RideStatus, name="ride_status", values_callable=_values),
        default=RideStatus.REQUESTED,
        nullable=False,
    )
    fare_cents = Column(Integer, nullable=True)
    surge_multiplier = Column(Float, nullable=False, default=1.0)
    no_candidate_count = Column(Integer, nullable=False, default=0)
    idempotency_key = Column(String(64), unique=True, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("idx_rides_status", "status"),
        Index("idx_rides_created_at", "created_at"),
        Index("idx_rides_driver", "driver_id"),
        Index("idx_rides_rider", "rider_id"),
    )


class RideEventModel(Base):
    __tablename__ = "ride_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ride_id = Column(
        Uuid, ForeignKey("rides.id", ondelete="CASCADE"), nullable=False
    )
    sequence = Column(Integer, nullable=False)
    event_type = Column(Text, nullable=False)
    payload = Column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("ride_id", "sequence", name="uq_ride_events_sequence"),
        Index("idx_ride_events_ride", "ride_id"),
    )


class PaymentModel(Base):
    __tablename__ = "payments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ride_id = Column(
        Uuid,
        ForeignKey("rides.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    amount_cents = Column(Integer, nullable=False)
    currency = Column(Text, nullable=False, default="USD")
    status = Column(
        Enum(PaymentStatus, name="payment_status", values_callable=_values),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    processor_ref = Column(Text, nullable=True)
    failure_reason = Column(Text, nullable=True)
    # Set while one process talks to the processor for this payment
    settle_token = Column(String(32), nullable=True)
    settle_claimed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (Index("idx_payments_status", "status"),)

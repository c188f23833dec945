"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Methods named ``try_*`` /
``compare_and_set_*`` are conditional UPDATEs: they return ``False`` when
another transaction changed the row first, which is how optimistic
reservation conflicts surface.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    DriverModel,
    PaymentModel,
    RideEventModel,
    RideModel,
    UserModel,
)
from rideconnect.domain.clock import as_utc, utcnow
from rideconnect.domain.entities import Location
from rideconnect.domain.enums import (
    ACTIVE_STATUSES,
    PaymentStatus,
    RideStatus,
    UserRole,
)
from rideconnect.domain.errors import UserHasRides


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_user(
        self, *, name: str, email: str, password_hash: str, role: UserRole
    ) -> UserModel:
        user = UserModel(
            name=name, email=email, password_hash=password_hash, role=role
        )
        self.session.add(user)
        await self.session.flush()
        return user

    async def get_by_id(self, user_id: UUID) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)

    async def delete_user(self, user_id: UUID) -> None:
        """
        Delete a user the way the foreign keys define it: the driver
        profile goes with the user, rides driven by them keep existing
        with ``driver_id`` cleared, and riders with rides are protected.
        """
        ridden = await self.session.execute(
            select(func.count())
            .select_from(RideModel)
            .where(RideModel.rider_id == user_id)
        )
        ride_count = ridden.scalar()
        if ride_count:
            raise UserHasRides(user_id, ride_count)

        await self.session.execute(
            update(RideModel)
            .where(RideModel.driver_id == user_id)
            .values(driver_id=None)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(
            delete(DriverModel).where(DriverModel.id == user_id)
        )
        await self.session.execute(delete(UserModel).where(UserModel.id == user_id))


class DriverRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_profile(
        self,
        *,
        user_id: UUID,
        vehicle_info: str | None = None,
        license_no: str | None = None,
        rating: float = 5.00,
    ) -> DriverModel:
        driver = DriverModel(
            id=user_id,
            vehicle_info=vehicle_info,
            license_no=license_no,
            rating=rating,
            is_available=False,
            is_online=False,
        )
        self.session.add(driver)
        await self.session.flush()
        return driver

    async def get_by_id(self, driver_id: UUID) -> Optional[DriverModel]:
        return await self.session.get(DriverModel, driver_id)

    async def lock(self, driver_id: UUID) -> Optional[DriverModel]:
        """SELECT ... FOR UPDATE.  Always taken before the ride lock."""
        result = await self.session.execute(
            select(DriverModel)
            .where(DriverModel.id == driver_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def try_reserve(self, driver_id: UUID) -> bool:
        """Flip an eligible driver to unavailable.  False if someone won."""
        result = await self.session.execute(
            update(DriverModel)
            .where(
                DriverModel.id == driver_id,
                DriverModel.is_available.is_(True),
                DriverModel.is_online.is_(True),
            )
            .values(is_available=False, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release(self, driver_id: UUID) -> None:
        """End a reservation; drivers who went offline meanwhile stay off."""
        await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(is_available=DriverModel.is_online, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    async def get_available_in_cells(self, cells: Iterable[str]) -> list[DriverModel]:
        result = await self.session.execute(
            select(DriverModel).where(
                DriverModel.is_available.is_(True),
                DriverModel.location_lat.is_not(None),
                DriverModel.location_lng.is_not(None),
                DriverModel.h3_cell.in_(list(cells)),
            )
        )
        return list(result.scalars().all())

    async def count_available(self) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(DriverModel)
            .where(DriverModel.is_available.is_(True))
        )
        return result.scalar() or 0


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_ride(
        self,
        *,
        rider_id: UUID,
        origin: Location,
        destination: Location,
        surge_multiplier: float = 1.0,
        idempotency_key: str | None = None,
    ) -> RideModel:
        ride = RideModel(
            rider_id=rider_id,
            origin_lat=origin.latitude,
            origin_lng=origin.longitude,
            dest_lat=destination.latitude,
            dest_lng=destination.longitude,
            status=RideStatus.REQUESTED,
            surge_multiplier=surge_multiplier,
            no_candidate_count=0,
            idempotency_key=idempotency_key,
        )
        self.session.add(ride)
        await self.session.flush()
        return ride

    async def get_by_id(self, ride_id: UUID) -> Optional[RideModel]:
        return await self.session.get(RideModel, ride_id)

    async def get_by_idempotency_key(self, key: str) -> Optional[RideModel]:
        result = await self.session.execute(
            select(RideModel).where(RideModel.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    async def lock(self, ride_id: UUID) -> Optional[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.id == ride_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def compare_and_set_status(
        self,
        ride_id: UUID,
        expected: RideStatus,
        new: RideStatus,
        **values,
    ) -> bool:
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride_id, RideModel.status == expected)
            .values(status=new, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def record_no_candidate(self, ride_id: UUID) -> None:
        await self.session.execute(
            update(RideModel)
            .where(
                RideModel.id == ride_id,
                RideModel.status == RideStatus.REQUESTED,
            )
            .values(
                no_candidate_count=RideModel.no_candidate_count + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

    async def get_active_for_driver(self, driver_id: UUID) -> Optional[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(
                RideModel.driver_id == driver_id,
                RideModel.status.in_(ACTIVE_STATUSES),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_requested_rides(self, limit: int = 100) -> list[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.status == RideStatus.REQUESTED)
            .order_by(RideModel.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_requested(self) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(RideModel)
            .where(RideModel.status == RideStatus.REQUESTED)
        )
        return result.scalar() or 0

    async def delete_cascade(self, ride_id: UUID) -> bool:
        """Administrative deletion: events and payment go with the ride."""
        await self.session.execute(
            delete(RideEventModel).where(RideEventModel.ride_id == ride_id)
        )
        await self.session.execute(
            delete(PaymentModel).where(PaymentModel.ride_id == ride_id)
        )
        result = await self.session.execute(
            delete(RideModel).where(RideModel.id == ride_id)
        )
        return result.rowcount == 1


class RideEventRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(
        self, ride_id: UUID, event_type: str, payload: dict
    ) -> RideEventModel:
        """Append the next event; timestamps never run backwards per ride."""
        result = await self.session.execute(
            select(RideEventModel.sequence, RideEventModel.created_at)
            .where(RideEventModel.ride_id == ride_id)
            .order_by(RideEventModel.sequence.desc())
            .limit(1)
        )
        last = result.first()
        now = utcnow()
        sequence = 1
        if last is not None:
            sequence = last.sequence + 1
            now = max(now, as_utc(last.created_at))

        event = RideEventModel(
            ride_id=ride_id,
            sequence=sequence,
            event_type=event_type,
            payload={**payload, "at": now.isoformat()},
            created_at=now,
        )
        self.session.add(event)
        await self.session.flush()
        return event

    async def list_for_ride(self, ride_id: UUID) -> list[RideEventModel]:
        result = await self.session.execute(
            select(RideEventModel)
            .where(RideEventModel.ride_id == ride_id)
            .order_by(RideEventModel.sequence)
        )
        return list(result.scalars().all())


class PaymentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self, *, ride_id: UUID, amount_cents: int, currency: str
    ) -> PaymentModel:
        payment = PaymentModel(
            ride_id=ride_id,
            amount_cents=amount_cents,
            currency=currency,
            status=PaymentStatus.PENDING,
        )
        self.session.add(payment)
        await self.session.flush()
        return payment

    async def get_by_id(self, payment_id: UUID) -> Optional[PaymentModel]:
        return await self.session.get(PaymentModel, payment_id)

    async def get_by_ride(self, ride_id: UUID) -> Optional[PaymentModel]:
        result = await self.session.execute(
            select(PaymentModel).where(PaymentModel.ride_id == ride_id)
        )
        return result.scalar_one_or_none()

    async def claim(self, payment_id: UUID, token: str, lease_seconds: int) -> bool:
        """Mark an unsettled payment as being settled by *token*.

        Fails while another holder's claim is younger than *lease_seconds*;
        an older claim is assumed abandoned and taken over.
        """
        now = utcnow()
        result = await self.session.execute(
            update(PaymentModel)
            .where(
                PaymentModel.id == payment_id,
                PaymentModel.status.in_([PaymentStatus.PENDING, PaymentStatus.AUTHORIZED]),
                or_(
                    PaymentModel.settle_token.is_(None),
                    PaymentModel.settle_claimed_at < now - timedelta(seconds=lease_seconds),
                ),
            )
            .values(settle_token=token, settle_claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release_claim(self, payment_id: UUID, token: str) -> None:
        await self.session.execute(
            update(PaymentModel)
            .where(PaymentModel.id == payment_id, PaymentModel.settle_token == token)
            .values(settle_token=None, settle_claimed_at=None)
            .execution_options(synchronize_session=False)
        )

    async def compare_and_set_status(
        self,
        payment_id: UUID,
        expected: PaymentStatus,
        new: PaymentStatus,
        claimed_by: Optional[str] = None,
        **values,
    ) -> bool:
        conditions = [PaymentModel.id == payment_id, PaymentModel.status == expected]
        if claimed_by is not None:
            conditions.append(PaymentModel.settle_token == claimed_by)
        result = await self.session.execute(
            update(PaymentModel)
            .where(*conditions)
            .values(status=new, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def get_by_status(
        self, statuses: Iterable[PaymentStatus], limit: int = 100
    ) -> list[PaymentModel]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.status.in_(list(statuses)))
            .order_by(PaymentModel.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

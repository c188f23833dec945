"""
Payment settlement sub-flow.

A payment is created ``pending`` when its ride completes.  Settlement runs
afterwards (background task or sweeper), never inside the ride's
transaction:

    pending -> authorized -> captured
    pending | authorized -> failed

A failed payment never touches the ride; it is left for billing
reconciliation (``failed_payments``).

Settlement is single-flight per payment: a caller first claims the row
(``settle_token``) and only the claim holder calls the processor.  The
drop-off background task and the sweeper can therefore race safely.
"""

from __future__ import annotations

import logging
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rideconnect.domain.entities import PaymentIntent
from rideconnect.domain.enums import SETTLED_PAYMENT_STATUSES, PaymentStatus
from rideconnect.domain.errors import PaymentFailure, PaymentNotFound
from rideconnect.infrastructure.models import PaymentModel
from rideconnect.infrastructure.payments import PaymentProcessor
from rideconnect.infrastructure.repositories import PaymentRepository

logger = logging.getLogger(__name__)


class PaymentService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        processor: PaymentProcessor,
        claim_lease_seconds: int = 300,
    ):
        self.session_factory = session_factory
        self.processor = processor
        self.claim_lease_seconds = claim_lease_seconds

    async def settle(self, payment_id: UUID) -> PaymentModel:
        """Authorize then capture.  Only the holder of the payment's claim
        talks to the processor; a caller that cannot claim it returns the
        payment as it currently stands."""
        token = uuid4().hex
        async with self.session_factory() as session, session.begin():
            repo = PaymentRepository(session)
            claimed = await repo.claim(payment_id, token, self.claim_lease_seconds)
            payment = await repo.get_by_id(payment_id)
        if payment is None:
            raise PaymentNotFound(payment_id)
        if not claimed:
            if payment.status not in SETTLED_PAYMENT_STATUSES:
                logger.info("Payment %s is being settled elsewhere", payment_id)
            return payment

        try:
            if payment.status == PaymentStatus.PENDING:
                payment = await self._authorize(payment, token)
            if payment.status == PaymentStatus.AUTHORIZED and payment.settle_token == token:
                payment = await self._capture(payment, token)
        finally:
            await self._release(payment_id, token)
        return await self._get(payment_id)

    async def settle_ride(self, ride_id: UUID) -> PaymentModel:
        async with self.session_factory() as session:
            payment = await PaymentRepository(session).get_by_ride(ride_id)
        if payment is None:
            raise PaymentNotFound(ride_id)
        return await self.settle(payment.id)

    async def settle_outstanding(self, limit: int = 100) -> int:
        """Settle pending/authorized payments.  Returns how many settled.

        Processor outages are logged and left for the next sweep.
        """
        async with self.session_factory() as session:
            outstanding = await PaymentRepository(session).get_by_status(
                [PaymentStatus.PENDING, PaymentStatus.AUTHORIZED], limit
            )

        settled = 0
        for payment in outstanding:
            try:
                payment = await self.settle(payment.id)
            except Exception:
                logger.exception("Could not settle payment %s", payment.id)
                continue
            if payment.status in SETTLED_PAYMENT_STATUSES:
                settled += 1
        return settled

    async def failed_payments(self, limit: int = 100) -> list[PaymentModel]:
        async with self.session_factory() as session:
            return await PaymentRepository(session).get_by_status(
                [PaymentStatus.FAILED], limit
            )

    # ── Internals ─────────────────────────────────────────────────────

    async def _authorize(self, payment: PaymentModel, token: str) -> PaymentModel:
        try:
            reference = await self.processor.authorize(_intent(payment))
        except PaymentFailure as exc:
            return await self._fail(payment, PaymentStatus.PENDING, token, exc)
        return await self._move(
            payment.id, PaymentStatus.PENDING, PaymentStatus.AUTHORIZED, token,
            processor_ref=reference,
        )

    async def _capture(self, payment: PaymentModel, token: str) -> PaymentModel:
        try:
            await self.processor.capture(_intent(payment))
        except PaymentFailure as exc:
            return await self._fail(payment, PaymentStatus.AUTHORIZED, token, exc)
        payment = await self._move(
            payment.id, PaymentStatus.AUTHORIZED, PaymentStatus.CAPTURED, token
        )
        logger.info("Payment %s captured (%d %s)", payment.id, payment.amount_cents, payment.currency)
        return payment

    async def _fail(
        self,
        payment: PaymentModel,
        expected: PaymentStatus,
        token: str,
        exc: PaymentFailure,
    ) -> PaymentModel:
        values = {"failure_reason": exc.reason}
        if exc.processor_ref:
            values["processor_ref"] = exc.processor_ref
        payment = await self._move(payment.id, expected, PaymentStatus.FAILED, token, **values)
        logger.warning(
            "Payment %s for ride %s failed: %s", payment.id, payment.ride_id, exc.reason
        )
        return payment

    async def _move(
        self,
        payment_id: UUID,
        expected: PaymentStatus,
        new: PaymentStatus,
        token: str,
        **values,
    ) -> PaymentModel:
        """CAS under our claim.  If the claim was lost (lease expired and
        taken over) the returned payment no longer carries *token*, which
        stops the caller from making further processor calls."""
        async with self.session_factory() as session, session.begin():
            repo = PaymentRepository(session)
            if not await repo.compare_and_set_status(
                payment_id, expected, new, claimed_by=token, **values
            ):
                logger.warning("Lost settlement claim on payment %s at %s", payment_id, expected.value)
            payment = await repo.get_by_id(payment_id)
        return payment

    async def _release(self, payment_id: UUID, token: str) -> None:
        async with self.session_factory() as session, session.begin():
            await PaymentRepository(session).release_claim(payment_id, token)

    async def _get(self, payment_id: UUID) -> PaymentModel:
        async with self.session_factory() as session:
            return await PaymentRepository(session).get_by_id(payment_id)


def _intent(payment: PaymentModel) -> PaymentIntent:
    return PaymentIntent(
        payment_id=payment.id,
        ride_id=payment.ride_id,
        amount_cents=payment.amount_cents,
        currency=payment.currency,
        processor_ref=payment.processor_ref,
    )

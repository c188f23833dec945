"""
Payment-processor capability.

The engine only calls a processor; it never implements one.  Anything
satisfying ``PaymentProcessor`` can be plugged into ``PaymentService``.
A processor *declines* by raising ``PaymentFailure``; any other exception
is treated as a transient outage and the payment is retried later.
"""

from __future__ import annotations

import logging
import uuid
from typing import Protocol

from rideconnect.domain.entities import PaymentIntent
from rideconnect.domain.errors import PaymentFailure

logger = logging.getLogger(__name__)


class PaymentProcessor(Protocol):
    async def authorize(self, payment: PaymentIntent) -> str:
        """Reserve funds; return the processor reference."""
        ...

    async def capture(self, payment: PaymentIntent) -> None:
        """Collect previously authorized funds."""
        ...


class SimulatedPaymentProcessor:
    """Local stand-in: approves everything up to a configurable amount."""

    def __init__(self, decline_over_cents: int = 1_000_000):
        self.decline_over_cents = decline_over_cents

    async def authorize(self, payment: PaymentIntent) -> str:
        reference = f"sim_{uuid.uuid4().hex[:16]}"
        if payment.amount_cents > self.decline_over_cents:
            logger.info("Simulated decline for payment %s", payment.payment_id)
            raise PaymentFailure("card declined", processor_ref=reference)
        return reference

    async def capture(self, payment: PaymentIntent) -> None:
        if not payment.processor_ref:
            raise PaymentFailure("capture without authorization")

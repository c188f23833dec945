"""Wires the engine's services together from settings and a session factory."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rideconnect.config import Settings
from rideconnect.domain.matching import Matcher
from rideconnect.domain.pricing import PricingEngine
from rideconnect.infrastructure.payments import (
    PaymentProcessor,
    SimulatedPaymentProcessor,
)
from rideconnect.services.availability import AvailabilityIndex
from rideconnect.services.dispatch import DispatchCoordinator
from rideconnect.services.lifecycle import RideLifecycle
from rideconnect.services.payments import PaymentService


@dataclass
class Services:
    index: AvailabilityIndex
    matcher: Matcher
    lifecycle: RideLifecycle
    coordinator: DispatchCoordinator
    payments: PaymentService


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    processor: Optional[PaymentProcessor] = None,
) -> Services:
    pricing = PricingEngine(settings.base_fare_cents, settings.rate_per_km_cents)
    index = AvailabilityIndex(session_factory, settings.h3_resolution)
    matcher = Matcher(
        index,
        initial_radius_km=settings.initial_search_radius_km,
        max_radius_km=settings.max_search_radius_km,
        growth=settings.search_radius_growth,
    )
    lifecycle = RideLifecycle(session_factory, pricing, settings.currency)
    coordinator = DispatchCoordinator(
        session_factory,
        matcher,
        lifecycle,
        pricing,
        max_retries=settings.dispatch_max_retries,
    )
    if processor is None:
        processor = SimulatedPaymentProcessor(settings.payment_decline_threshold_cents)
    payments = PaymentService(
        session_factory, processor, settings.payment_claim_lease_seconds
    )
    return Services(index, matcher, lifecycle, coordinator, payments)

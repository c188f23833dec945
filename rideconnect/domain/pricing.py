"""
Fare Engine  (Strategy Pattern)
===============================

Formula
-------
Fare_cents = round((Base_Fare + Distance x Rate_Per_KM) x Surge_Multiplier)

* **Surge_Multiplier** = clamp(requested_rides / available_drivers, 1.0, 3.0),
  frozen on the ride when it is requested so the rider pays what was
  quoted even if demand changes before drop-off.

Complexity: O(1) per fare calculation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from .distance import distance_km
from .entities import Location

MIN_SURGE = 1.0
MAX_SURGE = 3.0


# ── Strategy hierarchy ────────────────────────────────────────────────


class PricingStrategy(ABC):
    @abstractmethod
    def calculate(
        self, distance_km: float, base_fare_cents: int, rate_per_km_cents: int
    ) -> int: ...


class StandardPricing(PricingStrategy):
    def calculate(
        self, distance_km: float, base_fare_cents: int, rate_per_km_cents: int
    ) -> int:
        return round(base_fare_cents + distance_km * rate_per_km_cents)


class SurgePricing(PricingStrategy):
    def __init__(self, surge_multiplier: float = 1.0):
        self.surge_multiplier = surge_multiplier

    def calculate(
        self, distance_km: float, base_fare_cents: int, rate_per_km_cents: int
    ) -> int:
        raw = base_fare_cents + distance_km * rate_per_km_cents
        return round(raw * self.surge_multiplier)


# ── Engine facade ─────────────────────────────────────────────────────


class PricingEngine:
    """High-level API used by the dispatch coordinator and the lifecycle."""

    def __init__(self, base_fare_cents: int = 250, rate_per_km_cents: int = 120):
        self.base_fare_cents = base_fare_cents
        self.rate_per_km_cents = rate_per_km_cents

    @staticmethod
    def compute_surge(requested_rides: int, available_drivers: int) -> float:
        if available_drivers <= 0:
            return MAX_SURGE
        return min(MAX_SURGE, max(MIN_SURGE, requested_rides / available_drivers))

    def strategy_for(self, surge_multiplier: float) -> PricingStrategy:
        if surge_multiplier <= MIN_SURGE:
            return StandardPricing()
        return SurgePricing(surge_multiplier)

    def fare_cents(
        self, origin: Location, destination: Location, surge_multiplier: float = 1.0
    ) -> int:
        strategy = self.strategy_for(surge_multiplier)
        return strategy.calculate(
            distance_km(origin, destination),
            self.base_fare_cents,
            self.rate_per_km_cents,
        )

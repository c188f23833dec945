"""
Nearest-Available Greedy Matching
=================================

1. **Spatial Binning**   -- drivers are indexed by H3 hexagon (resolution 7,
   ~1.4 km edge).  A search of radius *r* only reads the cells of the
   ``grid_disk`` that covers the circle.
2. **Exact Filter**      -- Haversine distance <= r on the binned drivers.
3. **Ordering**          -- ascending distance, then highest rating, then
   oldest ``updated_at`` (longest idle first, so nobody starves).
4. **Radius Widening**   -- start at the initial radius and grow it
   geometrically until a candidate appears or the maximum is reached.

Complexity
----------
Let D = available drivers in the covering cells.

* Cell cover:   O(k^2) cells with k = ceil((r + 2e) / 1.5e) + 1
* Filter/rank:  O(D log D)
* Widening:     O(log(max / initial)) index reads

**Note:** This is a greedy per-request choice.  It does NOT minimise the
total wait time across all riders; correctness of the reservation is the
primary guarantee, handled by the dispatch coordinator.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, Protocol, Sequence
from uuid import UUID

import h3

from .clock import as_utc
from .entities import DriverCandidate, Location, RideRequest
from .errors import NoCandidate

logger = logging.getLogger(__name__)


def driver_h3_cell(lat: float, lng: float, resolution: int = 7) -> str:
    """Map a geo-point to an H3 hexagonal cell index.  O(1)."""
    return h3.latlng_to_cell(lat, lng, resolution)


def covering_cells(origin: Location, radius_km: float, resolution: int = 7) -> list[str]:
    """
    Return every H3 cell that may contain a point within *radius_km* of
    *origin*.

    Two cells *k* rings apart have centres at least ``1.5 * edge * k``
    apart, and a point is at most one edge from its cell centre, so
    ``k = ceil((r + 2 * edge) / (1.5 * edge))`` suffices.  One extra ring
    absorbs the projection distortion of the H3 grid.
    """
    origin_cell = driver_h3_cell(origin.latitude, origin.longitude, resolution)
    edge = h3.average_hexagon_edge_length(resolution, unit="km")
    k = math.ceil((radius_km + 2 * edge) / (1.5 * edge)) + 1
    return list(h3.grid_disk(origin_cell, k))


def candidate_sort_key(candidate: DriverCandidate):
    return (
        candidate.distance_km,
        -candidate.rating,
        as_utc(candidate.updated_at),
    )


def rank_candidates(candidates: Iterable[DriverCandidate]) -> tuple[DriverCandidate, ...]:
    return tuple(sorted(candidates, key=candidate_sort_key))


def search_radii(initial_km: float, max_km: float, growth: float = 2.0) -> list[float]:
    """Geometric radius schedule, always ending exactly at *max_km*."""
    if initial_km <= 0 or growth <= 1:
        raise ValueError("initial radius must be positive and growth > 1")
    radii = []
    radius = min(initial_km, max_km)
    while radius < max_km:
        radii.append(radius)
        radius *= growth
    radii.append(max_km)
    return radii


class CandidateSource(Protocol):
    async def candidates(
        self, origin: Location, radius_km: float
    ) -> Sequence[DriverCandidate]: ...


class Matcher:
    """Pick a single driver for a ride request."""

    def __init__(
        self,
        index: CandidateSource,
        initial_radius_km: float = 1.0,
        max_radius_km: float = 8.0,
        growth: float = 2.0,
    ):
        self.index = index
        self.radii = search_radii(initial_radius_km, max_radius_km, growth)

    async def select(
        self, request: RideRequest, exclude: Iterable[UUID] = ()
    ) -> UUID:
        """Return the best driver id, or raise ``NoCandidate``."""
        excluded = set(exclude)
        for radius in self.radii:
            candidates = await self.index.candidates(request.origin, radius)
            for candidate in candidates:
                if candidate.driver_id not in excluded:
                    logger.debug(
                        "Selected driver %s at %.3f km (radius %.1f km)",
                        candidate.driver_id, candidate.distance_km, radius,
                    )
                    return candidate.driver_id
        raise NoCandidate()

"""
Great-circle geometry on a spherical Earth.

Proximity ranking and fares both use straight-line (Haversine) distance
rather than road distance from a routing engine.
"""

import math

from .entities import Location

EARTH_RADIUS_KM = 6_371.0
KM_PER_DEGREE_LAT = EARTH_RADIUS_KM * math.pi / 180


def distance_km(a: Location, b: Location) -> float:
    """Haversine distance in km between two locations."""
    phi_a, phi_b = math.radians(a.latitude), math.radians(b.latitude)
    half_dphi = math.radians(b.latitude - a.latitude) / 2
    half_dlmb = math.radians(b.longitude - a.longitude) / 2

    h = math.sin(half_dphi) ** 2 + math.cos(phi_a) * math.cos(phi_b) * math.sin(half_dlmb) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def offset(origin: Location, north_km: float = 0.0, east_km: float = 0.0) -> Location:
    """Point displaced from *origin* by small north/east distances."""
    km_per_degree_lng = KM_PER_DEGREE_LAT * math.cos(math.radians(origin.latitude))
    return Location(
        origin.latitude + north_km / KM_PER_DEGREE_LAT,
        origin.longitude + east_km / km_per_degree_lng,
    )

"""Great-circle distance and bearing between coordinates."""

from __future__ import annotations

import math

from driver_tracking.api.models import Coordinate

EARTH_RADIUS_KM = 6371.0


def haversine_distance_km(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two coordinates, in kilometres."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlat = math.radians(b.latitude - a.latitude)
    dlng = math.radians(b.longitude - a.longitude)

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_KM * c


def haversine_distance_m(a: Coordinate, b: Coordinate) -> float:
    return haversine_distance_km(a, b) * 1000.0


def compute_heading(start: Coordinate, end: Coordinate, previous: float = 0.0) -> float:
    """Initial bearing from ``start`` to ``end`` in degrees, within [0, 360).

    The bearing is undefined for identical points, so ``previous`` is
    returned unchanged and a direction marker keeps its last rotation.
    """
    if start == end:
        return previous

    lat1 = math.radians(start.latitude)
    lat2 = math.radians(end.latitude)
    dlng = math.radians(end.longitude - start.longitude)

    x = math.sin(dlng) * math.cos(lat2)
    y = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlng)

    # % can yield 360.0 for tiny negative angles
    bearing = (math.degrees(math.atan2(x, y)) + 360) % 360
    return 0.0 if bearing >= 360 else bearing


__all__ = ["haversine_distance_km", "haversine_distance_m", "compute_heading", "EARTH_RADIUS_KM"]

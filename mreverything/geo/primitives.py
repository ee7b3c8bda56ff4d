"""Spherical geometry helpers for corridor matching.

All inputs are decimal degrees; all distances are kilometres on a sphere of
radius 6371 km.
"""

from __future__ import annotations

import math
from typing import NamedTuple

EARTH_RADIUS_KM = 6371.0


class GeoPoint(NamedTuple):
    lat: float
    lng: float


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two coordinates."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_km(a: GeoPoint, b: GeoPoint) -> float:
    return haversine_km(a.lat, a.lng, b.lat, b.lng)


def perpendicular_distance_km(point: GeoPoint, line_start: GeoPoint, line_end: GeoPoint) -> float:
    """Absolute cross-track distance of *point* from the great circle start→end.

    Uses the standard formula ``asin(sin(δ13) · sin(θ13 − θ12)) · R`` where
    δ13 is the angular distance start→point and θ13 / θ12 are the initial
    bearings start→point and start→end.
    """
    phi1, lam1 = math.radians(line_start.lat), math.radians(line_start.lng)
    phi2, lam2 = math.radians(line_end.lat), math.radians(line_end.lng)
    phi3, lam3 = math.radians(point.lat), math.radians(point.lng)

    # haversine keeps short legs accurate where acos of the cosine rule does not
    d13 = distance_km(line_start, point) / EARTH_RADIUS_KM

    theta13 = math.atan2(
        math.sin(lam3 - lam1) * math.cos(phi3),
        math.cos(phi1) * math.sin(phi3) - math.sin(phi1) * math.cos(phi3) * math.cos(lam3 - lam1),
    )
    theta12 = math.atan2(
        math.sin(lam2 - lam1) * math.cos(phi2),
        math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(lam2 - lam1),
    )
    cross = math.asin(max(-1.0, min(1.0, math.sin(d13) * math.sin(theta13 - theta12))))
    return abs(cross * EARTH_RADIUS_KM)


def progress_along_line(point: GeoPoint, line_start: GeoPoint, line_end: GeoPoint) -> float:
    """Fraction ``|start→point| / |start→end|``.

    Not clamped: values above 1 lie beyond the end of the segment.  Because
    both legs are unsigned distances the value is never negative, so points
    behind the start read as "some way along" and rely on the radius check
    to be excluded.
    """
    total = distance_km(line_start, line_end)
    if total == 0:
        raise ValueError("degenerate line: start and end coincide")
    return distance_km(line_start, point) / total

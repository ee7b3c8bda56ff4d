"""Distance-tiered shared-ride fares (base currency units, ZAR)."""

from __future__ import annotations

from decimal import Decimal

from mreverything.geo.primitives import GeoPoint, distance_km

# (upper bound in km inclusive, fare); anything beyond the last bound pays LONG_FARE
FARE_TIERS: tuple[tuple[float, Decimal], ...] = (
    (15.0, Decimal("35")),
    (25.0, Decimal("50")),
)
LONG_FARE = Decimal("75")


def fare_for_distance(km: float) -> Decimal:
    for bound, fare in FARE_TIERS:
        if km <= bound:
            return fare
    return LONG_FARE


def fare_between(pickup: GeoPoint, dropoff: GeoPoint) -> Decimal:
    return fare_for_distance(distance_km(pickup, dropoff))

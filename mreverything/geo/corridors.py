"""Corridor assignment: which shared-ride corridor serves a pickup→dropoff pair."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol, TypeVar

from loguru import logger

from mreverything.geo.primitives import GeoPoint, distance_km, perpendicular_distance_km, progress_along_line


class CorridorShape(Protocol):
    @property
    def start(self) -> GeoPoint: ...

    @property
    def end(self) -> GeoPoint: ...

    name: str
    radius_km: float
    active: bool


C = TypeVar("C", bound=CorridorShape)


def is_routable(corridor: CorridorShape) -> bool:
    """A corridor needs distinct endpoints and a positive radius."""
    return corridor.radius_km > 0 and distance_km(corridor.start, corridor.end) > 0


def within_corridor(point: GeoPoint, corridor: CorridorShape) -> bool:
    return perpendicular_distance_km(point, corridor.start, corridor.end) <= corridor.radius_km


def travels_forward(pickup: GeoPoint, dropoff: GeoPoint, corridor: CorridorShape) -> bool:
    return progress_along_line(dropoff, corridor.start, corridor.end) > progress_along_line(
        pickup, corridor.start, corridor.end
    )


def assign_corridor(pickup: GeoPoint, dropoff: GeoPoint, corridors: Iterable[C]) -> C | None:
    """Return the first active corridor whose tube holds both points in forward order.

    First match wins in iteration order; overlapping corridors are not
    scored against each other, and malformed corridors are skipped.
    ``None`` means the route is not served.
    """
    for corridor in corridors:
        if not corridor.active:
            continue
        if not is_routable(corridor):
            logger.warning(f"Corridor {corridor.name!r} skipped: endpoints coincide or radius is not positive")
            continue
        if not (within_corridor(pickup, corridor) and within_corridor(dropoff, corridor)):
            continue
        if travels_forward(pickup, dropoff, corridor):
            return corridor
    return None

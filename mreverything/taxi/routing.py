"""Stop sequencing for a dispatched shared ride.

Policy: every pickup in order of progress along the corridor, then every
dropoff in order of progress.  No passenger is dropped before the last one
boards.  This is not a shortest-path route.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from mreverything.geo.corridors import CorridorShape
from mreverything.geo.primitives import GeoPoint, progress_along_line
from mreverything.storage.models import StopType


class RoutableBooking(Protocol):
    id: str
    pickup_address: str
    dropoff_address: str

    @property
    def pickup(self) -> GeoPoint: ...

    @property
    def dropoff(self) -> GeoPoint: ...


@dataclass(frozen=True, slots=True)
class PlannedStop:
    booking_id: str
    stop_type: StopType
    sequence_order: int
    lat: float
    lng: float
    address: str


def plan_stops(bookings: Sequence[RoutableBooking], corridor: CorridorShape) -> list[PlannedStop]:
    def progress(point: GeoPoint) -> float:
        return progress_along_line(point, corridor.start, corridor.end)

    # sorted() is stable, so ties keep the oldest-first batch order
    pickups = sorted(bookings, key=lambda b: progress(b.pickup))
    dropoffs = sorted(bookings, key=lambda b: progress(b.dropoff))

    stops: list[PlannedStop] = []
    for b in pickups:
        stops.append(
            PlannedStop(b.id, StopType.PICKUP, len(stops) + 1, b.pickup.lat, b.pickup.lng, b.pickup_address)
        )
    for b in dropoffs:
        stops.append(
            PlannedStop(b.id, StopType.DROPOFF, len(stops) + 1, b.dropoff.lat, b.dropoff.lng, b.dropoff_address)
        )
    return stops

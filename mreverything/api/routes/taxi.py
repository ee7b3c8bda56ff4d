"""Read-only taxi API: corridors and dispatched trips."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from mreverything.storage.database import get_session
from mreverything.storage.repository import CorridorRepo, TripRepo

router = APIRouter()

SessionDep = Annotated[AsyncSession, Depends(get_session)]


class CorridorOut(BaseModel):
    id: str
    name: str
    start: tuple[float, float]
    end: tuple[float, float]
    radius_km: float
    active: bool
    min_group_size: int
    max_group_size: int
    base_fare: str


class StopOut(BaseModel):
    sequence_order: int
    stop_type: str
    booking_id: str
    lat: float
    lng: float
    address: str


class TripOut(BaseModel):
    id: str
    corridor_id: str
    status: str
    total_revenue: str
    platform_earnings: str
    created_at: str
    stops: list[StopOut]


@router.get("/corridors", response_model=list[CorridorOut])
async def list_corridors(session: SessionDep) -> list[CorridorOut]:
    corridors = await CorridorRepo(session).list_all()
    return [
        CorridorOut(
            id=c.id,
            name=c.name,
            start=(c.start_lat, c.start_lng),
            end=(c.end_lat, c.end_lng),
            radius_km=c.radius_km,
            active=c.active,
            min_group_size=c.min_group_size,
            max_group_size=c.max_group_size,
            base_fare=str(c.base_fare),
        )
        for c in corridors
    ]


@router.get("/trips/{trip_id}", response_model=TripOut)
async def get_trip(trip_id: str, session: SessionDep) -> TripOut:
    trips = TripRepo(session)
    trip = await trips.get(trip_id)
    if trip is None:
        raise HTTPException(status_code=404, detail="trip not found")
    stops = await trips.stops(trip.id)
    return TripOut(
        id=trip.id,
        corridor_id=trip.corridor_id,
        status=trip.status.value,
        total_revenue=str(trip.total_revenue),
        platform_earnings=str(trip.platform_earnings),
        created_at=trip.created_at.isoformat(),
        stops=[
            StopOut(
                sequence_order=s.sequence_order,
                stop_type=s.stop_type.value,
                booking_id=s.booking_id,
                lat=s.lat,
                lng=s.lng,
                address=s.address,
            )
            for s in stops
        ],
    )

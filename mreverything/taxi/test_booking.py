from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mreverything.brain.types import ExtractedData
from mreverything.conftest import FakeGeocoder, build_services, soweto_sandton
from mreverything.geo.primitives import GeoPoint
from mreverything.mirages.context import MirageContext, MirageServices
from mreverything.storage.models import BookingStatus, StopType, TaxiBooking, TaxiTrip
from mreverything.storage.repository import CorridorRepo, TripRepo, UserRepo
from mreverything.taxi.booking import ASK_DESTINATION, ASK_LOCATION, extract_destination, handle_taxi
from mreverything.taxi.tracking import NO_ACTIVE_BOOKING, handle_taxi_track

SOWETO = GeoPoint(-26.20, 28.05)
SANDTON = GeoPoint(-26.11, 28.06)
CAPE_TOWN = GeoPoint(-33.92, 18.42)


async def _seed(sessions) -> None:
    async with sessions() as s:
        await CorridorRepo(s).add(soweto_sandton())
        await s.commit()


async def _ask(
    sessions,
    services: MirageServices,
    text: str,
    pickup: GeoPoint | None = SOWETO,
    phone: str = "27825550001",
    extracted: ExtractedData | None = None,
    handler=handle_taxi,
) -> str | None:
    async with sessions() as s:
        user, _ = await UserRepo(s).get_or_create(phone)
        await s.commit()
        ctx = MirageContext(
            user=user,
            text=text,
            session=s,
            services=services,
            extracted_data=extracted or {},
            pickup=pickup,
        )
        return await handler(ctx)


async def _bookings(sessions) -> list[TaxiBooking]:
    async with sessions() as s:
        return list(await s.scalars(select(TaxiBooking).order_by(TaxiBooking.created_at)))


def _services(sessions) -> MirageServices:
    return build_services(sessions, geocoder=FakeGeocoder({"Sandton": SANDTON, "Soweto": SOWETO}))


def test_extract_destination() -> None:
    assert extract_destination("Taxi to Sandton") == "Sandton"
    assert extract_destination("i need a ride TO rosebank mall please") == "rosebank mall please"
    assert extract_destination("taxi") is None
    assert extract_destination("taxi", "Midrand") == "Midrand"


async def test_missing_location_asks_for_it(sessions: async_sessionmaker[AsyncSession]) -> None:
    reply = await _ask(sessions, _services(sessions), "Taxi to Sandton", pickup=None)
    assert reply == ASK_LOCATION


async def test_missing_destination_asks_for_it(sessions: async_sessionmaker[AsyncSession]) -> None:
    reply = await _ask(sessions, _services(sessions), "taxi")
    assert reply == ASK_DESTINATION


async def test_unknown_place(sessions: async_sessionmaker[AsyncSession]) -> None:
    await _seed(sessions)
    reply = await _ask(sessions, _services(sessions), "Taxi to Atlantis")
    assert reply is not None
    assert reply.startswith('❌ Couldn\'t find "Atlantis"')
    assert await _bookings(sessions) == []


async def test_unserved_route_lists_corridors(sessions: async_sessionmaker[AsyncSession]) -> None:
    await _seed(sessions)
    reply = await _ask(sessions, _services(sessions), "Taxi to Sandton", pickup=CAPE_TOWN)
    assert reply is not None
    assert "*Route Not Available*" in reply
    assert "• Soweto - Sandton" in reply
    assert await _bookings(sessions) == []


async def test_reverse_direction_is_not_served(sessions: async_sessionmaker[AsyncSession]) -> None:
    await _seed(sessions)
    reply = await _ask(sessions, _services(sessions), "Taxi to Soweto", pickup=SANDTON)
    assert reply is not None
    assert "*Route Not Available*" in reply


async def test_extracted_location_wins_over_text(sessions: async_sessionmaker[AsyncSession]) -> None:
    await _seed(sessions)
    services = _services(sessions)
    reply = await _ask(sessions, services, "get me a cab", extracted={"location": "Sandton"})
    assert reply is not None
    assert "📍 To: Sandton" in reply
    assert services.geocoder.calls == ["Sandton"]


async def test_booking_confirmation(sessions: async_sessionmaker[AsyncSession]) -> None:
    await _seed(sessions)
    services = _services(sessions)
    reply = await _ask(sessions, services, "Taxi to Sandton")
    await services.background.drain(5)

    [booking] = await _bookings(sessions)
    assert reply is not None
    assert reply.startswith("✅ *Taxi Booked*")
    assert "📍 From: Your location" in reply
    assert "💰 Fare: R35" in reply
    assert "🚐 Shared ride on Soweto - Sandton" in reply
    assert "⏳ Waiting for passengers: 1/4" in reply
    assert reply.endswith(f"Booking ID: {booking.id[:8]}")
    assert booking.status is BookingStatus.PENDING
    assert booking.pickup_address == "Your location"
    assert booking.dropoff_address == "Sandton"


async def test_soweto_to_sandton_end_to_end(sessions: async_sessionmaker[AsyncSession]) -> None:
    await _seed(sessions)
    services = _services(sessions)

    for i in range(3):
        reply = await _ask(sessions, services, "Taxi to Sandton", phone=f"2782555000{i}")
        assert reply is not None and f"Waiting for passengers: {i + 1}/4" in reply
    await services.background.drain(5)

    assert {b.status for b in await _bookings(sessions)} == {BookingStatus.PENDING}
    async with sessions() as s:
        assert list(await s.scalars(select(TaxiTrip))) == []

    reply = await _ask(sessions, services, "Taxi to Sandton", phone="27825550003")
    assert reply is not None and "Waiting for passengers: 4/4" in reply
    await services.background.drain(5)

    bookings = await _bookings(sessions)
    assert {b.status for b in bookings} == {BookingStatus.GROUPED}
    async with sessions() as s:
        [trip] = list(await s.scalars(select(TaxiTrip)))
        stops = await TripRepo(s).stops(trip.id)
    assert [s.stop_type for s in stops] == [StopType.PICKUP] * 4 + [StopType.DROPOFF] * 4
    assert {s.booking_id for s in stops} == {b.id for b in bookings}
    assert str(trip.total_revenue) == "140.00"
    assert str(trip.platform_earnings) == "21.00"


async def test_tracking_without_booking(sessions: async_sessionmaker[AsyncSession]) -> None:
    reply = await _ask(sessions, _services(sessions), "track taxi", handler=handle_taxi_track)
    assert reply == NO_ACTIVE_BOOKING


async def test_tracking_after_dispatch(sessions: async_sessionmaker[AsyncSession]) -> None:
    await _seed(sessions)
    services = _services(sessions)
    for i in range(4):
        await _ask(sessions, services, "Taxi to Sandton", phone=f"2782555000{i}")
    await services.background.drain(5)

    async with sessions() as s:
        [trip] = list(await s.scalars(select(TaxiTrip)))

    reply = await _ask(sessions, services, "track taxi", phone="27825550002", handler=handle_taxi_track)
    assert reply is not None
    assert "Booking Status: *GROUPED*" in reply
    assert f"Trip ID: {trip.id[:8]}" in reply
    assert "https://maps.google.com/?q=" in reply


async def test_pending_booking_is_not_trackable(sessions: async_sessionmaker[AsyncSession]) -> None:
    await _seed(sessions)
    services = _services(sessions)
    await _ask(sessions, services, "Taxi to Sandton")
    await services.background.drain(5)

    reply = await _ask(sessions, services, "where is my ride", handler=handle_taxi_track)
    assert reply == NO_ACTIVE_BOOKING

"""Ride tracking for a passenger's latest grouped or in-progress booking."""

from __future__ import annotations

from mreverything.geo.primitives import GeoPoint
from mreverything.mirages.context import MirageContext
from mreverything.storage.repository import BookingRepo, TripRepo

# Johannesburg CBD until drivers report live positions
DEFAULT_TRACKING_POINT = GeoPoint(-26.2041, 28.0473)

NO_ACTIVE_BOOKING = (
    "🤔 I couldn't find an active taxi booking for you. "
    'Try saying "Taxi to [destination]" to start! 🚐'
)


def tracking_link(point: GeoPoint) -> str:
    return f"https://maps.google.com/?q={point.lat},{point.lng}"


async def handle_taxi_track(ctx: MirageContext) -> str | None:
    booking = await BookingRepo(ctx.session).latest_active_for_user(ctx.user.id)
    if booking is None:
        return NO_ACTIVE_BOOKING

    trip_id = await TripRepo(ctx.session).trip_id_for_booking(booking.id)
    return (
        "📍 *LIVE TAXI TRACKING*\n\n"
        f"Booking Status: *{booking.status.value.upper()}*\n"
        f"Trip ID: {trip_id[:8] if trip_id else 'N/A'}\n\n"
        "View live driver location:\n"
        f"🔗 {tracking_link(DEFAULT_TRACKING_POINT)}\n\n"
        "Your driver is currently following the optimized corridor route. 🇿🇦"
    )

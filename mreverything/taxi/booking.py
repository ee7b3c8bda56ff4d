"""Taxi intake: "Taxi to <place>" becomes a pending booking on a corridor."""

from __future__ import annotations

import re

from loguru import logger

from mreverything.geo.corridors import assign_corridor
from mreverything.geo.fares import fare_between
from mreverything.mirages.context import MirageContext
from mreverything.storage.models import BookingStatus, TaxiBooking
from mreverything.storage.repository import BookingRepo, CorridorRepo

PICKUP_LABEL = "Your location"

_DESTINATION_RE = re.compile(r"to\s+([a-zA-Z\s]+)", re.IGNORECASE)

ASK_LOCATION = '📍 *Share Your Location First*\n\nThen tell me: "Taxi to [destination]"\n\nExample: "Taxi to Sandton"'
ASK_DESTINATION = 'Where do you want to go?\n\nExample: "Taxi to Sandton"'
BOOKING_FAILED = "❌ Something went wrong. Please try again."


def extract_destination(text: str, location_hint: str | None = None) -> str | None:
    """Destination from the classifier's hint, else the words after "to"."""
    if location_hint and location_hint.strip():
        return location_hint.strip()
    match = _DESTINATION_RE.search(text or "")
    if not match:
        return None
    return match.group(1).strip() or None


def _route_unavailable(names: list[str]) -> str:
    served = "\n".join(f"• {n}" for n in names) or "• (no active routes)"
    return f"❌ *Route Not Available*\n\nWe currently serve:\n{served}\n\nMore routes coming soon!"


async def handle_taxi(ctx: MirageContext) -> str | None:
    if ctx.pickup is None:
        return ASK_LOCATION

    destination = extract_destination(ctx.text, ctx.extracted_data.get("location"))
    if not destination:
        return ASK_DESTINATION

    try:
        dropoff = await ctx.services.geocoder.geocode(destination)
        if dropoff is None:
            return f'❌ Couldn\'t find "{destination}"\n\nPlease be more specific.'

        corridors = await CorridorRepo(ctx.session).list_active()
        corridor = assign_corridor(ctx.pickup, dropoff, corridors)
        if corridor is None:
            logger.info(f"Taxi: no corridor for {ctx.user.phone} → {destination}")
            return _route_unavailable([c.name for c in corridors])

        fare = fare_between(ctx.pickup, dropoff)
        bookings = BookingRepo(ctx.session)
        booking = await bookings.create(
            TaxiBooking(
                user_id=ctx.user.id,
                pickup_lat=ctx.pickup.lat,
                pickup_lng=ctx.pickup.lng,
                pickup_address=PICKUP_LABEL,
                dropoff_lat=dropoff.lat,
                dropoff_lng=dropoff.lng,
                dropoff_address=destination,
                corridor_id=corridor.id,
                fare=fare,
                status=BookingStatus.PENDING,
            )
        )
        pending = await bookings.count_pending(corridor.id)
        corridor_id, corridor_name, min_group = corridor.id, corridor.name, corridor.min_group_size
        # the dispatcher reads through its own session
        await ctx.session.commit()
    except Exception as exc:
        logger.error(f"Taxi: booking for {ctx.user.phone} failed: {exc}", exc_info=True)
        await ctx.session.rollback()
        return BOOKING_FAILED

    logger.info(f"Taxi: booking {booking.id[:8]} on {corridor_name} ({pending}/{min_group})")
    ctx.services.background.spawn(
        ctx.services.dispatcher.dispatch_corridor(corridor_id), name=f"dispatch-{corridor_id[:8]}"
    )

    return (
        "✅ *Taxi Booked*\n\n"
        f"📍 From: {PICKUP_LABEL}\n"
        f"📍 To: {destination}\n"
        f"💰 Fare: R{fare}\n\n"
        f"🚐 Shared ride on {corridor_name}\n\n"
        f"⏳ Waiting for passengers: {pending}/{min_group}\n\n"
        "You'll be notified when taxi is dispatched.\n\n"
        f"Booking ID: {booking.id[:8]}"
    )

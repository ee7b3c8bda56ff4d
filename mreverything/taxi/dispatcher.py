"""Batch dispatcher: turns a quorum of pending bookings into one shared trip.

Per corridor, under a corridor lock:

1. **Claim** – in one transaction, read pending bookings oldest-first; below
   ``min_group_size`` nothing happens.  Otherwise the first
   ``max_group_size`` are moved ``pending → claiming`` with a claim token by
   a conditional update.  If any of them was taken meanwhile the whole claim
   rolls back and the corridor is left for the next cycle.
2. **Build** – in a second transaction, plan the stops, insert trip + stops
   and move the claimed bookings to ``grouped``.  A booking that already
   sits on a trip is a double dispatch: the conflicting bookings stay
   claimed for review, the rest return to ``pending`` and a critical alert
   goes out.  Any other failure releases the claim back to
   ``pending``.
3. **Notify** – passengers are messaged in the background; a failed
   notification never undoes the trip.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mreverything.channels.whatsapp import SecureSender
from mreverything.observability.alerts import AlertService
from mreverything.runtime.background import BackgroundTasks
from mreverything.runtime.corridor_lock import CorridorLock, CorridorLockTimeout
from mreverything.storage.models import AlertSeverity, BookingStatus, TaxiStop, TaxiTrip, TripStatus
from mreverything.storage.repository import BookingRepo, CorridorRepo, TripRepo, UserRepo
from mreverything.taxi.routing import plan_stops

PLATFORM_SHARE = Decimal("0.15")
_CENTS = Decimal("0.01")


class DoubleDispatchError(RuntimeError):
    """A claimed booking is already attached to another trip."""

    def __init__(self, booking_ids: set[str]) -> None:
        super().__init__(f"bookings already on a trip: {sorted(booking_ids)}")
        self.booking_ids = booking_ids


@dataclass(frozen=True, slots=True)
class DispatchedTrip:
    trip_id: str
    corridor_id: str
    corridor_name: str
    booking_ids: tuple[str, ...]
    total_revenue: Decimal
    platform_earnings: Decimal


def trip_financials(base_fare: Decimal, passengers: int) -> tuple[Decimal, Decimal]:
    """Return ``(total revenue, platform earnings)`` for a batch."""
    revenue = (Decimal(str(base_fare)) * passengers).quantize(_CENTS)
    return revenue, (revenue * PLATFORM_SHARE).quantize(_CENTS)


class TaxiDispatcher:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        locks: CorridorLock,
        sender: SecureSender,
        background: BackgroundTasks,
        alerts: AlertService,
        lock_timeout: float = 5.0,
    ) -> None:
        self._sessions = sessions
        self._locks = locks
        self._sender = sender
        self._background = background
        self._alerts = alerts
        self._lock_timeout = lock_timeout

    async def run_cycle(self) -> list[DispatchedTrip]:
        """Dispatch every active corridor once; corridors fail independently."""
        async with self._sessions() as s:
            corridor_ids = [c.id for c in await CorridorRepo(s).list_active()]

        trips: list[DispatchedTrip] = []
        for corridor_id in corridor_ids:
            try:
                trip = await self.dispatch_corridor(corridor_id)
            except Exception as exc:
                logger.error(f"Dispatch: corridor {corridor_id} failed: {exc}", exc_info=True)
                continue
            if trip is not None:
                trips.append(trip)
        return trips

    async def dispatch_corridor(self, corridor_id: str) -> DispatchedTrip | None:
        try:
            async with self._locks.acquire(corridor_id, timeout=self._lock_timeout):
                return await self._dispatch_locked(corridor_id)
        except CorridorLockTimeout:
            logger.info(f"Dispatch: corridor {corridor_id} busy, leaving it to the current holder")
            return None

    async def _dispatch_locked(self, corridor_id: str) -> DispatchedTrip | None:
        token = str(uuid.uuid4())

        # ── 1. claim ──
        async with self._sessions() as s:
            corridor = await CorridorRepo(s).get(corridor_id)
            if corridor is None or not corridor.active:
                return None
            bookings = BookingRepo(s)
            pending = await bookings.list_pending(corridor_id)
            if len(pending) < corridor.min_group_size:
                logger.debug(f"Dispatch: {corridor.name} has {len(pending)}/{corridor.min_group_size}")
                return None
            batch_ids = [b.id for b in pending[: corridor.max_group_size]]
            name = corridor.name
            claimed = await bookings.claim(batch_ids, token)
            if claimed != len(batch_ids):
                # rollback expires loaded rows, so only plain values are read past this point
                await s.rollback()
                logger.warning(f"Dispatch: {name} claim raced ({claimed}/{len(batch_ids)}), retry next cycle")
                return None
            await s.commit()

        # ── 2. build ──
        try:
            trip, phones = await self._build_trip(corridor_id, token)
        except DoubleDispatchError as exc:
            await self._release(token, keep=exc.booking_ids)
            await self._alerts.raise_alert(
                AlertSeverity.CRITICAL,
                "taxi-dispatcher",
                f"Double dispatch detected on corridor {corridor_id}",
                {"booking_ids": sorted(exc.booking_ids), "claim_token": token},
            )
            return None
        except Exception:
            await self._release(token)
            raise

        logger.info(f"Dispatch: trip {trip.trip_id} on {trip.corridor_name} with {len(trip.booking_ids)} passengers")

        # ── 3. notify ──
        for phone in phones:
            self._background.spawn(self._notify_passenger(phone, trip), name=f"notify-{trip.trip_id[:8]}")
        return trip

    async def _build_trip(self, corridor_id: str, token: str) -> tuple[DispatchedTrip, list[str]]:
        async with self._sessions() as s:
            corridor = await CorridorRepo(s).get(corridor_id)
            if corridor is None:
                raise LookupError(f"corridor vanished: {corridor_id}")
            bookings = await BookingRepo(s).list_claimed(token)
            booking_ids = [b.id for b in bookings]

            trips = TripRepo(s)
            conflicting = await trips.bookings_already_on_trips(booking_ids)
            if conflicting:
                raise DoubleDispatchError(conflicting)

            revenue, earnings = trip_financials(corridor.base_fare, len(bookings))
            stops = [
                TaxiStop(
                    booking_id=p.booking_id,
                    stop_type=p.stop_type,
                    sequence_order=p.sequence_order,
                    lat=p.lat,
                    lng=p.lng,
                    address=p.address,
                )
                for p in plan_stops(bookings, corridor)
            ]
            trip = await trips.create(
                TaxiTrip(
                    corridor_id=corridor.id,
                    status=TripStatus.SCHEDULED,
                    total_revenue=revenue,
                    platform_earnings=earnings,
                ),
                stops,
            )
            await BookingRepo(s).settle_claim(token, BookingStatus.GROUPED)
            phones = await UserRepo(s).phones_for(list({b.user_id for b in bookings}))
            await s.commit()

        dispatched = DispatchedTrip(
            trip_id=trip.id,
            corridor_id=corridor.id,
            corridor_name=corridor.name,
            booking_ids=tuple(booking_ids),
            total_revenue=revenue,
            platform_earnings=earnings,
        )
        return dispatched, [phones[b.user_id] for b in bookings if b.user_id in phones]

    async def _release(self, token: str, keep: set[str] | None = None) -> None:
        """Return claimed bookings to ``pending``; ids in *keep* stay claimed for review."""
        try:
            async with self._sessions() as s:
                released = await BookingRepo(s).settle_claim(token, BookingStatus.PENDING, exclude=keep)
                await s.commit()
            logger.warning(f"Dispatch: released {released} claimed booking(s)")
        except Exception as exc:
            logger.error(f"Dispatch: could not release claim {token}: {exc}", exc_info=True)

    async def _notify_passenger(self, phone: str, trip: DispatchedTrip) -> None:
        body = (
            "🚐 *Taxi Dispatched!*\n\n"
            f"Your shared ride on {trip.corridor_name} is ready.\n"
            f"Trip ID: {trip.trip_id[:8]}\n\n"
            "You'll receive pickup details shortly."
        )
        buttons = [
            {"id": f"TRACK_TAXI_{trip.trip_id}", "title": "Track Ride 📍"},
            {"id": "TAXI_HELP", "title": "Need Help? ❓"},
        ]
        try:
            # the passenger is the conversation origin for their own ride
            await self._sender.send(phone, body, path="taxi", incoming_from=phone, buttons=buttons)
        except Exception as exc:
            logger.warning(f"Dispatch: notifying {phone} about trip {trip.trip_id[:8]} failed: {exc}")

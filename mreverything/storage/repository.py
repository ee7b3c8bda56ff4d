"""Thin data-access helpers on top of SQLAlchemy async sessions.

Each repository is instantiated with a scoped AsyncSession and provides
typed CRUD for one domain aggregate.  Business logic stays in the service layer.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mreverything.storage.models import (
    AlertSeverity,
    BookingStatus,
    ChatMessage,
    Corridor,
    ForensicLog,
    SystemAlert,
    SystemConfig,
    TaxiBooking,
    TaxiStop,
    TaxiTrip,
    User,
    _utcnow,
)


# ── users ─────────────────────────────────────────────────────────────────


class UserRepo:
    def __init__(self, s: AsyncSession) -> None:
        self._s = s

    async def get_by_phone(self, phone: str) -> User | None:
        return await self._s.scalar(select(User).where(User.phone == phone))

    async def get_or_create(self, phone: str) -> tuple[User, bool]:
        """Return ``(user, created)``."""
        user = await self.get_by_phone(phone)
        if user is not None:
            return user, False
        user = User(phone=phone)
        self._s.add(user)
        await self._s.flush()
        return user, True

    async def phones_for(self, user_ids: list[str]) -> dict[str, str]:
        rows = await self._s.execute(select(User.id, User.phone).where(User.id.in_(user_ids)))
        return {uid: phone for uid, phone in rows}


# ── chat history ──────────────────────────────────────────────────────────


class ChatRepo:
    def __init__(self, s: AsyncSession) -> None:
        self._s = s

    async def append(self, user_id: str, role: str, content: str) -> ChatMessage:
        msg = ChatMessage(user_id=user_id, role=role, content=(content or "")[:1000])
        self._s.add(msg)
        await self._s.flush()
        return msg

    async def recent(self, user_id: str, limit: int = 6) -> list[ChatMessage]:
        stmt = (
            select(ChatMessage)
            .where(ChatMessage.user_id == user_id)
            .order_by(ChatMessage.created_at.desc())
            .limit(limit)
        )
        rows = list(await self._s.scalars(stmt))
        rows.reverse()
        return rows


# ── corridors ─────────────────────────────────────────────────────────────


class CorridorRepo:
    def __init__(self, s: AsyncSession) -> None:
        self._s = s

    async def get(self, corridor_id: str) -> Corridor | None:
        return await self._s.get(Corridor, corridor_id)

    async def get_by_name(self, name: str) -> Corridor | None:
        return await self._s.scalar(select(Corridor).where(Corridor.name == name))

    async def list_active(self) -> list[Corridor]:
        stmt = select(Corridor).where(Corridor.active.is_(True)).order_by(Corridor.created_at, Corridor.name)
        return list(await self._s.scalars(stmt))

    async def list_all(self) -> list[Corridor]:
        return list(await self._s.scalars(select(Corridor).order_by(Corridor.name)))

    async def add(self, corridor: Corridor) -> Corridor:
        self._s.add(corridor)
        await self._s.flush()
        return corridor


# ── taxi bookings ─────────────────────────────────────────────────────────


class BookingRepo:
    def __init__(self, s: AsyncSession) -> None:
        self._s = s

    async def create(self, booking: TaxiBooking) -> TaxiBooking:
        self._s.add(booking)
        await self._s.flush()
        return booking

    async def get(self, booking_id: str) -> TaxiBooking | None:
        return await self._s.get(TaxiBooking, booking_id)

    async def list_pending(self, corridor_id: str) -> list[TaxiBooking]:
        """Pending bookings for a corridor, oldest first."""
        stmt = (
            select(TaxiBooking)
            .where(TaxiBooking.corridor_id == corridor_id, TaxiBooking.status == BookingStatus.PENDING)
            .order_by(TaxiBooking.created_at.asc(), TaxiBooking.id.asc())
        )
        return list(await self._s.scalars(stmt))

    async def count_pending(self, corridor_id: str) -> int:
        stmt = select(func.count(TaxiBooking.id)).where(
            TaxiBooking.corridor_id == corridor_id, TaxiBooking.status == BookingStatus.PENDING
        )
        return int(await self._s.scalar(stmt) or 0)

    async def claim(self, booking_ids: list[str], token: str) -> int:
        """Move still-pending bookings to CLAIMING under *token*; returns rows claimed."""
        stmt = (
            update(TaxiBooking)
            .where(TaxiBooking.id.in_(booking_ids), TaxiBooking.status == BookingStatus.PENDING)
            .values(status=BookingStatus.CLAIMING, claim_token=token)
            .execution_options(synchronize_session=False)
        )
        result = await self._s.execute(stmt)
        return result.rowcount or 0

    async def list_claimed(self, token: str) -> list[TaxiBooking]:
        stmt = (
            select(TaxiBooking)
            .where(TaxiBooking.claim_token == token, TaxiBooking.status == BookingStatus.CLAIMING)
            .order_by(TaxiBooking.created_at.asc(), TaxiBooking.id.asc())
        )
        return list(await self._s.scalars(stmt))

    async def settle_claim(self, token: str, status: BookingStatus, exclude: set[str] | None = None) -> int:
        """Move every booking held under *token* to *status* and drop the token."""
        stmt = update(TaxiBooking).where(
            TaxiBooking.claim_token == token, TaxiBooking.status == BookingStatus.CLAIMING
        )
        if exclude:
            stmt = stmt.where(TaxiBooking.id.not_in(list(exclude)))
        result = await self._s.execute(
            stmt.values(status=status, claim_token="").execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def latest_active_for_user(self, user_id: str) -> TaxiBooking | None:
        stmt = (
            select(TaxiBooking)
            .where(
                TaxiBooking.user_id == user_id,
                TaxiBooking.status.in_([BookingStatus.GROUPED, BookingStatus.IN_PROGRESS]),
            )
            .order_by(TaxiBooking.created_at.desc())
            .limit(1)
        )
        return await self._s.scalar(stmt)

    async def count_by_status(self) -> dict[str, int]:
        rows = await self._s.execute(
            select(TaxiBooking.status, func.count(TaxiBooking.id)).group_by(TaxiBooking.status)
        )
        return {status.value: int(n) for status, n in rows}


# ── taxi trips & stops ────────────────────────────────────────────────────


class TripRepo:
    def __init__(self, s: AsyncSession) -> None:
        self._s = s

    async def create(self, trip: TaxiTrip, stops: list[TaxiStop]) -> TaxiTrip:
        self._s.add(trip)
        await self._s.flush()
        for stop in stops:
            stop.trip_id = trip.id
        self._s.add_all(stops)
        await self._s.flush()
        return trip

    async def get(self, trip_id: str) -> TaxiTrip | None:
        return await self._s.get(TaxiTrip, trip_id)

    async def list_for_corridor(self, corridor_id: str) -> list[TaxiTrip]:
        stmt = select(TaxiTrip).where(TaxiTrip.corridor_id == corridor_id).order_by(TaxiTrip.created_at)
        return list(await self._s.scalars(stmt))

    async def stops(self, trip_id: str) -> list[TaxiStop]:
        stmt = select(TaxiStop).where(TaxiStop.trip_id == trip_id).order_by(TaxiStop.sequence_order)
        return list(await self._s.scalars(stmt))

    async def trip_id_for_booking(self, booking_id: str) -> str | None:
        return await self._s.scalar(select(TaxiStop.trip_id).where(TaxiStop.booking_id == booking_id).limit(1))

    async def bookings_already_on_trips(self, booking_ids: list[str]) -> set[str]:
        rows = await self._s.scalars(
            select(TaxiStop.booking_id).where(TaxiStop.booking_id.in_(booking_ids)).distinct()
        )
        return set(rows)

    async def totals(self) -> tuple[int, Decimal]:
        """Return ``(trip count, platform earnings)`` across all trips."""
        row = (
            await self._s.execute(select(func.count(TaxiTrip.id), func.sum(TaxiTrip.platform_earnings)))
        ).one()
        return int(row[0] or 0), Decimal(str(row[1] or 0))


# ── system config ─────────────────────────────────────────────────────────


class SystemConfigRepo:
    def __init__(self, s: AsyncSession) -> None:
        self._s = s

    async def get(self, key: str) -> str | None:
        row = await self._s.get(SystemConfig, key)
        return row.value if row else None

    async def get_row(self, key: str) -> SystemConfig | None:
        return await self._s.get(SystemConfig, key)

    async def set(self, key: str, value: str, updated_by: str = "") -> SystemConfig:
        """Upsert *key*; ``updated_at`` always moves so timestamp guards see the write."""
        row = await self._s.get(SystemConfig, key)
        now = _utcnow()
        if row is None:
            row = SystemConfig(key=key, value=value, updated_by=updated_by, updated_at=now)
            self._s.add(row)
        else:
            row.value = value
            row.updated_by = updated_by
            row.updated_at = now
        await self._s.flush()
        return row

    async def list_all(self) -> list[SystemConfig]:
        """Return all config entries, ordered by key."""
        stmt = select(SystemConfig).order_by(SystemConfig.key)
        return list(await self._s.scalars(stmt))


# ── telemetry ─────────────────────────────────────────────────────────────


class AlertRepo:
    def __init__(self, s: AsyncSession) -> None:
        self._s = s

    async def append(self, alert: SystemAlert) -> SystemAlert:
        self._s.add(alert)
        await self._s.flush()
        return alert

    async def recent(self, limit: int = 10) -> list[SystemAlert]:
        stmt = select(SystemAlert).order_by(SystemAlert.created_at.desc()).limit(limit)
        return list(await self._s.scalars(stmt))

    async def since(self, cutoff: datetime) -> list[SystemAlert]:
        stmt = select(SystemAlert).where(SystemAlert.created_at > cutoff).order_by(SystemAlert.created_at)
        return list(await self._s.scalars(stmt))

    async def count_failures_since(self, cutoff: datetime) -> int:
        stmt = select(func.count(SystemAlert.id)).where(
            SystemAlert.created_at > cutoff,
            SystemAlert.severity.in_([AlertSeverity.ERROR, AlertSeverity.CRITICAL]),
        )
        return int(await self._s.scalar(stmt) or 0)


class ForensicRepo:
    def __init__(self, s: AsyncSession) -> None:
        self._s = s

    async def append(self, entry: ForensicLog) -> ForensicLog:
        self._s.add(entry)
        await self._s.flush()
        return entry

    async def recent(self, limit: int = 5) -> list[ForensicLog]:
        stmt = select(ForensicLog).order_by(ForensicLog.created_at.desc()).limit(limit)
        return list(await self._s.scalars(stmt))

    async def list_by_type(self, event_type: str, limit: int = 50) -> list[ForensicLog]:
        stmt = (
            select(ForensicLog)
            .where(ForensicLog.event_type == event_type)
            .order_by(ForensicLog.created_at.desc())
            .limit(limit)
        )
        return list(await self._s.scalars(stmt))

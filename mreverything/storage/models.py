"""SQLAlchemy ORM models – all tables for Mr Everything."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SqlEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from mreverything.geo.primitives import GeoPoint


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


# ---------------------------------------------------------------------------
# enums
# ---------------------------------------------------------------------------


class BookingStatus(str, PyEnum):
    PENDING = "pending"
    CLAIMING = "claiming"  # held by a dispatcher while it builds a trip
    GROUPED = "grouped"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TripStatus(str, PyEnum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class StopType(str, PyEnum):
    PICKUP = "pickup"
    DROPOFF = "dropoff"


class AlertSeverity(str, PyEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


# ---------------------------------------------------------------------------
# base
# ---------------------------------------------------------------------------


class Base(AsyncAttrs, DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# users & conversation
# ---------------------------------------------------------------------------


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    phone: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    preferred_name: Mapped[str] = mapped_column(String(64), default="")
    last_active: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # last shared WhatsApp location, reused as taxi pickup while fresh
    last_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    last_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    last_location_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class ChatMessage(Base):
    __tablename__ = "chat_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    role: Mapped[str] = mapped_column(String(16))  # user / assistant
    content: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)


# ---------------------------------------------------------------------------
# taxi corridors, bookings, trips
# ---------------------------------------------------------------------------


class Corridor(Base):
    __tablename__ = "corridors"
    __table_args__ = (
        CheckConstraint("radius_km > 0", name="ck_corridors_radius_positive"),
        CheckConstraint("start_lat <> end_lat OR start_lng <> end_lng", name="ck_corridors_distinct_ends"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(128), unique=True)
    start_lat: Mapped[float] = mapped_column(Float)
    start_lng: Mapped[float] = mapped_column(Float)
    end_lat: Mapped[float] = mapped_column(Float)
    end_lng: Mapped[float] = mapped_column(Float)
    radius_km: Mapped[float] = mapped_column(Float, default=5.0)
    active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    min_group_size: Mapped[int] = mapped_column(Integer, default=4)
    max_group_size: Mapped[int] = mapped_column(Integer, default=6)
    base_fare: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("35.00"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    @property
    def start(self) -> GeoPoint:
        return GeoPoint(self.start_lat, self.start_lng)

    @property
    def end(self) -> GeoPoint:
        return GeoPoint(self.end_lat, self.end_lng)


class TaxiBooking(Base):
    __tablename__ = "taxi_bookings"
    __table_args__ = (
        Index("ix_taxi_bookings_corridor_status", "corridor_id", "status", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    pickup_lat: Mapped[float] = mapped_column(Float)
    pickup_lng: Mapped[float] = mapped_column(Float)
    pickup_address: Mapped[str] = mapped_column(String(256), default="")
    dropoff_lat: Mapped[float] = mapped_column(Float)
    dropoff_lng: Mapped[float] = mapped_column(Float)
    dropoff_address: Mapped[str] = mapped_column(String(256), default="")
    corridor_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("corridors.id"), nullable=True)
    fare: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    status: Mapped[BookingStatus] = mapped_column(SqlEnum(BookingStatus), default=BookingStatus.PENDING)
    claim_token: Mapped[str] = mapped_column(String(36), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    @property
    def pickup(self) -> GeoPoint:
        return GeoPoint(self.pickup_lat, self.pickup_lng)

    @property
    def dropoff(self) -> GeoPoint:
        return GeoPoint(self.dropoff_lat, self.dropoff_lng)


class TaxiTrip(Base):
    __tablename__ = "taxi_trips"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    corridor_id: Mapped[str] = mapped_column(String(36), ForeignKey("corridors.id"), index=True)
    status: Mapped[TripStatus] = mapped_column(SqlEnum(TripStatus), default=TripStatus.SCHEDULED)
    total_revenue: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    platform_earnings: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class TaxiStop(Base):
    __tablename__ = "taxi_stops"
    __table_args__ = (
        Index("ix_taxi_stops_trip_seq", "trip_id", "sequence_order", unique=True),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    trip_id: Mapped[str] = mapped_column(String(36), ForeignKey("taxi_trips.id"), index=True)
    booking_id: Mapped[str] = mapped_column(String(36), ForeignKey("taxi_bookings.id"), index=True)
    stop_type: Mapped[StopType] = mapped_column(SqlEnum(StopType))
    sequence_order: Mapped[int] = mapped_column(Integer)
    lat: Mapped[float] = mapped_column(Float)
    lng: Mapped[float] = mapped_column(Float)
    address: Mapped[str] = mapped_column(String(256), default="")


# ---------------------------------------------------------------------------
# system config (key-value store for runtime flags and circuit breakers)
# ---------------------------------------------------------------------------


class SystemConfig(Base):
    __tablename__ = "system_config"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[str] = mapped_column(Text, default="")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    updated_by: Mapped[str] = mapped_column(String(64), default="")


# ---------------------------------------------------------------------------
# telemetry
# ---------------------------------------------------------------------------


class SystemAlert(Base):
    __tablename__ = "system_alerts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    severity: Mapped[AlertSeverity] = mapped_column(SqlEnum(AlertSeverity), index=True)
    source: Mapped[str] = mapped_column(String(64), index=True)
    message: Mapped[str] = mapped_column(Text, default="")
    context: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)


class ForensicLog(Base):
    __tablename__ = "forensic_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    event_type: Mapped[str] = mapped_column(String(64), index=True)
    user_phone: Mapped[str] = mapped_column(String(32), default="", index=True)
    intent: Mapped[str] = mapped_column(String(64), default="none")
    context: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)

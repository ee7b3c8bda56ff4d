"""Shared fixtures: a throwaway SQLite database and in-memory collaborators."""

from __future__ import annotations

from collections.abc import AsyncIterator
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from mreverything.channels.whatsapp import SecureSender
from mreverything.geo.primitives import GeoPoint
from mreverything.mirages.context import MirageServices
from mreverything.observability.alerts import AlertService
from mreverything.runtime.background import BackgroundTasks
from mreverything.runtime.corridor_lock import CorridorLock
from mreverything.storage.database import create_all_tables
from mreverything.storage.models import Corridor
from mreverything.taxi.dispatcher import TaxiDispatcher


@pytest.fixture
async def sessions(tmp_path: Path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'mreverything.db'}")
    await create_all_tables(engine)
    try:
        yield async_sessionmaker(bind=engine, expire_on_commit=False)
    finally:
        await engine.dispose()


def soweto_sandton(**overrides: object) -> Corridor:
    fields: dict[str, object] = {
        "name": "Soweto - Sandton",
        "start_lat": -26.2650,
        "start_lng": 28.0430,
        "end_lat": -26.1076,
        "end_lng": 28.0567,
        "radius_km": 5.0,
        "active": True,
        "min_group_size": 4,
        "max_group_size": 6,
        "base_fare": Decimal("35.00"),
    }
    fields.update(overrides)
    return Corridor(**fields)


class FakeGeocoder:
    def __init__(self, places: dict[str, GeoPoint] | None = None) -> None:
        self.places = {k.lower(): v for k, v in (places or {}).items()}
        self.calls: list[str] = []

    async def geocode(self, address: str) -> GeoPoint | None:
        self.calls.append(address)
        return self.places.get(address.strip().lower())


class FakeWhapi:
    """Records outbound traffic instead of calling the gateway."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[dict[str, object]] = []

    async def send_text(self, to: str, body: str) -> str | None:
        self.sent.append({"kind": "text", "to": to, "body": body})
        return None if self.fail else f"msg-{len(self.sent)}"

    async def send_interactive(
        self, to: str, body: str, buttons: list[dict[str, str]], image: str | None = None,
    ) -> str | None:
        self.sent.append({"kind": "interactive", "to": to, "body": body, "buttons": buttons, "image": image})
        return None if self.fail else f"msg-{len(self.sent)}"

    async def send_image(self, to: str, url: str, caption: str = "") -> str | None:
        self.sent.append({"kind": "image", "to": to, "url": url, "caption": caption})
        return None if self.fail else f"msg-{len(self.sent)}"

    async def aclose(self) -> None:
        return None


def build_services(
    sessions: async_sessionmaker[AsyncSession],
    whapi: FakeWhapi | None = None,
    geocoder: FakeGeocoder | None = None,
    admin_phone: str = "",
) -> MirageServices:
    """The taxi and messaging graph wired onto fakes."""
    whapi = whapi or FakeWhapi()
    background = BackgroundTasks(8)
    alerts = AlertService(sessions, gateway=whapi, admin_phone=admin_phone)
    sender = SecureSender(whapi, alerts, admin_phone=admin_phone)
    dispatcher = TaxiDispatcher(sessions, CorridorLock(), sender, background, alerts, lock_timeout=1.0)
    return MirageServices(
        geocoder=geocoder or FakeGeocoder(),
        dispatcher=dispatcher,
        background=background,
        sender=sender,
        alerts=alerts,
    )

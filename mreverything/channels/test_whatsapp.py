import json

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mreverything.channels.whatsapp import (
    InboundMessage,
    SecureSender,
    SecurityViolation,
    WhapiClient,
    normalize_sender,
)
from mreverything.conftest import FakeWhapi
from mreverything.geo.primitives import GeoPoint
from mreverything.observability.alerts import AlertService
from mreverything.storage.models import ForensicLog

ADMIN = "27820001111"


def _delivery(**msg) -> dict:
    msg.setdefault("from", "27825550001@s.whatsapp.net")
    return {"messages": [msg]}


# ── inbound ──


def test_normalize_sender_strips_suffixes() -> None:
    assert normalize_sender("27825550001@s.whatsapp.net") == "27825550001"
    assert normalize_sender("27825550001@c.us") == "27825550001"
    assert normalize_sender(None) == ""


def test_text_message() -> None:
    msg = InboundMessage.from_webhook(_delivery(type="text", text={"body": "Taxi to Sandton"}))
    assert msg is not None
    assert (msg.sender, msg.kind, msg.text) == ("27825550001", "text", "Taxi to Sandton")
    assert msg.raw_from == "27825550001@s.whatsapp.net"


def test_button_reply_uses_its_id() -> None:
    msg = InboundMessage.from_webhook(
        _delivery(type="interactive", interactive={"button_reply": {"id": "TRACK_TAXI_abc", "title": "Track"}})
    )
    assert msg is not None and msg.text == "TRACK_TAXI_abc"


def test_image_without_caption() -> None:
    msg = InboundMessage.from_webhook(_delivery(type="image", image={"link": "https://img/x.jpg"}))
    assert msg is not None
    assert msg.text == "[Image]"
    assert msg.media_url == "https://img/x.jpg"


def test_location_message() -> None:
    msg = InboundMessage.from_webhook(
        _delivery(type="location", location={"latitude": -26.2, "longitude": "28.05", "address": "Orlando"})
    )
    assert msg is not None
    assert msg.location == GeoPoint(-26.2, 28.05)
    assert msg.text == "Orlando"


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"messages": []},
        {"messages": ["nope"]},
        _delivery(type="text", text={"body": "echo"}, from_me=True),
        {"messages": [{"type": "text", "text": {"body": "who?"}}]},
    ],
)
def test_nothing_to_answer(payload: dict) -> None:
    assert InboundMessage.from_webhook(payload) is None


# ── whapi client ──


async def test_whapi_sends_buttons_with_short_titles() -> None:
    seen: list[tuple[str, dict, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, json.loads(request.content), request.headers["Authorization"]))
        return httpx.Response(200, json={"sent": True, "message": {"id": "wamid-1"}})

    client = WhapiClient("tok", base_url="https://whapi.test", transport=httpx.MockTransport(handler))
    msg_id = await client.send_interactive(
        "27825550001@c.us", "Ride ready", [{"id": "TRACK_TAXI_1", "title": "Track Ride 📍 and much more text"}]
    )
    await client.aclose()

    assert msg_id == "wamid-1"
    path, body, auth = seen[0]
    assert path == "/messages/interactive"
    assert auth == "Bearer tok"
    assert body["to"] == "27825550001"
    assert body["action"]["buttons"][0]["reply"] == {"id": "TRACK_TAXI_1", "title": "Track Ride 📍 and muc"}


async def test_whapi_retries_server_errors() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls < 3:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, json={"id": "wamid-3"})

    client = WhapiClient("tok", backoff_base=0.0, transport=httpx.MockTransport(handler))
    assert await client.send_text("27825550001", "hi") == "wamid-3"
    assert calls == 3
    await client.aclose()


async def test_whapi_does_not_retry_client_errors() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(400, json={"error": "bad number"})

    client = WhapiClient("tok", backoff_base=0.0, transport=httpx.MockTransport(handler))
    assert await client.send_text("nope", "hi") is None
    assert calls == 1
    await client.aclose()


# ── secure sender ──


async def _events(sessions) -> list[str]:
    async with sessions() as s:
        return sorted(e.event_type for e in await s.scalars(select(ForensicLog)))


async def test_sender_records_outbound_trail(sessions: async_sessionmaker[AsyncSession]) -> None:
    whapi = FakeWhapi()
    sender = SecureSender(whapi, AlertService(sessions), admin_phone=ADMIN)

    assert await sender.send("27825550001@c.us", "hello", path="ai", incoming_from="27825550001") == "msg-1"

    assert whapi.sent == [{"kind": "text", "to": "27825550001", "body": "hello"}]
    assert await _events(sessions) == ["OUTBOUND_ATTEMPT", "OUTBOUND_SUCCESS"]


async def test_sender_blocks_user_reply_to_operator(sessions: async_sessionmaker[AsyncSession]) -> None:
    whapi = FakeWhapi()
    sender = SecureSender(whapi, AlertService(sessions), admin_phone=f"{ADMIN}@c.us")

    with pytest.raises(SecurityViolation):
        await sender.send(ADMIN, "your taxi is here", path="ai", incoming_from="27825550001")

    assert whapi.sent == []
    assert "SECURITY_VIOLATION" in await _events(sessions)


async def test_sender_allows_safe_paths_and_own_messages(sessions: async_sessionmaker[AsyncSession]) -> None:
    whapi = FakeWhapi()
    sender = SecureSender(whapi, AlertService(sessions), admin_phone=ADMIN)

    await sender.send(ADMIN, "report", path="admin_stats", incoming_from="27825550001")
    await sender.send(ADMIN, "reply", path="ai", incoming_from=f"{ADMIN}@s.whatsapp.net")

    assert [m["to"] for m in whapi.sent] == [ADMIN, ADMIN]


async def test_failed_delivery_is_recorded(sessions: async_sessionmaker[AsyncSession]) -> None:
    sender = SecureSender(FakeWhapi(fail=True), AlertService(sessions))

    assert await sender.send("27825550001", "hello", path="ai") is None
    assert await _events(sessions) == ["OUTBOUND_ATTEMPT", "OUTBOUND_FAILURE"]

"""WhatsApp transport via the Whapi gateway.

* ``InboundMessage`` – normalised view of one webhook delivery.
* ``WhapiClient`` – raw outbound calls (text / interactive / image).
* ``SecureSender`` – the only path user-facing replies take; it keeps a
  forensic trail and refuses to deliver a user conversation to the
  operator number.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from loguru import logger

from mreverything.geo.primitives import GeoPoint
from mreverything.observability.alerts import AlertService

_SUFFIXES = ("@s.whatsapp.net", "@c.us")

# reply paths allowed to reach the operator number from someone else's message
ADMIN_SAFE_PATHS = frozenset({"admin_cmd", "error_recovery", "maintenance", "admin_stats", "admin_diag", "fallback"})


class SecurityViolation(RuntimeError):
    """Raised when a user-originated reply is addressed to the operator number."""


def normalize_sender(raw: str | None) -> str:
    value = (raw or "").strip()
    for suffix in _SUFFIXES:
        value = value.replace(suffix, "")
    return value


# ── inbound ───────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class InboundMessage:
    raw_from: str
    sender: str
    kind: str  # text / image / interactive / location
    text: str = ""
    media_url: str | None = None
    location: GeoPoint | None = None

    @classmethod
    def from_webhook(cls, payload: dict[str, Any]) -> InboundMessage | None:
        """First message of a Whapi delivery, or ``None`` when there is nothing to answer."""
        messages = payload.get("messages") or []
        if not messages or not isinstance(messages[0], dict):
            return None
        msg = messages[0]
        if msg.get("from_me"):
            return None

        raw_from = str(msg.get("from") or msg.get("chat_id") or "")
        sender = normalize_sender(raw_from)
        if not sender:
            return None

        kind = msg.get("type") or "text"
        text = ""
        media_url = None
        location = None
        if kind == "text":
            text = (msg.get("text") or {}).get("body") or msg.get("body") or ""
        elif kind == "image":
            image = msg.get("image") or {}
            text = msg.get("caption") or image.get("caption") or "[Image]"
            media_url = image.get("link")
        elif kind == "interactive":
            interactive = msg.get("interactive") or {}
            button = interactive.get("button_reply") or {}
            listed = interactive.get("list_reply") or {}
            text = button.get("id") or listed.get("id") or button.get("title") or ""
        elif kind == "location":
            loc = msg.get("location") or {}
            try:
                location = GeoPoint(float(loc["latitude"]), float(loc["longitude"]))
            except (KeyError, TypeError, ValueError):
                location = None
            text = loc.get("address") or loc.get("name") or ""

        return cls(
            raw_from=raw_from,
            sender=sender,
            kind=kind,
            text=str(text or ""),
            media_url=media_url,
            location=location,
        )


# ── outbound ──────────────────────────────────────────────────────────────


class MessageGateway(Protocol):
    async def send_text(self, to: str, body: str) -> str | None: ...

    async def send_interactive(
        self, to: str, body: str, buttons: list[dict[str, str]], image: str | None = None,
    ) -> str | None: ...

    async def send_image(self, to: str, url: str, caption: str = "") -> str | None: ...


class WhapiClient:
    def __init__(
        self,
        token: str,
        base_url: str = "https://gate.whapi.cloud",
        timeout: float = 10.0,
        retries: int = 2,
        backoff_base: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._retries = retries
        self._backoff_base = backoff_base
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            transport=transport,
        )

    async def _post(self, path: str, payload: dict[str, Any]) -> str | None:
        attempts = self._retries + 1
        for attempt in range(1, attempts + 1):
            try:
                resp = await self._client.post(path, json=payload)
                if resp.is_success:
                    data = resp.json()
                    return data.get("id") or (data.get("message") or {}).get("id")
                logger.warning(f"Whapi: {path} -> HTTP {resp.status_code}: {resp.text[:100]}")
                if resp.status_code < 500 and resp.status_code != 429:
                    return None
            except httpx.HTTPError as exc:
                logger.warning(f"Whapi: {path} attempt {attempt}/{attempts} failed: {exc}")
            if attempt < attempts:
                await asyncio.sleep(self._backoff_base * 2 ** (attempt - 1))
        logger.error(f"Whapi: giving up on {path} after {attempts} attempts")
        return None

    async def send_text(self, to: str, body: str) -> str | None:
        return await self._post("/messages/text", {"to": normalize_sender(to), "body": body})

    async def send_interactive(
        self, to: str, body: str, buttons: list[dict[str, str]], image: str | None = None,
    ) -> str | None:
        payload: dict[str, Any] = {
            "to": normalize_sender(to),
            "type": "button",
            "body": {"text": body},
            "action": {
                "buttons": [
                    {"type": "reply", "reply": {"id": b["id"], "title": b["title"][:20]}} for b in buttons
                ]
            },
        }
        if image:
            payload["header"] = {"type": "image", "image": {"link": image}}
        return await self._post("/messages/interactive", payload)

    async def send_image(self, to: str, url: str, caption: str = "") -> str | None:
        return await self._post("/messages/image", {"to": normalize_sender(to), "media": url, "caption": caption})

    async def health(self) -> bool:
        try:
            resp = await self._client.get("/health")
        except httpx.HTTPError as exc:
            logger.warning(f"Whapi: health probe failed: {exc}")
            return False
        return resp.is_success

    async def aclose(self) -> None:
        await self._client.aclose()


class SecureSender:
    def __init__(self, gateway: MessageGateway, alerts: AlertService, admin_phone: str = "") -> None:
        self._gateway = gateway
        self._alerts = alerts
        self._admin_phone = normalize_sender(admin_phone)

    def is_admin(self, phone: str) -> bool:
        return bool(self._admin_phone) and normalize_sender(phone) == self._admin_phone

    def check_route(self, to: str, incoming_from: str, path: str) -> None:
        if self.is_admin(to) and to != incoming_from and path not in ADMIN_SAFE_PATHS:
            raise SecurityViolation(f"user message routed to admin (target={to}, path={path})")

    async def send(
        self,
        to: str,
        text: str,
        *,
        path: str,
        incoming_from: str = "",
        buttons: list[dict[str, str]] | None = None,
        image: str | None = None,
    ) -> str | None:
        clean_to = normalize_sender(to)
        incoming = normalize_sender(incoming_from)
        kind = "interactive" if buttons else ("image" if image else "text")
        await self._alerts.forensic("OUTBOUND_ATTEMPT", clean_to, path, {"type": kind, "incoming_from": incoming})

        try:
            self.check_route(clean_to, incoming, path)
        except SecurityViolation:
            logger.error(f"Sender: SECURITY_VIOLATION target={clean_to} path={path}")
            await self._alerts.forensic("SECURITY_VIOLATION", clean_to, path, {"incoming_from": incoming})
            raise

        if buttons:
            msg_id = await self._gateway.send_interactive(clean_to, text, buttons, image=image)
        elif image:
            msg_id = await self._gateway.send_image(clean_to, image, text)
        else:
            msg_id = await self._gateway.send_text(clean_to, text)

        outcome = "OUTBOUND_SUCCESS" if msg_id else "OUTBOUND_FAILURE"
        await self._alerts.forensic(outcome, clean_to, path, {"msg_id": msg_id, "type": kind})
        return msg_id

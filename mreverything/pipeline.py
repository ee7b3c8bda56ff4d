"""Inbound message pipeline: webhook payload in, one WhatsApp reply out.

Order of business for each message:

1. normalise the sender and load (or create) the user;
2. record the raw inbound event and the chat turn;
3. decide the intents – system conditions first (maintenance, rate limit,
   operator commands, shared location), otherwise the intent resolver
   plus greeting overrides for new and returning users;
4. route through the mirage registry and send the joined reply.

Any unexpected failure ends in an error alert and a short apology to the
sender, never in an exception escaping to the webhook.
"""

from __future__ import annotations

import json
import time
from datetime import UTC, datetime, timedelta
from typing import Any

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mreverything.brain.fallback import GREETINGS
from mreverything.brain.resolver import IntentResolver
from mreverything.brain.types import Intent, IntentResult
from mreverything.channels.whatsapp import InboundMessage
from mreverything.geo.primitives import GeoPoint
from mreverything.mirages.context import MirageContext, MirageServices
from mreverything.mirages.router import MirageRouter
from mreverything.settings import MrEverythingSettings
from mreverything.storage.models import AlertSeverity, User
from mreverything.storage.repository import ChatRepo, SystemConfigRepo, UserRepo

APOLOGY = "⚠️ Mr Everything is having a moment. Jules is notified! ✨"

NEW_USER_WINDOW = timedelta(seconds=60)
RETURNING_AFTER = timedelta(hours=24)

# reply path for intents decided by the pipeline itself
_SYSTEM_PATHS = {
    Intent.MAINTENANCE: "maintenance",
    Intent.RATE_LIMITED: "rate_limited",
    Intent.ADMIN_DIAG: "admin_diag",
    Intent.ADMIN_STATS: "admin_stats",
    Intent.LOCATION_SHARED: "location",
}

_ADMIN_COMMANDS = {"!diag": Intent.ADMIN_DIAG, "!stats": Intent.ADMIN_STATS}


def _aware(ts: datetime | None) -> datetime | None:
    if ts is None:
        return None
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=UTC)


def _system(intent: Intent) -> list[IntentResult]:
    return [IntentResult(intent=intent.value, confidence=1.0)]


def reply_path(intents: list[IntentResult]) -> str:
    first = Intent.parse(intents[0].intent) if intents else Intent.HELP
    if first in _SYSTEM_PATHS:
        return _SYSTEM_PATHS[first]
    return "fallback" if first is Intent.HELP else "ai"


class MessagePipeline:
    def __init__(
        self,
        settings: MrEverythingSettings,
        sessions: async_sessionmaker[AsyncSession],
        resolver: IntentResolver,
        router: MirageRouter,
        services: MirageServices,
    ) -> None:
        self._settings = settings
        self._sessions = sessions
        self._resolver = resolver
        self._router = router
        self._services = services

    async def handle(self, payload: dict[str, Any]) -> str | None:
        """Process one webhook delivery; returns the reply sent, if any."""
        msg = InboundMessage.from_webhook(payload)
        if msg is None:
            logger.debug("Pipeline: nothing to answer in delivery")
            return None

        started = time.monotonic()
        try:
            reply, path = await self._process(msg)
        except Exception as exc:
            logger.exception(f"Pipeline: processing message from {msg.sender} failed: {exc}")
            await self._recover(msg, payload, exc)
            return None

        self._services.background.spawn(
            self._services.alerts.raise_alert(
                AlertSeverity.INFO,
                "performance",
                "Request processed",
                {"duration_ms": int((time.monotonic() - started) * 1000), "user_phone": msg.sender, "path": path},
            ),
            name="perf-alert",
        )
        return reply

    async def _process(self, msg: InboundMessage) -> tuple[str | None, str]:
        now = datetime.now(tz=UTC)
        logger.info(f"Pipeline: {msg.kind} from {msg.sender}: {msg.text[:80]!r}")
        self._services.background.spawn(
            self._services.alerts.forensic("INBOUND_RAW", msg.sender, "none", {"text": msg.text, "type": msg.kind}),
            name="forensic-inbound",
        )

        async with self._sessions() as s:
            user, created = await UserRepo(s).get_or_create(msg.sender)
            user_id = user.id
            previous_active = _aware(user.last_active)
            user.last_active = now
            if msg.location is not None:
                user.last_lat, user.last_lng = msg.location.lat, msg.location.lng
                user.last_location_at = now
            await s.commit()

            memory = await self._memory(s, user, created, previous_active, now)
            maintenance = (await SystemConfigRepo(s).get("maintenance_mode") or "").lower() == "true"
        await self._save_chat(user_id, "user", msg.text)

        # no connection is held while the classifiers race
        intents = await self._decide(msg, memory, previous_active, now, maintenance)
        path = reply_path(intents)
        logger.info(f"Pipeline: intents {[i.intent for i in intents]} via {path}")

        async with self._sessions() as s:
            user = await s.get(User, user_id)
            if user is None:
                raise LookupError(f"user vanished: {user_id}")
            ctx = MirageContext(
                user=user,
                text=msg.text,
                session=s,
                services=self._services,
                pickup=self._pickup(user, now),
                memory=memory,
                raw_from=msg.raw_from,
            )
            reply = await self._router.route(ctx, intents)

        if reply:
            await self._services.sender.send(msg.sender, reply, path=path, incoming_from=msg.raw_from)
            await self._save_chat(user_id, "assistant", reply)
        else:
            logger.info(f"Pipeline: no reply for {msg.sender}")
        return reply, path

    async def _decide(
        self,
        msg: InboundMessage,
        memory: dict[str, Any],
        previous_active: datetime | None,
        now: datetime,
        maintenance: bool,
    ) -> list[IntentResult]:
        if maintenance:
            return _system(Intent.MAINTENANCE)

        is_admin = self._services.sender.is_admin(msg.sender)
        rate_window = timedelta(milliseconds=self._settings.rate_limit_ms)
        if not is_admin and previous_active is not None and now - previous_active < rate_window:
            return _system(Intent.RATE_LIMITED)

        command = msg.text.strip().lower()
        if is_admin and command in _ADMIN_COMMANDS:
            return _system(_ADMIN_COMMANDS[command])

        if msg.kind == "location" and msg.location is not None:
            return _system(Intent.LOCATION_SHARED)

        intents = await self._resolver.resolve(msg.text, memory)
        self._services.background.spawn(
            self._services.alerts.forensic(
                "INTENT_RESULT", msg.sender, intents[0].intent, {"intents": [i.to_dict() for i in intents]}
            ),
            name="forensic-intents",
        )

        if command in GREETINGS:
            if memory["is_new"]:
                return [IntentResult(intent=Intent.ONBOARDING.value, confidence=1.0)]
            if memory["is_returning"]:
                return _system(Intent.RETURNING_USER)
        return intents

    async def _memory(
        self,
        s: AsyncSession,
        user: User,
        created: bool,
        previous_active: datetime | None,
        now: datetime,
    ) -> dict[str, Any]:
        history = await ChatRepo(s).recent(user.id)
        created_at = _aware(user.created_at) or now
        is_new = created or now - created_at < NEW_USER_WINDOW
        return {
            "history": [{"role": m.role, "content": m.content} for m in history],
            "preferred_name": user.preferred_name,
            "is_new": is_new,
            "is_returning": not is_new and previous_active is not None and now - previous_active > RETURNING_AFTER,
        }

    def _pickup(self, user: User, now: datetime) -> GeoPoint | None:
        shared_at = _aware(user.last_location_at)
        if user.last_lat is None or user.last_lng is None or shared_at is None:
            return None
        if now - shared_at > timedelta(minutes=self._settings.pickup_location_ttl_minutes):
            return None
        return GeoPoint(user.last_lat, user.last_lng)

    async def _save_chat(self, user_id: str, role: str, content: str) -> None:
        try:
            async with self._sessions() as s:
                await ChatRepo(s).append(user_id, role, content)
                await s.commit()
        except Exception as exc:
            logger.warning(f"Pipeline: could not save {role} chat turn: {exc}")

    async def _recover(self, msg: InboundMessage, payload: dict[str, Any], exc: Exception) -> None:
        alerts = self._services.alerts
        await alerts.raise_alert(
            AlertSeverity.ERROR,
            "pipeline",
            str(exc) or type(exc).__name__,
            {"body_summary": json.dumps(payload, default=str)[:500]},
        )
        try:
            await self._services.sender.send(msg.sender, APOLOGY, path="error_recovery", incoming_from=msg.raw_from)
        except Exception as send_exc:
            logger.error(f"Pipeline: apology to {msg.sender} failed: {send_exc}")

        sentry = self._services.sentry
        if sentry is None:
            return
        try:
            fault = await sentry.find_repeating_fault()
        except Exception as finder_exc:
            logger.warning(f"Pipeline: fault finder failed: {finder_exc}")
            return
        if fault is not None:
            self._services.background.spawn(sentry.diagnose(), name="sentry-diagnose")

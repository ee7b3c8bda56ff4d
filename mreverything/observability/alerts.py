"""Durable telemetry: system alerts, forensic trail, operator notification.

Telemetry writes use their own short-lived sessions so they survive a
rolled-back request, and they never raise: a failure is logged and dropped.
"""

from __future__ import annotations

from typing import Any, Protocol

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mreverything.storage.models import AlertSeverity, ForensicLog, SystemAlert
from mreverything.storage.repository import AlertRepo, ForensicRepo

_NOTIFY_ADMIN = {AlertSeverity.ERROR, AlertSeverity.CRITICAL}


class TextSender(Protocol):
    async def send_text(self, to: str, body: str) -> str | None: ...


class AlertService:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        gateway: TextSender | None = None,
        admin_phone: str = "",
    ) -> None:
        self._sessions = sessions
        self._gateway = gateway
        self._admin_phone = admin_phone

    async def raise_alert(
        self,
        severity: AlertSeverity | str,
        source: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        severity = AlertSeverity(severity)
        try:
            async with self._sessions() as s:
                await AlertRepo(s).append(
                    SystemAlert(severity=severity, source=source, message=message[:2000], context=context or {})
                )
                await s.commit()
        except Exception as exc:
            logger.error(f"Alert: could not persist {severity.value}/{source}: {exc}")

        if severity in _NOTIFY_ADMIN:
            await self.notify_admin(f"Error in {source}: {message}")

    async def notify_admin(self, text: str) -> None:
        """Send *text* to the operator number straight through the gateway."""
        if not self._admin_phone or self._gateway is None:
            return
        try:
            await self._gateway.send_text(self._admin_phone, f"🚨 *MR EVERYTHING ALERT*\n\n{text[:900]}")
        except Exception as exc:
            logger.error(f"Alert: admin notification failed: {exc}")

    async def forensic(
        self,
        event_type: str,
        user_phone: str,
        intent: str = "none",
        context: dict[str, Any] | None = None,
    ) -> None:
        try:
            async with self._sessions() as s:
                await ForensicRepo(s).append(
                    ForensicLog(event_type=event_type, user_phone=user_phone, intent=intent, context=context or {})
                )
                await s.commit()
        except Exception as exc:
            logger.warning(f"Forensic: could not record {event_type}: {exc}")

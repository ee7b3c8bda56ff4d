"""Persisted, self-expiring circuit breaker for an upstream LLM provider.

State lives in ``system_config`` under ``<provider>_circuit_breaker`` as
``open``/``closed``.  An open breaker counts as closed once the cool-down
has elapsed since its ``updated_at``; nothing has to close it explicitly.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mreverything.storage.repository import SystemConfigRepo

OPEN = "open"
CLOSED = "closed"


def _aware(ts: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=UTC)


class CircuitBreaker:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        provider: str = "openai",
        cooldown: timedelta = timedelta(minutes=30),
    ) -> None:
        self._sessions = sessions
        self.provider = provider
        self.cooldown = cooldown

    @property
    def key(self) -> str:
        return f"{self.provider}_circuit_breaker"

    async def is_open(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(tz=UTC)
        async with self._sessions() as s:
            row = await SystemConfigRepo(s).get_row(self.key)
        if row is None or row.value != OPEN:
            return False
        return now - _aware(row.updated_at) < self.cooldown

    async def trip(self) -> None:
        async with self._sessions() as s:
            await SystemConfigRepo(s).set(self.key, OPEN, updated_by="brain")
            await s.commit()
        logger.warning(f"Brain: circuit breaker for {self.provider} opened for {self.cooldown}")

    async def reset(self) -> None:
        async with self._sessions() as s:
            await SystemConfigRepo(s).set(self.key, CLOSED, updated_by="brain")
            await s.commit()

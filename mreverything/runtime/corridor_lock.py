"""Per-corridor dispatch lock backed by Redis.

Ensures that one corridor is dispatched by at most one worker at a time,
even across multiple service instances.  Without Redis (or if Redis
is unreachable) an in-process lock serialises dispatch per corridor.
A lock held by another instance is a timeout, not a reason to fall back.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from loguru import logger
from redis.asyncio import Redis
from redis.exceptions import RedisError


class CorridorLockTimeout(RuntimeError):
    """Raised when lock acquisition times out."""


class CorridorLock:
    def __init__(self, redis: Redis | None = None, ttl_seconds: int = 30) -> None:
        self._redis = redis
        self._ttl = ttl_seconds
        self._local: dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def acquire(self, corridor_id: str, timeout: float = 5.0) -> AsyncIterator[None]:
        if self._redis is not None:
            lock_key = f"mreverything:dispatch:{corridor_id}"
            rlock = self._redis.lock(lock_key, timeout=self._ttl)
            try:
                acquired = await rlock.acquire(blocking=True, blocking_timeout=timeout)
            except RedisError as exc:
                logger.warning(f"Dispatch lock: redis unavailable, using local lock: {exc}")
            else:
                if not acquired:
                    raise CorridorLockTimeout(f"dispatch lock held elsewhere: {corridor_id}")
                try:
                    yield
                finally:
                    try:
                        await rlock.release()
                    except RedisError as exc:
                        logger.warning(f"Dispatch lock: release failed for {corridor_id}: {exc}")
                return

        # Fallback to in-process lock (single-instance scenario)
        local = self._local.setdefault(corridor_id, asyncio.Lock())
        try:
            await asyncio.wait_for(local.acquire(), timeout=timeout)
        except TimeoutError as exc:
            raise CorridorLockTimeout(f"dispatch lock timeout: {corridor_id}") from exc
        try:
            yield
        finally:
            local.release()

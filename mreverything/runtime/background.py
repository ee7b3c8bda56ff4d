"""Tracked background work with bounded concurrency and a drain hook.

Used for everything that must not hold up a webhook reply: telemetry
writes, passenger notifications, dispatcher triggers, message processing.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

from loguru import logger


class BackgroundTasks:
    def __init__(self, max_concurrency: int = 32) -> None:
        self._sem = asyncio.Semaphore(max_concurrency)
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str = "") -> asyncio.Task[Any] | None:
        if self._closed:
            logger.warning(f"Background: refusing '{name or coro.__qualname__}', shutting down")
            coro.close()
            return None
        task = asyncio.create_task(self._run(coro, name or coro.__qualname__), name=name or None)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, coro: Coroutine[Any, Any, Any], name: str) -> Any:
        async with self._sem:
            try:
                return await coro
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(f"Background: task '{name}' failed: {exc}", exc_info=True)
                return None

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight tasks, including ones spawned while draining."""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._tasks:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                break
            await asyncio.wait(set(self._tasks), timeout=remaining)

    async def shutdown(self, timeout: float = 10.0) -> None:
        self._closed = True
        await self.drain(timeout)
        leftovers = list(self._tasks)
        if leftovers:
            logger.warning(f"Background: cancelling {len(leftovers)} task(s) still running at shutdown")
            for task in leftovers:
                task.cancel()
            await asyncio.gather(*leftovers, return_exceptions=True)

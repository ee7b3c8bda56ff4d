"""Periodic dispatch loop: every poll interval, consult the sentry and run one dispatch cycle."""

from __future__ import annotations

import asyncio

from loguru import logger

from mreverything.observability.sentry import Sentry
from mreverything.taxi.dispatcher import DispatchedTrip, TaxiDispatcher


class DispatchScheduler:
    def __init__(self, dispatcher: TaxiDispatcher, sentry: Sentry | None = None, poll_seconds: float = 60.0) -> None:
        self._dispatcher = dispatcher
        self._sentry = sentry
        self._poll_seconds = poll_seconds
        self._running = False
        self._wake = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._running

    async def tick(self) -> list[DispatchedTrip]:
        """One pass; failures are logged so the loop keeps going."""
        if self._sentry is not None:
            try:
                wisdom = await self._sentry.evolve()
                if wisdom.active:
                    logger.info(f"Scheduler: wisdom {wisdom.mode} {wisdom.preemptive_actions}")
            except Exception as exc:
                logger.warning(f"Scheduler: sentry consultation failed: {exc}")

        try:
            trips = await self._dispatcher.run_cycle()
        except Exception as exc:
            logger.error(f"Scheduler: dispatch cycle failed: {exc}", exc_info=True)
            return []
        if trips:
            logger.info(f"Scheduler: dispatched {len(trips)} trip(s)")
        return trips

    async def run_forever(self) -> None:
        self._running = True
        self._wake.clear()
        logger.info(f"Scheduler: dispatching every {self._poll_seconds}s")
        while self._running:
            await self.tick()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self._poll_seconds)
            except TimeoutError:
                pass

    async def stop(self) -> None:
        self._running = False
        self._wake.set()
        await asyncio.sleep(0)

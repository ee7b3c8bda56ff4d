import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from mreverything.runtime.background import BackgroundTasks
from mreverything.runtime.corridor_lock import CorridorLock, CorridorLockTimeout
from mreverything.runtime.scheduler import DispatchScheduler


# ── background tasks ──


async def test_drain_waits_for_work_spawned_while_draining() -> None:
    bg = BackgroundTasks(4)
    done: list[str] = []

    async def child() -> None:
        await asyncio.sleep(0.01)
        done.append("child")

    async def parent() -> None:
        await asyncio.sleep(0.01)
        bg.spawn(child(), name="child")
        done.append("parent")

    bg.spawn(parent(), name="parent")
    await bg.drain(timeout=2)

    assert done == ["parent", "child"]
    assert bg.pending == 0


async def test_failing_task_is_contained() -> None:
    bg = BackgroundTasks()

    async def boom() -> None:
        raise RuntimeError("boom")

    task = bg.spawn(boom(), name="boom")
    await bg.drain(timeout=1)

    assert task is not None and task.result() is None


async def test_concurrency_is_bounded() -> None:
    bg = BackgroundTasks(2)
    running = 0
    peak = 0

    async def work() -> None:
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1

    for _ in range(6):
        bg.spawn(work())
    await bg.drain(timeout=2)

    assert peak == 2


async def test_shutdown_cancels_stragglers_and_refuses_new_work() -> None:
    bg = BackgroundTasks()
    task = bg.spawn(asyncio.sleep(10), name="sleeper")

    await bg.shutdown(timeout=0.05)

    assert task is not None and task.cancelled()
    assert bg.spawn(asyncio.sleep(0), name="late") is None


# ── corridor lock ──


async def test_local_lock_serialises_a_corridor() -> None:
    locks = CorridorLock()

    async with locks.acquire("c1", timeout=0.5):
        with pytest.raises(CorridorLockTimeout):
            async with locks.acquire("c1", timeout=0.05):
                pass
        # other corridors are independent
        async with locks.acquire("c2", timeout=0.05):
            pass

    async with locks.acquire("c1", timeout=0.05):
        pass


class _RedisLock:
    def __init__(self, outcome: bool | Exception) -> None:
        self.outcome = outcome
        self.released = False

    async def acquire(self, blocking: bool = True, blocking_timeout: float | None = None) -> bool:
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome

    async def release(self) -> None:
        self.released = True


class _Redis:
    def __init__(self, outcome: bool | Exception) -> None:
        self.held = _RedisLock(outcome)

    def lock(self, name: str, timeout: int | None = None) -> _RedisLock:
        return self.held


async def test_redis_lock_is_released_after_use() -> None:
    redis = _Redis(True)

    async with CorridorLock(redis).acquire("c1", timeout=0.05):
        pass

    assert redis.held.released


async def test_lock_held_by_another_instance_times_out() -> None:
    entered = False

    with pytest.raises(CorridorLockTimeout):
        async with CorridorLock(_Redis(False)).acquire("c1", timeout=0.05):
            entered = True

    assert not entered


async def test_unreachable_redis_falls_back_to_local_lock() -> None:
    locks = CorridorLock(_Redis(RedisConnectionError("refused")))

    async with locks.acquire("c1", timeout=0.05):
        with pytest.raises(CorridorLockTimeout):
            async with locks.acquire("c1", timeout=0.05):
                pass


# ── scheduler ──


class _Dispatcher:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.cycles = 0

    async def run_cycle(self) -> list:
        self.cycles += 1
        if self.fail:
            raise RuntimeError("database gone")
        return []


class _Sentry:
    def __init__(self) -> None:
        self.evolved = 0

    async def evolve(self):
        self.evolved += 1
        raise RuntimeError("no telemetry")


async def test_tick_survives_failures() -> None:
    dispatcher = _Dispatcher(fail=True)
    sentry = _Sentry()
    scheduler = DispatchScheduler(dispatcher, sentry)

    assert await scheduler.tick() == []
    assert (dispatcher.cycles, sentry.evolved) == (1, 1)


async def test_run_forever_stops_promptly() -> None:
    dispatcher = _Dispatcher()
    scheduler = DispatchScheduler(dispatcher, poll_seconds=60)

    loop = asyncio.create_task(scheduler.run_forever())
    while dispatcher.cycles == 0:
        await asyncio.sleep(0.01)
    assert scheduler.running

    await scheduler.stop()
    await asyncio.wait_for(loop, timeout=1)

    assert not scheduler.running
    assert dispatcher.cycles == 1

import asyncio
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mreverything.brain.circuit_breaker import CircuitBreaker
from mreverything.brain.providers import ProviderError, ProviderRateLimited
from mreverything.brain.resolver import IntentResolver, build_prompt
from mreverything.storage.repository import SystemConfigRepo

AMBIGUOUS = "can you sort me out with something nice for tonight"


class _Scripted:
    def __init__(self, name: str, reply: str | None = None, exc: Exception | None = None, delay: float = 0.0) -> None:
        self.name = name
        self.reply = reply
        self.exc = exc
        self.delay = delay
        self.calls = 0

    async def classify(self, prompt: str) -> str:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.exc is not None:
            raise self.exc
        assert self.reply is not None
        return self.reply


def _resolver(sessions, primary, secondary, **kw) -> IntentResolver:
    kw.setdefault("stagger", 0.0)
    return IntentResolver(primary, secondary, CircuitBreaker(sessions), **kw)


def test_prompt_lists_intents_and_context() -> None:
    prompt = build_prompt("taxi to Sandton", {"is_new": True})
    assert '"taxi to Sandton"' in prompt
    assert "taxi_track" in prompt
    assert "admin_diag" not in prompt
    assert '"is_new": true' in prompt


async def test_fast_path_skips_llms(sessions: async_sessionmaker[AsyncSession]) -> None:
    primary = _Scripted("openai", '{"intents": [{"intent": "food"}]}')
    result = await _resolver(sessions, primary, None).resolve("hi")
    assert [r.intent for r in result] == ["greeting"]
    assert primary.calls == 0


async def test_primary_answer_wins(sessions: async_sessionmaker[AsyncSession]) -> None:
    primary = _Scripted("openai", '{"intents": [{"intent": "events", "confidence": 0.8}]}')
    secondary = _Scripted("gemini", '[{"intent": "food", "confidence": 0.9}]', delay=0.2)
    result = await _resolver(sessions, primary, secondary, stagger=0.1).resolve(AMBIGUOUS)
    assert result[0].intent == "events"


async def test_secondary_answers_when_primary_fails(sessions: async_sessionmaker[AsyncSession]) -> None:
    primary = _Scripted("openai", exc=ProviderError("boom"))
    secondary = _Scripted("gemini", 'Here:\n```json\n[{"intent": "events", "confidence": 0.7}]\n```')
    result = await _resolver(sessions, primary, secondary).resolve(AMBIGUOUS)
    assert result[0].intent == "events"


async def test_help_reply_is_not_an_answer(sessions: async_sessionmaker[AsyncSession]) -> None:
    primary = _Scripted("openai", '{"intents": [{"intent": "help", "confidence": 0.9}]}')
    secondary = _Scripted("gemini", '[{"intent": "exchange_rate", "confidence": 0.6}]', delay=0.05)
    result = await _resolver(sessions, primary, secondary).resolve(AMBIGUOUS)
    assert result[0].intent == "exchange_rate"


async def test_both_failing_returns_fallback(sessions: async_sessionmaker[AsyncSession]) -> None:
    primary = _Scripted("openai", exc=ProviderError("down"))
    secondary = _Scripted("gemini", "not json at all")
    result = await _resolver(sessions, primary, secondary).resolve(AMBIGUOUS)
    assert result
    assert result[0].intent == "conversational"


async def test_no_classifiers_configured_returns_fallback(sessions: async_sessionmaker[AsyncSession]) -> None:
    result = await _resolver(sessions, None, None).resolve("ok")
    assert [r.intent for r in result] == ["help"]


async def test_race_timeout_cancels_slow_classifiers(sessions: async_sessionmaker[AsyncSession]) -> None:
    slow = _Scripted("openai", '[{"intent": "events"}]', delay=5.0)
    slower = _Scripted("gemini", '[{"intent": "events"}]', delay=5.0)
    result = await _resolver(sessions, slow, slower, race_timeout=0.1).resolve(AMBIGUOUS)
    assert result[0].intent == "conversational"


async def test_rate_limit_opens_breaker_and_skips_primary(sessions: async_sessionmaker[AsyncSession]) -> None:
    primary = _Scripted("openai", exc=ProviderRateLimited("429"))
    secondary = _Scripted("gemini", exc=ProviderError("down"))
    resolver = _resolver(sessions, primary, secondary)

    await resolver.resolve(AMBIGUOUS)
    assert primary.calls == 1
    assert await CircuitBreaker(sessions).is_open()

    result = await resolver.resolve(AMBIGUOUS)
    assert primary.calls == 1
    assert secondary.calls == 2
    assert result[0].intent == "conversational"


async def test_breaker_expires_after_cooldown(sessions: async_sessionmaker[AsyncSession]) -> None:
    breaker = CircuitBreaker(sessions, cooldown=timedelta(minutes=30))
    await breaker.trip()
    now = datetime.now(tz=UTC)

    assert await breaker.is_open(now=now + timedelta(minutes=29))
    assert not await breaker.is_open(now=now + timedelta(minutes=31))

    await breaker.reset()
    assert not await breaker.is_open()
    async with sessions() as s:
        assert await SystemConfigRepo(s).get("openai_circuit_breaker") == "closed"

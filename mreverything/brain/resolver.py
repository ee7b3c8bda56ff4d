"""Intent resolution: fast path, circuit breaker, staggered LLM race, fallback.

``IntentResolver.resolve`` never raises and always returns a non-empty,
ranked list of ``IntentResult``.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from loguru import logger

from mreverything.brain.circuit_breaker import CircuitBreaker
from mreverything.brain.fallback import parse_intents
from mreverything.brain.parsing import parse_intent_reply
from mreverything.brain.providers import IntentClassifier, ProviderRateLimited
from mreverything.brain.types import CLASSIFIABLE_INTENTS, Intent, IntentResult

PRIMARY_SYSTEM_PROMPT = (
    "You are a South African concierge. Detect intents and reply with a JSON object "
    '{"intents": [...]} ordered by relevance.'
)


class NonAnswer(RuntimeError):
    """A classifier replied, but only with the generic ``help`` sentinel."""


def build_prompt(text: str, memory: dict[str, Any] | None = None) -> str:
    intents = ", ".join(i.value for i in CLASSIFIABLE_INTENTS)
    context = json.dumps(memory or {}, default=str, ensure_ascii=False)
    return (
        f'Analyze this WhatsApp message from a user in South Africa: "{text}".\n'
        f"User context: {context}\n"
        f"Available intents (select all that apply): {intents}.\n"
        "For taxi requests put the destination in extracted_data.location.\n"
        'Return a JSON array of objects: [{"intent": "string", "confidence": 0-1, "extracted_data": {}}]\n'
        "Respond ONLY with valid JSON."
    )


class IntentResolver:
    def __init__(
        self,
        primary: IntentClassifier | None,
        secondary: IntentClassifier | None,
        breaker: CircuitBreaker,
        *,
        race_timeout: float = 8.0,
        stagger: float = 0.5,
        fast_path_confidence: float = 0.9,
    ) -> None:
        self._primary = primary
        self._secondary = secondary
        self._breaker = breaker
        self._race_timeout = race_timeout
        self._stagger = stagger
        self._fast_path_confidence = fast_path_confidence

    async def resolve(self, text: str, memory: dict[str, Any] | None = None) -> list[IntentResult]:
        fast = parse_intents(text)
        if fast[0].confidence >= self._fast_path_confidence:
            logger.info(f"Brain: fast match {fast[0].intent}")
            return fast

        try:
            winner = await self._race(build_prompt(text, memory))
        except Exception as exc:
            logger.error(f"Brain: race failed unexpectedly: {exc}", exc_info=True)
            winner = None

        if winner:
            return winner
        logger.info("Brain: using fallback parser")
        return fast

    async def _primary_skipped(self) -> bool:
        try:
            return await self._breaker.is_open()
        except Exception as exc:
            logger.warning(f"Brain: breaker state unreadable, assuming closed: {exc}")
            return False

    async def _race(self, prompt: str) -> list[IntentResult] | None:
        tasks: list[asyncio.Task[list[IntentResult]]] = []
        if self._primary is not None:
            if await self._primary_skipped():
                logger.info(f"Brain: skipping {self._primary.name}, circuit breaker open")
            else:
                tasks.append(asyncio.create_task(self._ask(self._primary, prompt, primary=True)))
        if self._secondary is not None:
            tasks.append(asyncio.create_task(self._ask(self._secondary, prompt, delay=self._stagger)))
        if not tasks:
            return None

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._race_timeout
        pending: set[asyncio.Task[list[IntentResult]]] = set(tasks)
        try:
            while pending:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    logger.warning(f"Brain: no classifier answered within {self._race_timeout}s")
                    return None
                done, pending = await asyncio.wait(pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    exc = task.exception()
                    if exc is None:
                        return task.result()
                    logger.warning(f"Brain: classifier failed: {type(exc).__name__}: {exc}")
            return None
        finally:
            for task in pending:
                task.cancel()
            # consume the losers so their late failures are not reported as unretrieved
            await asyncio.gather(*pending, return_exceptions=True)

    async def _ask(
        self, classifier: IntentClassifier, prompt: str, *, primary: bool = False, delay: float = 0.0,
    ) -> list[IntentResult]:
        if delay:
            await asyncio.sleep(delay)
        try:
            raw = await classifier.classify(prompt)
        except ProviderRateLimited:
            if primary:
                await self._breaker.trip()
            raise
        results = parse_intent_reply(raw)
        if results[0].intent == Intent.HELP.value:
            raise NonAnswer(f"{classifier.name} answered 'help'")
        logger.info(f"Brain: {classifier.name} answered {results[0].intent}")
        return results

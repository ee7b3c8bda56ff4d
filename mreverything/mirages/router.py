"""Routes a ranked intent list through the mirage registry."""

from __future__ import annotations

from loguru import logger

from mreverything.brain.types import Intent, IntentResult
from mreverything.mirages.context import MirageContext
from mreverything.mirages.registry import MirageRegistry

HANDLER_FAILURE = "⚠️ My magic hiccuped. Jules is looking into it! ✨"


class MirageRouter:
    def __init__(self, registry: MirageRegistry) -> None:
        self._registry = registry

    async def route(self, ctx: MirageContext, intents: list[IntentResult]) -> str | None:
        """Run every intent in order and join the replies; ``None`` when nobody answered."""
        routing = intents or [IntentResult(intent=Intent.HELP.value, confidence=0.0)]
        phone = ctx.user.phone
        parts: list[str] = []
        seen: set[Intent] = set()

        for result in routing:
            intent = Intent.parse(result.intent)
            if intent in seen:
                continue
            seen.add(intent)
            logger.info(f"Router: mirage {intent.value} for {phone}")
            handler = self._registry.handler_for(intent)
            try:
                reply = await handler(ctx.for_intent(result))
            except Exception as exc:
                logger.error(f"Router: mirage {intent.value} failed: {exc}", exc_info=True)
                reply = HANDLER_FAILURE
            if reply:
                parts.append(reply)

        return "\n\n".join(parts) or None

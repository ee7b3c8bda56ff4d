"""Closed intent → mirage table, built once at startup and injected into the router."""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType

from mreverything.brain.types import Intent
from mreverything.mirages.context import MirageHandler


class MirageRegistry:
    def __init__(self, handlers: Mapping[Intent, MirageHandler]) -> None:
        missing = [i.value for i in Intent if i not in handlers]
        if missing:
            raise ValueError(f"no mirage registered for: {', '.join(missing)}")
        self._handlers = MappingProxyType(dict(handlers))

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, intent: object) -> bool:
        return intent in self._handlers

    def handler_for(self, intent: Intent) -> MirageHandler:
        return self._handlers[intent]


def build_registry() -> MirageRegistry:
    from mreverything.mirages import admin, basic
    from mreverything.taxi.booking import handle_taxi
    from mreverything.taxi.tracking import handle_taxi_track

    handlers: dict[Intent, MirageHandler] = {intent: basic.canned(text) for intent, text in basic.CANNED.items()}
    handlers.update(basic.HANDLERS)
    handlers.update(admin.HANDLERS)
    handlers[Intent.TAXI] = handle_taxi
    handlers[Intent.TAXI_TRACK] = handle_taxi_track
    return MirageRegistry(handlers)

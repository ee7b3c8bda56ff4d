"""Defensive extraction of intent lists from raw LLM text."""

from __future__ import annotations

import json
import re
from typing import Any

from mreverything.brain.types import IntentResult

_FENCED = re.compile(r"```(?:json)?\s*(.*?)```", re.S | re.I)
_BRACKETED = re.compile(r"\[.*\]", re.S)


class MalformedIntentPayload(ValueError):
    """Raised when a classifier reply holds no usable intent list."""


def _as_items(obj: Any) -> list[Any] | None:
    if isinstance(obj, list):
        return obj
    if isinstance(obj, dict):
        if isinstance(obj.get("intents"), list):
            return obj["intents"]
        if "intent" in obj:
            return [obj]
    return None


def _try_json(candidate: str) -> list[Any] | None:
    try:
        return _as_items(json.loads(candidate))
    except (json.JSONDecodeError, TypeError):
        return None


def extract_intent_items(raw: str) -> list[Any]:
    """Pull the list of intent objects out of *raw*.

    Accepts, in order: the whole reply as JSON (array, ``{"intents": [...]}``
    or a single ``{"intent": ...}`` object), the body of a markdown fenced
    block, then the widest bracket-delimited span.
    """
    text = (raw or "").strip()
    if not text:
        raise MalformedIntentPayload("empty reply")

    candidates = [text]
    fenced = _FENCED.search(text)
    if fenced:
        candidates.append(fenced.group(1).strip())
    bracketed = _BRACKETED.search(text)
    if bracketed:
        candidates.append(bracketed.group(0))

    for candidate in candidates:
        items = _try_json(candidate)
        if items is not None:
            return items
    raise MalformedIntentPayload(f"no JSON intent array in reply: {text[:80]!r}")


def parse_intent_reply(raw: str) -> list[IntentResult]:
    """Extract and validate; entries without an intent label are dropped."""
    results = [r for r in (IntentResult.from_raw(item) for item in extract_intent_items(raw)) if r is not None]
    if not results:
        raise MalformedIntentPayload("intent list is empty")
    return results

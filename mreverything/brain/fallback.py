"""Deterministic keyword parser – the availability floor of intent resolution.

Rules are evaluated top to bottom and the first hit wins, so ordering is
significant: explicit greetings and button payloads first, taxi tracking
before generic taxi, cart actions before generic shopping.  ``parse_intents``
is pure and total.
"""

from __future__ import annotations

from mreverything.brain.types import ExtractedData, Intent, IntentResult

GREETINGS = frozenset({"hi", "hello", "hey", "start"})

CART_WORDS = ("add", "checkout", "cart")
JOIN_PUBLIC = "join_public"

# (intent, confidence, substrings) – any substring match fires the rule
_KEYWORD_RULES: tuple[tuple[Intent, float, tuple[str, ...]], ...] = (
    # taxi
    (Intent.TAXI_TRACK, 1.0, ("track taxi", "where is my ride", "track_taxi")),
    (Intent.TAXI, 0.9, ("taxi", "ride", "uber", "bolt")),
    # groups
    (Intent.CREATE_GROUP, 0.9, ("create group", "start stokvel")),
    (Intent.JOIN_GROUP, 0.9, ("join group", "join cart")),
    (Intent.VIEW_GROUP, 0.8, ("group summary", "who else")),
    (Intent.PANIC_BUTTON, 1.0, ("panic", "emergency", "help me now")),
    # services
    (
        Intent.SHOPPING,
        0.8,
        ("buy", "order", "get", "iphone", "samsung", "phone", "smartphone", "cellphone", "shop"),
    ),
    (Intent.FOOD, 0.8, ("kfc", "food", "hungry", "eat", "meal")),
    (Intent.ACCOMMODATION, 0.8, ("hotel", "stay", "book")),
    (Intent.FLIGHTS, 0.8, ("flight", "fly", "ticket")),
    (Intent.AIRTIME, 0.8, ("airtime", "data")),
    (Intent.ELECTRICITY, 0.8, ("electricity", "power", "eskom", "token")),
    (Intent.PHARMACY, 0.8, ("med", "pill", "pharmacy")),
    (Intent.GROCERY, 0.8, ("grocery", "milk", "bread")),
    # meta
    (Intent.PRICING, 0.8, ("price", "cost", "how much")),
    (Intent.TRACK_ORDER, 0.8, ("track", "where is my")),
    (Intent.COMPLAINTS, 0.8, ("wrong", "complain", "bad")),
    (Intent.REFUNDS, 0.8, ("refund", "money back")),
    # SA utilities
    (Intent.WEATHER, 0.8, ("weather", "rain")),
    (Intent.LOAD_SHEDDING, 0.8, ("load shedding", "loadshedding")),
    (Intent.FUEL_PRICE, 0.8, ("petrol", "diesel", "fuel")),
)


def _one(intent: Intent, confidence: float, data: ExtractedData | None = None) -> list[IntentResult]:
    return [IntentResult(intent=intent.value, confidence=confidence, extracted_data=data or {})]


def parse_intents(text: str | None) -> list[IntentResult]:
    t = (text or "").lower().strip()

    if t in GREETINGS:
        return _one(Intent.GREETING, 0.9)

    # direct action / button overrides
    if any(w in t for w in CART_WORDS):
        return _one(Intent.CART_ACTION, 1.0)
    if t == JOIN_PUBLIC:
        return _one(Intent.JOIN_GROUP, 1.0, {"code": "PUBLIC"})

    for intent, confidence, needles in _KEYWORD_RULES:
        if any(n in t for n in needles):
            return _one(intent, confidence)

    if len(t) > 3:
        return _one(Intent.CONVERSATIONAL, 0.3)
    return _one(Intent.HELP, 0.1)

"""Intent vocabulary and the per-message classification result."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum as PyEnum
from typing import Any, TypedDict


class Intent(str, PyEnum):
    # services
    SHOPPING = "shopping"
    FOOD = "food"
    ACCOMMODATION = "accommodation"
    FLIGHTS = "flights"
    FLIGHT_INTL = "flight_intl"
    CAR_RENTAL = "car_rental"
    BUSES = "buses"
    BUS_INTERCAPE = "bus_intercape"
    BUS_GREYHOUND = "bus_greyhound"
    AIRTIME = "airtime"
    ELECTRICITY = "electricity"
    PHARMACY = "pharmacy"
    GROCERY = "grocery"
    GROCERY_MEAT = "grocery_meat"
    GROCERY_VEG = "grocery_veg"
    CART_ACTION = "cart_action"
    TAXI = "taxi"
    TAXI_TRACK = "taxi_track"
    # groups
    CREATE_GROUP = "create_group"
    JOIN_GROUP = "join_group"
    VIEW_GROUP = "view_group"
    LEAVE_GROUP = "leave_group"
    PANIC_BUTTON = "panic_button"
    CHECK_IN = "check_in"
    # meta / info
    PRICING = "pricing"
    TRACK_ORDER = "track_order"
    COMPLAINTS = "complaints"
    FAQ = "faq"
    REFUNDS = "refunds"
    REFERRAL = "referral"
    LOYALTY = "loyalty"
    GIFT_VOUCHERS = "gift_vouchers"
    ABOUT_US = "about_us"
    CAREERS = "careers"
    # South African utilities
    WEATHER = "weather"
    LOAD_SHEDDING = "load_shedding"
    FUEL_PRICE = "fuel_price"
    EVENTS = "events"
    EXCHANGE_RATE = "exchange_rate"
    # conversation flow
    GREETING = "greeting"
    CONVERSATIONAL = "conversational"
    HELP = "help"
    MID_CONV_RESUME = "mid_conv_resume"
    ONBOARDING = "onboarding"
    RETURNING_USER = "returning_user"
    # edge cases
    UNKNOWN_INPUT = "unknown_input"
    DID_YOU_MEAN = "did_you_mean"
    CONFLICTING_INTENTS = "conflicting_intents"
    # system (never produced by the classifiers)
    MAINTENANCE = "maintenance"
    RATE_LIMITED = "rate_limited"
    LOCATION_SHARED = "location_shared"
    ADMIN_DIAG = "admin_diag"
    ADMIN_STATS = "admin_stats"

    @classmethod
    def parse(cls, value: str) -> Intent:
        """Map a classifier label onto the closed vocabulary; unknown labels become UNKNOWN_INPUT."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.UNKNOWN_INPUT


# Intents offered to the LLM classifiers; system intents are decided by the pipeline.
CLASSIFIABLE_INTENTS: tuple[Intent, ...] = tuple(
    i
    for i in Intent
    if i
    not in {
        Intent.MAINTENANCE,
        Intent.RATE_LIMITED,
        Intent.LOCATION_SHARED,
        Intent.ADMIN_DIAG,
        Intent.ADMIN_STATS,
        Intent.RETURNING_USER,
    }
)


class ExtractedData(TypedDict, total=False):
    """Structured hints a classifier may attach to an intent."""

    location: str  # free-text destination / place ("Sandton")
    product: str
    quantity: int
    code: str  # group-buy join code
    name: str
    group_id: str
    suggestion: str  # did_you_mean candidate
    primary: str  # conflicting_intents: the one to start with


EXTRACTED_KEYS: frozenset[str] = frozenset(ExtractedData.__annotations__)


def clean_extracted(raw: Any) -> ExtractedData:
    """Keep only known keys with scalar values."""
    if not isinstance(raw, dict):
        return {}
    out: dict[str, Any] = {}
    for key, value in raw.items():
        if key not in EXTRACTED_KEYS or value is None or value == "":
            continue
        if key == "quantity":
            try:
                out[key] = int(value)
            except (TypeError, ValueError):
                continue
        elif isinstance(value, (str, int, float)):
            out[key] = str(value).strip()
    return ExtractedData(**out)  # type: ignore[typeddict-item]


@dataclass(frozen=True, slots=True)
class IntentResult:
    intent: str
    confidence: float
    extracted_data: ExtractedData = field(default_factory=dict)  # type: ignore[assignment]

    @classmethod
    def from_raw(cls, raw: Any) -> IntentResult | None:
        """Build from a classifier-supplied object, or ``None`` if it has no intent label."""
        if not isinstance(raw, dict):
            return None
        label = raw.get("intent")
        if not isinstance(label, str) or not label.strip():
            return None
        try:
            confidence = float(raw.get("confidence", 0.5))
        except (TypeError, ValueError):
            confidence = 0.5
        return cls(
            intent=label.strip().lower(),
            confidence=min(1.0, max(0.0, confidence)),
            extracted_data=clean_extracted(raw.get("extracted_data")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"intent": self.intent, "confidence": self.confidence, "extracted_data": dict(self.extracted_data)}

import pytest

from mreverything.brain.fallback import parse_intents


def _top(text: str) -> tuple[str, float]:
    result = parse_intents(text)
    return result[0].intent, result[0].confidence


def test_exact_greeting_is_high_confidence() -> None:
    result = parse_intents("hi")
    assert len(result) == 1
    assert (result[0].intent, result[0].confidence) == ("greeting", 0.9)
    assert _top("  HELLO ") == ("greeting", 0.9)


def test_greeting_must_be_exact() -> None:
    assert _top("hi there, I need milk") == ("grocery", 0.8)


@pytest.mark.parametrize("text", ["", " ", "?", "a" * 3, "\n\t"])
def test_short_or_empty_input_falls_back_to_help(text: str) -> None:
    assert _top(text) == ("help", 0.1)


def test_none_input_is_accepted() -> None:
    assert _top(None) == ("help", 0.1)  # type: ignore[arg-type]


def test_unmatched_text_is_conversational() -> None:
    assert _top("lekker morning boet") == ("conversational", 0.3)


def test_taxi_tracking_wins_over_generic_taxi() -> None:
    assert _top("track taxi please") == ("taxi_track", 1.0)
    assert _top("where is my ride?") == ("taxi_track", 1.0)
    assert _top("TRACK_TAXI_4f1c") == ("taxi_track", 1.0)
    assert _top("taxi to Sandton") == ("taxi", 0.9)


def test_cart_actions_win_over_shopping() -> None:
    assert _top("checkout my order") == ("cart_action", 1.0)
    assert _top("order a samsung") == ("shopping", 0.8)


def test_join_public_button_carries_code() -> None:
    result = parse_intents("join_public")
    assert result[0].intent == "join_group"
    assert result[0].confidence == 1.0
    assert result[0].extracted_data == {"code": "PUBLIC"}


@pytest.mark.parametrize(
    ("text", "intent"),
    [
        ("start stokvel with my aunties", "create_group"),
        ("who else is in", "view_group"),
        ("emergency!!", "panic_button"),
        ("i'm so hungry", "food"),
        ("need a hotel in durban", "accommodation"),
        ("flight to cape town", "flights"),
        ("R50 airtime", "airtime"),
        ("eskom prepaid", "electricity"),
        ("pharmacy near me", "pharmacy"),
        ("how much is it", "pricing"),
        ("this is wrong", "complaints"),
        ("i want my money back", "refunds"),
        ("will it rain", "weather"),
        ("load shedding schedule", "load_shedding"),
        ("diesel today", "fuel_price"),
    ],
)
def test_keyword_rules(text: str, intent: str) -> None:
    assert _top(text)[0] == intent


def test_parser_is_total_for_odd_input() -> None:
    for text in ["🚐🚐🚐", "\x00\x01", "ß" * 500, "{}", "[]"]:
        result = parse_intents(text)
        assert result
        assert 0.0 <= result[0].confidence <= 1.0

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mreverything.brain.types import Intent, IntentResult
from mreverything.conftest import FakeWhapi, build_services
from mreverything.mirages import basic
from mreverything.mirages.context import MirageContext
from mreverything.mirages.registry import MirageRegistry, build_registry
from mreverything.mirages.router import HANDLER_FAILURE, MirageRouter
from mreverything.storage.models import User


def _ctx(services, session=None, **kw) -> MirageContext:
    user = kw.pop("user", None) or User(id="u-1", phone="27825550001", preferred_name="")
    return MirageContext(user=user, text=kw.pop("text", ""), session=session, services=services, **kw)


def _r(intent: str, **data) -> IntentResult:
    return IntentResult(intent=intent, confidence=0.9, extracted_data=data)


def test_registry_covers_every_intent() -> None:
    registry = build_registry()
    assert len(registry) == len(Intent)
    for intent in Intent:
        assert intent in registry


def test_registry_refuses_gaps() -> None:
    with pytest.raises(ValueError, match="taxi"):
        MirageRegistry({i: basic.canned("x") for i in Intent if i is not Intent.TAXI})


async def test_replies_are_joined_in_order(sessions: async_sessionmaker[AsyncSession]) -> None:
    router = MirageRouter(build_registry())
    reply = await router.route(_ctx(build_services(sessions)), [_r("weather"), _r("fuel_price")])
    assert reply == basic.CANNED[Intent.WEATHER] + "\n\n" + basic.CANNED[Intent.FUEL_PRICE]


async def test_duplicate_intents_answer_once(sessions: async_sessionmaker[AsyncSession]) -> None:
    router = MirageRouter(build_registry())
    reply = await router.route(_ctx(build_services(sessions)), [_r("weather"), _r("WEATHER")])
    assert reply == basic.CANNED[Intent.WEATHER]


async def test_empty_list_routes_to_help(sessions: async_sessionmaker[AsyncSession]) -> None:
    router = MirageRouter(build_registry())
    assert await router.route(_ctx(build_services(sessions)), []) == basic.HELP_TEXT


async def test_unknown_label_routes_to_unknown_input(sessions: async_sessionmaker[AsyncSession]) -> None:
    router = MirageRouter(build_registry())
    reply = await router.route(_ctx(build_services(sessions)), [_r("teleport")])
    assert reply == basic.CANNED[Intent.UNKNOWN_INPUT]


async def test_failing_handler_contributes_apology(sessions: async_sessionmaker[AsyncSession]) -> None:
    async def boom(ctx: MirageContext) -> str | None:
        raise RuntimeError("kaput")

    handlers = {i: basic.canned(i.value) for i in Intent}
    handlers[Intent.FOOD] = boom
    router = MirageRouter(MirageRegistry(handlers))

    reply = await router.route(_ctx(build_services(sessions)), [_r("food"), _r("weather")])
    assert reply == f"{HANDLER_FAILURE}\n\nweather"


async def test_silent_handlers_give_no_reply(sessions: async_sessionmaker[AsyncSession]) -> None:
    async def silent(ctx: MirageContext) -> str | None:
        return None

    router = MirageRouter(MirageRegistry({i: silent for i in Intent}))
    assert await router.route(_ctx(build_services(sessions)), [_r("food")]) is None


async def test_handlers_read_extracted_data(sessions: async_sessionmaker[AsyncSession]) -> None:
    services = build_services(sessions)
    router = MirageRouter(build_registry())

    airtime = await router.route(_ctx(services), [_r("airtime", quantity=30, product="MTN")])
    assert "Buying R30 MTN airtime" in airtime

    default = await router.route(_ctx(services), [_r("airtime")])
    assert "Buying R50 Vodacom airtime" in default

    pricing = await router.route(_ctx(services), [_r("pricing", product="bread")])
    assert "Product prices for bread" in pricing

    suggestion = await router.route(_ctx(services), [_r("did_you_mean", suggestion="food")])
    assert "*food*" in suggestion

    public = await router.route(_ctx(services), [_r("join_group", code="PUBLIC")])
    assert "JOINED PUBLIC GROUP-BUY" in public


async def test_greeting_uses_preferred_name(sessions: async_sessionmaker[AsyncSession]) -> None:
    services = build_services(sessions)
    known = User(id="u-2", phone="27825550002", preferred_name="Thandi")
    assert "Welcome back Thandi" in await basic.handle_greeting(_ctx(services, user=known))
    assert "I'm Mr Everything" in await basic.handle_greeting(_ctx(services))
    assert "*What is your name?*" in await basic.handle_onboarding(_ctx(services))


async def test_panic_button_notifies_operator(sessions: async_sessionmaker[AsyncSession]) -> None:
    whapi = FakeWhapi()
    services = build_services(sessions, whapi=whapi, admin_phone="27820001111")

    reply = await basic.handle_panic(_ctx(services, extracted_data={"group_id": "G7"}))

    assert "EMERGENCY" in reply
    assert whapi.sent[0]["to"] == "27820001111"
    assert "PANIC BUTTON PRESSED by 27825550001 in Group G7" in whapi.sent[0]["body"]

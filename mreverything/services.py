"""Wires settings into the long-lived service graph used by the API, scheduler and CLI."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from loguru import logger
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mreverything.brain.circuit_breaker import CircuitBreaker
from mreverything.brain.providers import LiteLLMClassifier
from mreverything.brain.resolver import PRIMARY_SYSTEM_PROMPT, IntentResolver
from mreverything.channels.whatsapp import SecureSender, WhapiClient
from mreverything.integrations.geocoding import GoogleGeocoder
from mreverything.mirages.context import MirageServices
from mreverything.mirages.registry import build_registry
from mreverything.mirages.router import MirageRouter
from mreverything.observability.alerts import AlertService
from mreverything.observability.sentry import Sentry
from mreverything.pipeline import MessagePipeline
from mreverything.runtime.background import BackgroundTasks
from mreverything.runtime.corridor_lock import CorridorLock
from mreverything.runtime.scheduler import DispatchScheduler
from mreverything.settings import MrEverythingSettings
from mreverything.storage.database import get_session_factory
from mreverything.storage.models import Corridor
from mreverything.storage.repository import CorridorRepo
from mreverything.taxi.dispatcher import TaxiDispatcher

# (name, start lat, start lng, end lat, end lng, base fare)
DEFAULT_CORRIDORS: tuple[tuple[str, float, float, float, float, Decimal], ...] = (
    ("Soweto - Sandton", -26.2650, 28.0430, -26.1076, 28.0567, Decimal("35.00")),
    ("Joburg CBD - Midrand", -26.2041, 28.0473, -25.9992, 28.1263, Decimal("40.00")),
    ("Sandton - Pretoria", -26.1076, 28.0567, -25.7479, 28.2293, Decimal("60.00")),
)


@dataclass(slots=True)
class Services:
    settings: MrEverythingSettings
    sessions: async_sessionmaker[AsyncSession]
    background: BackgroundTasks
    whapi: WhapiClient
    alerts: AlertService
    sender: SecureSender
    breaker: CircuitBreaker
    resolver: IntentResolver
    dispatcher: TaxiDispatcher
    sentry: Sentry
    pipeline: MessagePipeline
    scheduler: DispatchScheduler
    redis: Redis | None = None

    async def aclose(self) -> None:
        await self.scheduler.stop()
        await self.background.shutdown(self.settings.background_drain_seconds)
        await self.whapi.aclose()
        if self.redis is not None:
            await self.redis.aclose()


def build_resolver(settings: MrEverythingSettings, breaker: CircuitBreaker) -> IntentResolver:
    common = {
        "attempt_timeout": settings.llm_attempt_timeout_seconds,
        "max_retries": settings.llm_max_retries,
        "backoff_base": settings.llm_backoff_base_seconds,
    }
    primary = None
    if settings.openai_api_key:
        primary = LiteLLMClassifier(
            "openai",
            settings.primary_model,
            settings.openai_api_key,
            system_prompt=PRIMARY_SYSTEM_PROMPT,
            json_mode=True,
            **common,
        )
    secondary = None
    if settings.gemini_api_key:
        secondary = LiteLLMClassifier("gemini", settings.secondary_model, settings.gemini_api_key, **common)
    if primary is None and secondary is None:
        logger.warning("Services: no LLM keys configured, intent resolution uses the keyword parser only")
    return IntentResolver(
        primary,
        secondary,
        breaker,
        race_timeout=settings.intent_race_timeout_seconds,
        stagger=settings.secondary_stagger_seconds,
        fast_path_confidence=settings.fast_path_confidence,
    )


def build_services(
    settings: MrEverythingSettings,
    sessions: async_sessionmaker[AsyncSession] | None = None,
) -> Services:
    sessions = sessions or get_session_factory(settings)
    background = BackgroundTasks(settings.max_background_tasks)

    whapi = WhapiClient(
        settings.whapi_token,
        base_url=settings.whapi_base_url,
        timeout=settings.whapi_timeout_seconds,
    )
    alerts = AlertService(sessions, gateway=whapi, admin_phone=settings.admin_phone)
    sender = SecureSender(whapi, alerts, admin_phone=settings.admin_phone)

    breaker = CircuitBreaker(
        sessions, provider="openai", cooldown=timedelta(minutes=settings.circuit_breaker_cooldown_minutes)
    )
    resolver = build_resolver(settings, breaker)

    redis = Redis.from_url(settings.redis_url) if settings.redis_url else None
    dispatcher = TaxiDispatcher(
        sessions,
        CorridorLock(redis, ttl_seconds=settings.corridor_lock_ttl_seconds),
        sender,
        background,
        alerts,
        lock_timeout=settings.corridor_lock_timeout_seconds,
    )

    registry = build_registry()
    sentry = Sentry(
        settings,
        sessions,
        alerts,
        breaker=breaker,
        gateway_health=whapi.health,
        registry_size=len(registry),
    )
    mirage_services = MirageServices(
        geocoder=GoogleGeocoder(settings.google_maps_api_key, region_suffix=settings.geocode_region_suffix),
        dispatcher=dispatcher,
        background=background,
        sender=sender,
        alerts=alerts,
        sentry=sentry,
    )
    pipeline = MessagePipeline(settings, sessions, resolver, MirageRouter(registry), mirage_services)
    scheduler = DispatchScheduler(dispatcher, sentry, poll_seconds=settings.dispatch_poll_seconds)

    return Services(
        settings=settings,
        sessions=sessions,
        background=background,
        whapi=whapi,
        alerts=alerts,
        sender=sender,
        breaker=breaker,
        resolver=resolver,
        dispatcher=dispatcher,
        sentry=sentry,
        pipeline=pipeline,
        scheduler=scheduler,
        redis=redis,
    )


async def seed_corridors(sessions: async_sessionmaker[AsyncSession]) -> list[str]:
    """Insert the default corridors that are missing; returns the names added."""
    added: list[str] = []
    async with sessions() as s:
        repo = CorridorRepo(s)
        for name, start_lat, start_lng, end_lat, end_lng, fare in DEFAULT_CORRIDORS:
            if await repo.get_by_name(name) is not None:
                continue
            await repo.add(
                Corridor(
                    name=name,
                    start_lat=start_lat,
                    start_lng=start_lng,
                    end_lat=end_lat,
                    end_lng=end_lng,
                    base_fare=fare,
                )
            )
            added.append(name)
        await s.commit()
    if added:
        logger.info(f"Seeded corridors: {', '.join(added)}")
    return added

"""FastAPI application factory with lifespan for Mr Everything."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from mreverything.services import build_services
from mreverything.settings import get_settings
from mreverything.storage.database import create_all_tables, dispose_engine


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup: schema, services, dispatch loop. Shutdown: stop loop, drain work, dispose engine."""
    from mreverything.api.routes import health, webhook

    settings = get_settings()
    await create_all_tables()
    services = build_services(settings)
    webhook.set_services(services)
    health.set_services(services)
    app.state.services = services

    scheduler_task = asyncio.create_task(services.scheduler.run_forever(), name="dispatch-scheduler")
    logger.info(f"{settings.app_name} started ({settings.env})")
    try:
        yield
    finally:
        await services.aclose()
        scheduler_task.cancel()
        await asyncio.gather(scheduler_task, return_exceptions=True)
        await dispose_engine()
        logger.info(f"{settings.app_name} stopped")


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
        lifespan=lifespan,
    )

    # ── mount routers ──
    from mreverything.api.routes import health, taxi, webhook

    app.include_router(health.router)
    app.include_router(webhook.router, tags=["whatsapp"])
    app.include_router(taxi.router, prefix="/api/v1/taxi", tags=["taxi"])

    return app

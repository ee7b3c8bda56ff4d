"""Whapi webhook endpoint.

The delivery is acknowledged straight away and processed in the
background; the gateway always gets a 200 so it never redelivers.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from fastapi import APIRouter, Request, Response
from loguru import logger

from mreverything.observability.sentry import WEBHOOK_SOURCE
from mreverything.storage.models import AlertSeverity

if TYPE_CHECKING:
    from mreverything.services import Services

router = APIRouter()

# Set by the app lifespan at startup
_services: Services | None = None


def set_services(services: Services | None) -> None:
    global _services
    _services = services


@router.post("/webhook")
async def whapi_webhook(request: Request) -> Response:
    body = await request.body()
    logger.info(f"Whapi webhook: {len(body)} bytes")

    if _services is None:
        logger.warning("Whapi webhook: services not ready, dropping delivery")
        return _json(200, {"status": "ignored"})

    try:
        payload = json.loads(body)
        if not isinstance(payload, dict):
            raise ValueError("payload is not an object")
    except ValueError as exc:
        logger.warning(f"Whapi webhook: unreadable body: {exc}")
        return _json(200, {"status": "ignored"})

    _services.background.spawn(
        _services.alerts.raise_alert(
            AlertSeverity.INFO, WEBHOOK_SOURCE, "Inbound delivery", {"bytes": len(body)}
        ),
        name="webhook-alert",
    )
    _services.background.spawn(_services.pipeline.handle(payload), name="pipeline")
    return _json(200, {"status": "ok"})


def _json(status: int, data: dict) -> Response:
    return Response(
        content=json.dumps(data),
        status_code=status,
        media_type="application/json; charset=utf-8",
    )

"""Banner and operator health check."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated, Any

from fastapi import APIRouter, Header, HTTPException

from mreverything import __logo__, __version__
from mreverything.settings import get_settings

if TYPE_CHECKING:
    from mreverything.services import Services

router = APIRouter()

_services: Services | None = None


def set_services(services: Services | None) -> None:
    global _services
    _services = services


@router.get("/")
async def banner() -> dict[str, str]:
    settings = get_settings()
    return {"service": f"{__logo__} {settings.app_name}", "version": __version__, "status": "online"}


@router.get("/health")
async def health(x_admin_key: Annotated[str | None, Header()] = None) -> dict[str, Any]:
    settings = get_settings()
    if not settings.admin_key or x_admin_key != settings.admin_key:
        raise HTTPException(status_code=401, detail="unauthorized")
    if _services is None:
        raise HTTPException(status_code=503, detail="services not ready")
    report = await _services.sentry.diagnose()
    return report.to_dict()

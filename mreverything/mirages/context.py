"""The single argument every mirage handler receives."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession

from mreverything.brain.types import ExtractedData, IntentResult
from mreverything.geo.primitives import GeoPoint
from mreverything.storage.models import User

if TYPE_CHECKING:
    from mreverything.channels.whatsapp import SecureSender
    from mreverything.integrations.geocoding import Geocoder
    from mreverything.observability.alerts import AlertService
    from mreverything.observability.sentry import Sentry
    from mreverything.runtime.background import BackgroundTasks
    from mreverything.taxi.dispatcher import TaxiDispatcher


@dataclass(frozen=True, slots=True)
class MirageServices:
    """Long-lived collaborators shared by all handlers."""

    geocoder: Geocoder
    dispatcher: TaxiDispatcher
    background: BackgroundTasks
    sender: SecureSender
    alerts: AlertService
    sentry: Sentry | None = None


@dataclass(frozen=True, slots=True)
class MirageContext:
    user: User
    text: str
    session: AsyncSession
    services: MirageServices
    extracted_data: ExtractedData = field(default_factory=dict)  # type: ignore[assignment]
    pickup: GeoPoint | None = None  # fresh shared location, if any
    memory: dict[str, Any] = field(default_factory=dict)
    raw_from: str = ""

    def for_intent(self, result: IntentResult) -> MirageContext:
        return replace(self, extracted_data=result.extracted_data)


MirageHandler = Callable[[MirageContext], Awaitable[str | None]]

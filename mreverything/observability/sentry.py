"""Self-monitoring: telemetry patterns, preemptive wisdom, layered scan and heal.

* ``harvest_patterns`` learns danger zones (weekday-hour slots with many
  failures) and traffic waves (slots with many webhooks) from the last week
  of ``system_alerts``.
* ``consult_wisdom`` turns those patterns plus the current time into a
  reliability mode and a list of preemptive actions.
* ``find_repeating_fault`` spots one source failing repeatedly.
* ``scan`` probes each layer; ``heal`` reacts to a degraded scan.

Slots are ``"<day>-<hour>"`` in UTC with Sunday as day 0.
"""

from __future__ import annotations

import time
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mreverything.brain.circuit_breaker import CircuitBreaker
from mreverything.brain.types import Intent
from mreverything.observability.alerts import AlertService
from mreverything.settings import MrEverythingSettings
from mreverything.storage.models import (
    AlertSeverity,
    Base,
    ChatMessage,
    Corridor,
    ForensicLog,
    SystemAlert,
    SystemConfig,
    TaxiBooking,
    TaxiStop,
    TaxiTrip,
    User,
)
from mreverything.storage.repository import AlertRepo, SystemConfigRepo

WEBHOOK_SOURCE = "whapi-webhook"
FAULT_FINDER_SOURCE = "fault-finder"
HEALER_SOURCE = "sentry-healer"

DANGER_ZONE_THRESHOLD = 5
TRAFFIC_WAVE_THRESHOLD = 10
REPEATING_FAULT_THRESHOLD = 3
FAULT_WINDOW = 10
PATTERN_LOOKBACK = timedelta(days=7)
HIGH_VALUE_CART = 500

HEALTHY = "healthy"
DEGRADED = "degraded"
CRITICAL = "critical"
UNREACHABLE = "unreachable"

_FAILURES = {AlertSeverity.ERROR, AlertSeverity.CRITICAL}

_PROBED_TABLES: tuple[type[Base], ...] = (
    User,
    ChatMessage,
    Corridor,
    TaxiBooking,
    TaxiTrip,
    TaxiStop,
    SystemConfig,
    SystemAlert,
    ForensicLog,
)

# settings that must be non-empty for the service to do its job
REQUIRED_SETTINGS = (
    "database_url",
    "whapi_token",
    "openai_api_key",
    "gemini_api_key",
    "google_maps_api_key",
    "admin_key",
)


def slot_key(ts: datetime) -> str:
    ts = ts if ts.tzinfo is not None else ts.replace(tzinfo=UTC)
    ts = ts.astimezone(UTC)
    return f"{ts.isoweekday() % 7}-{ts.hour}"


@dataclass(frozen=True, slots=True)
class Patterns:
    danger_zones: frozenset[str] = frozenset()
    traffic_waves: frozenset[str] = frozenset()


@dataclass(slots=True)
class Wisdom:
    active: bool = False
    mode: str = "standard"
    countermeasures: list[str] = field(default_factory=list)
    preemptive_actions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "active": self.active,
            "mode": self.mode,
            "countermeasures": list(self.countermeasures),
            "preemptive_actions": list(self.preemptive_actions),
        }


@dataclass(frozen=True, slots=True)
class RepeatingFault:
    source: str
    count: int

    @property
    def identification(self) -> str:
        return f"REPEATING_FAULT_LOCATED: {self.source} (Detected {self.count} instances in last {FAULT_WINDOW} events)"


@dataclass(frozen=True, slots=True)
class LayerReport:
    status: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ScanReport:
    layers: dict[str, LayerReport]
    timestamp: datetime
    duration_ms: int

    @property
    def status(self) -> str:
        return HEALTHY if all(l.status == HEALTHY for l in self.layers.values()) else DEGRADED

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "layers": {name: {"status": l.status, "details": l.details} for name, l in self.layers.items()},
            "timestamp": self.timestamp.isoformat(),
            "scan_duration_ms": self.duration_ms,
        }


class Sentry:
    def __init__(
        self,
        settings: MrEverythingSettings,
        sessions: async_sessionmaker[AsyncSession],
        alerts: AlertService,
        breaker: CircuitBreaker | None = None,
        gateway_health: Callable[[], Awaitable[bool]] | None = None,
        registry_size: int | None = None,
    ) -> None:
        self._settings = settings
        self._sessions = sessions
        self._alerts = alerts
        self._breaker = breaker
        self._gateway_health = gateway_health
        self._registry_size = registry_size

    # ── learning ──

    async def harvest_patterns(self, now: datetime | None = None) -> Patterns:
        now = now or datetime.now(tz=UTC)
        async with self._sessions() as s:
            history = await AlertRepo(s).since(now - PATTERN_LOOKBACK)

        failures: Counter[str] = Counter()
        traffic: Counter[str] = Counter()
        for alert in history:
            key = slot_key(alert.created_at)
            if alert.severity in _FAILURES:
                failures[key] += 1
            if alert.source == WEBHOOK_SOURCE:
                traffic[key] += 1

        patterns = Patterns(
            danger_zones=frozenset(k for k, n in failures.items() if n >= DANGER_ZONE_THRESHOLD),
            traffic_waves=frozenset(k for k, n in traffic.items() if n >= TRAFFIC_WAVE_THRESHOLD),
        )
        logger.debug(
            f"Sentry: {len(patterns.danger_zones)} danger zones, {len(patterns.traffic_waves)} traffic waves"
        )
        return patterns

    async def consult_wisdom(self, context: dict[str, Any] | None = None, now: datetime | None = None) -> Wisdom:
        now = (now or datetime.now(tz=UTC)).astimezone(UTC)
        context = context or {}
        day, hour = now.isoweekday() % 7, now.hour
        current, upcoming = f"{day}-{hour}", f"{day}-{(hour + 1) % 24}"

        patterns = await self.harvest_patterns(now)
        wisdom = Wisdom()

        if current in patterns.danger_zones or upcoming in patterns.danger_zones:
            wisdom.active = True
            wisdom.mode = "high_reliability"
            wisdom.countermeasures += ["FORCE_FALLBACK_PRIMARY", "SHORT_TIMEOUTS"]
            if hour == 3:
                wisdom.preemptive_actions.append("ENABLE_CACHE_BUFFER")

        if upcoming in patterns.traffic_waves:
            wisdom.active = True
            wisdom.preemptive_actions.append("SCALE_RESOURCES")
            if day == 5 and hour >= 19:
                wisdom.preemptive_actions.append("PREWARM_TAXI_DISPATCHER")
            if day == 6 and hour >= 1:
                wisdom.preemptive_actions.append("PRECACHE_RESTAURANT_MENUS")
            if day == 0 and hour >= 9:
                wisdom.preemptive_actions.append("PRELOAD_POPULAR_GROCERIES")

        if float(context.get("cart_total") or 0) > HIGH_VALUE_CART:
            wisdom.active = True
            wisdom.preemptive_actions += ["EXTEND_SESSION_TIMEOUT", "ENABLE_RECOVERY_NUDGE"]

        return wisdom

    async def evolve(self, now: datetime | None = None) -> Wisdom:
        """Consult wisdom and record the resulting reliability mode in ``system_config``."""
        now = now or datetime.now(tz=UTC)
        wisdom = await self.consult_wisdom(now=now)
        if wisdom.active:
            async with self._sessions() as s:
                repo = SystemConfigRepo(s)
                await repo.set("active_reliability_mode", wisdom.mode, updated_by="sentry")
                await repo.set("last_evolution_at", now.isoformat(), updated_by="sentry")
                await s.commit()
            await self._alerts.raise_alert(
                AlertSeverity.INFO,
                "sentry-preemption",
                f"Preemptive protection: {', '.join(wisdom.preemptive_actions) or wisdom.mode}",
                wisdom.to_dict(),
            )
        return wisdom

    async def find_repeating_fault(self) -> RepeatingFault | None:
        async with self._sessions() as s:
            recent = await AlertRepo(s).recent(FAULT_WINDOW)
        if len(recent) < REPEATING_FAULT_THRESHOLD:
            return None

        # the finder's own alerts never count towards a new finding
        counts = Counter(
            a.source for a in recent if a.severity in _FAILURES and a.source != FAULT_FINDER_SOURCE
        )
        for source, count in counts.most_common():
            if count < REPEATING_FAULT_THRESHOLD:
                break
            fault = RepeatingFault(source, count)
            logger.warning(f"Sentry: {fault.identification}")
            await self._alerts.raise_alert(
                AlertSeverity.CRITICAL,
                FAULT_FINDER_SOURCE,
                fault.identification,
                {"source": source, "occurrences": count},
            )
            return fault
        return None

    # ── scanning ──

    async def scan(self) -> ScanReport:
        started = time.monotonic()
        layers = {
            "configuration": self._scan_configuration(),
            "database": await self._scan_database(),
        }
        if self._gateway_health is not None:
            layers["communication"] = await self._scan_communication()
        layers["ai_brain"] = await self._scan_ai()
        if self._registry_size is not None:
            layers["application"] = self._scan_application()

        report = ScanReport(
            layers=layers,
            timestamp=datetime.now(tz=UTC),
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        logger.info(f"Sentry: scan {report.status} in {report.duration_ms}ms")
        return report

    def _scan_configuration(self) -> LayerReport:
        missing = [name for name in REQUIRED_SETTINGS if not getattr(self._settings, name, "")]
        return LayerReport(
            HEALTHY if not missing else CRITICAL,
            {"missing_settings": missing, "environment": self._settings.env},
        )

    async def _scan_database(self) -> LayerReport:
        tables: dict[str, str] = {}
        faults = 0
        for model in _PROBED_TABLES:
            name = model.__tablename__
            try:
                async with self._sessions() as s:
                    await s.scalar(select(func.count()).select_from(model))
                tables[name] = "online"
            except Exception as exc:
                tables[name] = f"FAULT: {exc}"
                faults += 1
        if faults == 0:
            status = HEALTHY
        elif faults > 2:
            status = CRITICAL
        else:
            status = DEGRADED
        return LayerReport(status, {"tables": tables})

    async def _scan_communication(self) -> LayerReport:
        assert self._gateway_health is not None
        try:
            ok = await self._gateway_health()
        except Exception as exc:
            return LayerReport(UNREACHABLE, {"error": str(exc)})
        return LayerReport(HEALTHY if ok else DEGRADED, {"gateway": "online" if ok else "unhealthy"})

    async def _scan_ai(self) -> LayerReport:
        primary = bool(self._settings.openai_api_key)
        secondary = bool(self._settings.gemini_api_key)
        breaker_open = False
        if self._breaker is not None:
            try:
                breaker_open = await self._breaker.is_open()
            except Exception as exc:
                logger.warning(f"Sentry: breaker state unreadable: {exc}")

        details = {
            "primary": "open-circuit" if primary and breaker_open else ("configured" if primary else "missing"),
            "secondary": "configured" if secondary else "missing",
            "circuit_breaker_open": breaker_open,
        }
        primary_usable = primary and not breaker_open
        if not primary_usable and not secondary:
            status = CRITICAL
        elif primary_usable:
            status = HEALTHY
        else:
            status = DEGRADED
        return LayerReport(status, details)

    def _scan_application(self) -> LayerReport:
        expected = len(Intent)
        status = HEALTHY if self._registry_size == expected else DEGRADED
        return LayerReport(status, {"mirage_count": self._registry_size, "expected": expected})

    # ── healing ──

    async def heal(self, report: ScanReport) -> list[str]:
        """React to a degraded scan; returns the actions taken."""
        if report.status == HEALTHY:
            return []
        logger.warning("Sentry: anomaly detected, running self-heal")
        actions: list[str] = []
        layers = report.layers

        config = layers.get("configuration")
        if config is not None and config.status != HEALTHY:
            actions.append("FLAG_MISSING_SETTINGS")
            await self._alerts.raise_alert(
                AlertSeverity.ERROR, HEALER_SOURCE, "Required settings are missing.", config.details
            )

        comm = layers.get("communication")
        if comm is not None and comm.status != HEALTHY:
            actions.append("REPAIR_WEBHOOK")
            await self._alerts.raise_alert(
                AlertSeverity.ERROR, HEALER_SOURCE, "WhatsApp gateway unhealthy. Re-syncing...", comm.details
            )

        brain = layers.get("ai_brain")
        if brain is not None and brain.status == DEGRADED and brain.details.get("circuit_breaker_open"):
            actions.append("ROTATE_AI_PRIMARY")
            await self._alerts.raise_alert(
                AlertSeverity.INFO, HEALER_SOURCE, "Primary classifier rate limited. Secondary takes the lead."
            )

        db = layers.get("database")
        if db is not None and db.status != HEALTHY:
            actions.append("DATABASE_RECONSTRUCTION_ALERT")
            await self._alerts.raise_alert(
                AlertSeverity.CRITICAL, HEALER_SOURCE, "Database schema inconsistency detected.", db.details
            )
            if db.status == CRITICAL:
                actions.append("ACTIVATE_EMERGENCY_BUFFER")
                await self._alerts.raise_alert(
                    AlertSeverity.CRITICAL, HEALER_SOURCE, "DB CRITICAL: Activating Emergency Request Buffer."
                )

        if actions:
            await self._alerts.forensic(
                "SENTRY_HEAL_COMPLETE", "system", "none", {"actions": actions, "scan_status": report.status}
            )
            logger.info(f"Sentry: healer executed {len(actions)} actions: {', '.join(actions)}")
        return actions

    async def diagnose(self) -> ScanReport:
        """Scan and heal in one go."""
        report = await self.scan()
        await self.heal(report)
        return report

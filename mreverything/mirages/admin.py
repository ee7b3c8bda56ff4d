"""Operator-only mirages behind ``!diag`` and ``!stats``."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from loguru import logger

from mreverything.brain.types import Intent
from mreverything.mirages.context import MirageContext, MirageHandler
from mreverything.storage.repository import AlertRepo, BookingRepo, ForensicRepo, TripRepo


async def handle_admin_diag(ctx: MirageContext) -> str | None:
    sentry = ctx.services.sentry
    if sentry is None:
        return "🛠️ *SYSTEM DIAGNOSTICS*\n\nSentry is not configured."
    report = await sentry.diagnose()
    lines = [f"{name}: {layer.status}" for name, layer in report.layers.items()]

    snippet = ""
    try:
        events = await ForensicRepo(ctx.session).recent(5)
        snippet = "\n\n📜 *RECENT EVENTS:*\n" + "\n".join(
            f"• {e.event_type} ({e.created_at:%H:%M:%S})" for e in events
        )
    except Exception as exc:
        logger.warning(f"Admin: recent events unavailable: {exc}")

    status = "✅" if report.status == "healthy" else "❌"
    return "🛠️ *SYSTEM DIAGNOSTICS*\n\n" + "\n".join(lines) + f"\nStatus: {status}{snippet}"


async def handle_admin_stats(ctx: MirageContext) -> str | None:
    by_status = await BookingRepo(ctx.session).count_by_status()
    trips, earnings = await TripRepo(ctx.session).totals()
    failures = await AlertRepo(ctx.session).count_failures_since(datetime.now(tz=UTC) - timedelta(hours=24))
    bookings = sum(by_status.values())
    breakdown = ", ".join(f"{k} {v}" for k, v in sorted(by_status.items())) or "none"
    return (
        "📊 *BUSINESS INTELLIGENCE*\n\n"
        f"Bookings: {bookings} ({breakdown})\n"
        f"Trips: {trips}\n"
        f"Platform earnings: R{earnings}\n"
        f"Failures (24h): {failures}"
    )


HANDLERS: dict[Intent, MirageHandler] = {
    Intent.ADMIN_DIAG: handle_admin_diag,
    Intent.ADMIN_STATS: handle_admin_stats,
}

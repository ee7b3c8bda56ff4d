"""CLI commands for Mr Everything."""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from mreverything import __logo__, __version__

app = typer.Typer(
    name="mreverything",
    help=f"{__logo__} Mr Everything - WhatsApp concierge and shared-taxi dispatch",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} Mr Everything v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """Mr Everything - WhatsApp concierge and shared-taxi dispatch."""
    pass


# ============================================================================
# Server
# ============================================================================


@app.command()
def serve(
    host: str = typer.Option(None, "--host", help="Bind address (defaults to settings)"),
    port: int = typer.Option(None, "--port", "-p", help="HTTP port (defaults to settings)"),
):
    """Start the webhook server and the dispatch loop."""
    import uvicorn

    from mreverything.api.app import create_app
    from mreverything.settings import get_settings

    settings = get_settings()
    bind_host = host or settings.host
    bind_port = port or settings.port
    console.print(f"{__logo__} Starting {settings.app_name} on {bind_host}:{bind_port}...")
    uvicorn.run(create_app(), host=bind_host, port=bind_port, log_level="info" if settings.debug else "warning")


# ============================================================================
# Taxi
# ============================================================================


@app.command()
def dispatch():
    """Run one dispatch cycle over every active corridor."""
    from mreverything.services import build_services
    from mreverything.settings import get_settings
    from mreverything.storage.database import create_all_tables, dispose_engine

    async def run():
        await create_all_tables()
        services = build_services(get_settings())
        try:
            trips = await services.dispatcher.run_cycle()
            # passenger notifications go out in the background
            await services.background.drain(services.settings.background_drain_seconds)
        finally:
            await services.aclose()
            await dispose_engine()

        if not trips:
            console.print("[yellow]No corridor reached quorum[/yellow]")
            return
        table = Table(title="Dispatched Trips")
        table.add_column("Trip", style="cyan")
        table.add_column("Corridor")
        table.add_column("Passengers", justify="right")
        table.add_column("Revenue", justify="right", style="green")
        table.add_column("Platform", justify="right", style="green")
        for t in trips:
            table.add_row(
                t.trip_id[:8],
                t.corridor_name,
                str(len(t.booking_ids)),
                f"R{t.total_revenue}",
                f"R{t.platform_earnings}",
            )
        console.print(table)

    asyncio.run(run())


@app.command("seed-corridors")
def seed_corridors_cmd():
    """Insert the default corridors that are missing."""
    from mreverything.services import seed_corridors
    from mreverything.storage.database import create_all_tables, dispose_engine, get_session_factory

    async def run():
        await create_all_tables()
        try:
            added = await seed_corridors(get_session_factory())
        finally:
            await dispose_engine()
        if added:
            for name in added:
                console.print(f"[green]✓[/green] {name}")
        else:
            console.print("[dim]All default corridors already present[/dim]")

    asyncio.run(run())


@app.command()
def corridors():
    """List configured corridors."""
    from mreverything.storage.database import create_all_tables, dispose_engine, get_session_factory
    from mreverything.storage.repository import BookingRepo, CorridorRepo

    async def run():
        await create_all_tables()
        try:
            async with get_session_factory()() as s:
                rows = await CorridorRepo(s).list_all()
                pending = {c.id: await BookingRepo(s).count_pending(c.id) for c in rows}
        finally:
            await dispose_engine()

        table = Table(title="Corridors")
        table.add_column("Name", style="cyan")
        table.add_column("Active", style="green")
        table.add_column("Start")
        table.add_column("End")
        table.add_column("Radius", justify="right")
        table.add_column("Group", justify="right")
        table.add_column("Pending", justify="right", style="yellow")
        for c in rows:
            table.add_row(
                c.name,
                "✓" if c.active else "✗",
                f"{c.start_lat:.4f}, {c.start_lng:.4f}",
                f"{c.end_lat:.4f}, {c.end_lng:.4f}",
                f"{c.radius_km:g} km",
                f"{c.min_group_size}-{c.max_group_size}",
                str(pending[c.id]),
            )
        console.print(table)

    asyncio.run(run())


# ============================================================================
# Brain
# ============================================================================


@app.command()
def classify(
    text: str = typer.Argument(..., help="Message text to classify"),
):
    """Resolve the intents for a message the way the webhook would."""
    from datetime import timedelta

    from mreverything.brain.circuit_breaker import CircuitBreaker
    from mreverything.services import build_resolver
    from mreverything.settings import get_settings
    from mreverything.storage.database import create_all_tables, dispose_engine, get_session_factory

    async def run():
        settings = get_settings()
        await create_all_tables()
        try:
            breaker = CircuitBreaker(
                get_session_factory(settings),
                cooldown=timedelta(minutes=settings.circuit_breaker_cooldown_minutes),
            )
            intents = await build_resolver(settings, breaker).resolve(text)
        finally:
            await dispose_engine()

        table = Table(title=f"Intents for {text!r}")
        table.add_column("#", justify="right")
        table.add_column("Intent", style="cyan")
        table.add_column("Confidence", justify="right")
        table.add_column("Extracted")
        for i, r in enumerate(intents, 1):
            table.add_row(str(i), r.intent, f"{r.confidence:.2f}", ", ".join(f"{k}={v}" for k, v in r.extracted_data.items()))
        console.print(table)

    asyncio.run(run())


# ============================================================================
# Sentry
# ============================================================================


@app.command()
def diag(
    heal: bool = typer.Option(False, "--heal", help="Run the healer on a degraded scan"),
):
    """Run the layered health scan."""
    from mreverything.services import build_services
    from mreverything.settings import get_settings
    from mreverything.storage.database import create_all_tables, dispose_engine

    async def run():
        await create_all_tables()
        services = build_services(get_settings())
        try:
            report = await services.sentry.scan()
            actions = await services.sentry.heal(report) if heal else []
        finally:
            await services.aclose()
            await dispose_engine()

        table = Table(title=f"Scan: {report.status}")
        table.add_column("Layer", style="cyan")
        table.add_column("Status")
        table.add_column("Details", style="dim")
        for name, layer in report.layers.items():
            style = "green" if layer.status == "healthy" else "red"
            table.add_row(name, f"[{style}]{layer.status}[/{style}]", str(layer.details)[:120])
        console.print(table)
        if actions:
            console.print(f"[yellow]Healer actions:[/yellow] {', '.join(actions)}")

    asyncio.run(run())


if __name__ == "__main__":
    app()

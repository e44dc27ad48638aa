"""
Command-line interface for the smartagri alert service.

Usage:
    smartagri serve    # Run the API server (with scheduler and dispatcher)
    smartagri init-db  # Create alert tables
    smartagri expire   # Run one expiry sweep
    smartagri stats    # Print alert statistics and trends
    smartagri health   # Check service dependencies
"""

import asyncio
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import click

from smartagri.config.settings import get_settings
from smartagri.observability.logging import get_logger, setup_logging


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """SmartAgri alerts - alert lifecycle and subscriber notification."""
    setup_logging(log_level="DEBUG" if debug else None)


@asynccontextmanager
async def _alert_service() -> AsyncIterator:
    """Open a database-backed AlertService for one command."""
    from smartagri.alerts.repository import AlertRepository, SubscriptionRepository
    from smartagri.alerts.service import AlertService
    from smartagri.storage.database import Database

    db = Database()
    await db.connect()
    try:
        yield AlertService(
            alert_store=AlertRepository(db),
            subscription_store=SubscriptionRepository(db),
        )
    finally:
        await db.close()


@main.command()
@click.option("--host", default=None, help="API server host")
@click.option("--port", default=None, type=int, help="API server port")
@click.option("--reload", is_flag=True, help="Enable auto-reload (dev only)")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Start the alert API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port

    click.echo(f"Starting API server on {host}:{port}")
    click.echo(f"API docs available on http://localhost:{port}/docs")

    uvicorn.run(
        "smartagri.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


@main.command("init-db")
def init_db() -> None:
    """Initialize the alert tables."""
    from smartagri.alerts.repository import create_tables
    from smartagri.storage.database import Database

    async def run():
        db = Database()
        await db.connect()
        try:
            await create_tables(db)
        finally:
            await db.close()

        click.echo("Database initialized successfully")

    asyncio.run(run())


@main.command()
def expire() -> None:
    """Deactivate alerts whose expiry time has passed."""

    async def run():
        async with _alert_service() as service:
            expired = await service.expire_old_alerts()
        click.echo(f"Expired {expired} alerts")

    asyncio.run(run())


@main.command()
@click.option("--parcel-id", default=None, type=int, help="Scope to one parcel")
@click.option("--days", default=7, type=click.IntRange(min=1), help="Trailing window for trends")
def stats(parcel_id: int | None, days: int) -> None:
    """Print alert statistics and trends."""

    async def run():
        async with _alert_service() as service:
            statistics = await service.get_alert_statistics(parcel_id=parcel_id)
            trends = await service.get_alert_trends(parcel_id=parcel_id, days=days)

        scope = f"parcel {parcel_id}" if parcel_id is not None else "all parcels"
        click.echo(f"\nAlert statistics ({scope}):")
        click.echo("-" * 40)
        click.echo(f"  Total:          {statistics['total_alerts']}")
        click.echo(f"  Active:         {statistics['active_alerts']}")
        click.echo(f"  Unacknowledged: {statistics['unacknowledged_alerts']}")

        click.echo(f"\nTrends (last {trends.days} days):")
        click.echo("-" * 40)
        click.echo(f"  Alerts raised:     {trends.total_alerts}")
        for alert_type, count in sorted(trends.by_type.items()):
            click.echo(f"    {alert_type:<14} {count}")
        for severity, count in sorted(trends.by_severity.items()):
            click.echo(f"    {severity:<14} {count}")
        click.echo(f"  Acknowledged rate: {trends.acknowledged_rate:.1f}%")
        click.echo(f"  Avg response time: {trends.avg_response_time_minutes:.1f} min")

    asyncio.run(run())


async def _check_postgres() -> bool:
    from smartagri.storage.database import Database

    db = Database()
    try:
        await db.connect()
        return await db.health_check()
    except Exception as e:
        get_logger(__name__).error("Postgres health check failed", error=str(e))
        return False
    finally:
        await db.close()


@main.command()
def health() -> None:
    """Check the alert store and notification gateway; exit 1 if the store is down."""

    async def run() -> dict[str, bool]:
        settings = get_settings()
        return {
            "postgres": True if settings.uses_memory_store else await _check_postgres(),
            "notification_gateway_configured": settings.notification_gateway_configured,
        }

    results = asyncio.run(run())

    click.echo("\nDependency checks:")
    click.echo("=" * 40)
    for name, ok in results.items():
        click.secho(f"  [{'ok' if ok else 'FAIL'}] {name}: {ok}", fg="green" if ok else "red")
    click.echo("=" * 40)

    # A missing gateway only means notifications are logged, not sent
    if not results["postgres"]:
        click.secho("Alert store unreachable", fg="red")
        sys.exit(1)
    click.secho("Alert store reachable", fg="green")


if __name__ == "__main__":
    main()

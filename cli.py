# Simple CLI for Trap Relay
import asyncio
import json
import click


@click.group()
def cli():
    """Trap Relay CLI"""
    pass


@cli.command()
def api():
    """Run the API server"""
    click.echo("Starting Trap Relay API server...")
    from api.main import run as run_api
    run_api()


@cli.command()
@click.argument("text")
def parse(text):
    """Parse an alert and print the resulting signal"""
    from services.signal_parser import SignalParser

    match = SignalParser().match(text)
    if match is None:
        raise click.ClickException("Alert matched no supported format")
    pattern, signal = match
    click.echo(f"Pattern: {pattern.name}")
    click.echo(json.dumps(signal.to_alert_dict(), indent=2))


@cli.command("init-db")
def init_db():
    """Create database tables"""
    click.echo("Initializing database...")
    from app.containers import AppContainer
    import core.database.models  # noqa: F401  registers tables on Base.metadata

    async def _init():
        db_manager = AppContainer().db_manager()
        try:
            await db_manager.wait_for_ready(timeout=30)
            await db_manager.init()
        finally:
            await db_manager.shutdown()

    asyncio.run(_init())
    click.echo("Database ready")


if __name__ == "__main__":
    cli()

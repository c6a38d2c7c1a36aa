"""
Command-line interface for the adherence sync integration.
Run with:
    adherence-sync start-integration [--startDate YYYY-MM-DD] [--endDate YYYY-MM-DD]
    adherence-sync start-api-server [--port 3000]
Or:
    python -m adherence_sync.scripts.cli start-integration
"""
import logging
import sys

import click

from adherence_sync.core.config import ConfigurationError, load_settings
from adherence_sync.core.db import create_tables
from adherence_sync.core.logging_setup import setup_logging
from adherence_sync.services.integration import run_integration

log = logging.getLogger(__name__)


def _settings():
    try:
        return load_settings()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


@click.group()
def main():
    """Synchronize device adherence episodes with tracker events."""
    pass


@main.command(name="start-integration")
@click.option("-s", "--startDate", "start_date", type=click.DateTime(formats=["%Y-%m-%d"]), default=None,
              help="Start date for script coverage, YYYY-MM-DD")
@click.option("-e", "--endDate", "end_date", type=click.DateTime(formats=["%Y-%m-%d"]), default=None,
              help="End date for script coverage, YYYY-MM-DD")
def start_integration(start_date, end_date):
    """Reconcile adherence events for every device in use and upload them."""
    settings = _settings()
    setup_logging(settings.log_level)
    try:
        run_integration(settings, start_date=start_date, end_date=end_date)
    except Exception as e:
        log.error("Integration failed: %s", e)
        sys.exit(1)


@main.command(name="start-api-server")
@click.option("--host", default="0.0.0.0", show_default=True, help="Interface to bind")
@click.option("--port", type=int, default=None, help="Port to listen on (defaults to PORT or 3000)")
def start_api_server(host, port):
    """Serve the integration API."""
    import uvicorn

    from adherence_sync.api.server import create_app

    settings = _settings()
    setup_logging(settings.log_level, file_name="api-server.log")
    port = port or settings.port
    log.info("Server is running at http://%s:%d", host, port)
    uvicorn.run(create_app(settings), host=host, port=port)


@main.command(name="init-db")
def init_db():
    """Create the sync-run ledger tables."""
    settings = _settings()
    setup_logging(settings.log_level)
    create_tables(settings.database_url)
    click.echo(f"Ledger ready at {settings.database_url}")


if __name__ == "__main__":
    main()

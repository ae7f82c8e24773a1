"""
eCFR Analyzer - Command Line

    ecfr-analyzer serve
    ecfr-analyzer init-db
    ecfr-analyzer import [agencies|titles|historical|all]
    ecfr-analyzer calculate-checksums [--json-output]

Import and checksum commands run synchronously in this process against
the configured database.
"""

from __future__ import annotations

import json
import logging
import sys

import click

from .config import configure_logging, get_settings
from .core.errors import ImportAlreadyRunning
from .db import close_db_pool, get_connection, init_db_pool
from .dependencies import get_checksum_service, get_import_service, reset_services
from .schema import ensure_schema
from .services.import_service import RUN_PLANS

logger = logging.getLogger(__name__)


def _open_database() -> None:
    if init_db_pool() is None:
        raise click.ClickException("Could not connect to the database (see log for details)")


def _close() -> None:
    reset_services()
    close_db_pool()


@click.group()
def cli() -> None:
    """eCFR ingestion and metrics service."""
    configure_logging()


@cli.command()
@click.option("--host", default=None, help="Bind address (default: HOST setting).")
@click.option("--port", default=None, type=int, help="Bind port (default: PORT setting).")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes.")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "ecfr_analyzer.main:app",
        host=host or settings.HOST,
        port=port or settings.PORT,
        reload=reload,
        log_level=settings.LOG_LEVEL.lower(),
    )


@cli.command("init-db")
def init_db() -> None:
    """Create tables and indexes."""
    _open_database()
    try:
        with get_connection() as conn:
            ensure_schema(conn)
        click.echo("[init-db] Schema is up to date")
    finally:
        _close()


@cli.command("import")
@click.argument("kind", type=click.Choice(sorted(RUN_PLANS)), default="all")
def run_import(kind: str) -> None:
    """Run an import to completion (default: all)."""
    _open_database()
    try:
        try:
            status = get_import_service().run(kind)
        except ImportAlreadyRunning as exc:
            raise click.ClickException(str(exc)) from exc
    finally:
        _close()

    click.echo(f"[import] {status.current_step} ({status.completed_steps}/{status.total_steps} steps done)")
    if status.error:
        click.echo(f"[import] error: {status.error}", err=True)
        sys.exit(1)


@cli.command("calculate-checksums")
@click.option("--json-output", is_flag=True, help="Print the stats as JSON.")
def calculate_checksums(json_output: bool) -> None:
    """Recompute and store every agency checksum. Exits 1 if any agency failed."""
    _open_database()
    try:
        stats = get_checksum_service().recalculate_all()
    finally:
        _close()

    if json_output:
        click.echo(json.dumps(stats.as_dict(), indent=2))
    else:
        click.echo(f"[calculate-checksums] Processed {stats.total} agencies")
        click.echo(f"  created: {stats.created}")
        click.echo(f"  updated: {stats.updated}")
        click.echo(f"  skipped: {stats.skipped}")
        click.echo(f"  errors:  {stats.errors}")

    if stats.errors:
        sys.exit(1)


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    cli()

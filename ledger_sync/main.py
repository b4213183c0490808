"""CLI entry point for ledger-sync."""

import asyncio
import sys
from collections import Counter
from collections.abc import Coroutine
from typing import Any

import click
import structlog

from ledger_sync import __version__
from ledger_sync.config.settings import SyncSettings
from ledger_sync.exceptions import ConfigurationError, LedgerSyncError
from ledger_sync.models.domain import SyncOperation, SyncResult
from ledger_sync.stores.factory import create_ledger_store, create_tracker_store
from ledger_sync.sync.engine import SyncEngine
from ledger_sync.utils.connection_pool import close_all_pools
from ledger_sync.utils.logging_config import LOG_FORMATS, configure_logging

log = structlog.get_logger(__name__)


@click.group()
@click.option(
    "--config",
    default=None,
    help="Path to YAML configuration file (LEDGER_SYNC_* environment variables when omitted)",
)
@click.option("--log-level", default=None, help="Logging level (overrides the configured level)")
@click.option("--log-format", type=click.Choice(LOG_FORMATS), default="json", help="Log output format")
@click.version_option(__version__, prog_name="ledger-sync")
@click.pass_context
def cli(ctx: click.Context, config: str | None, log_level: str | None, log_format: str) -> None:
    """ledger-sync: keep a Notion ledger and GitHub issues in sync."""
    configure_logging(log_level or "INFO", log_format)

    try:
        settings = SyncSettings.from_yaml(config) if config else SyncSettings.from_env()
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug("config_error", exc_info=True)
        sys.exit(1)

    if log_level is None and settings.log_level != "INFO":
        configure_logging(settings.log_level, log_format)

    ctx.obj = {"settings": settings}


def _run(coro: Coroutine[Any, Any, None], event: str) -> None:
    """Run a command coroutine with the shared error-to-exit-code policy."""
    try:
        asyncio.run(coro)
    except LedgerSyncError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.error(f"{event}_failed", error=e.message, exc_info=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        log.error(f"{event}_unexpected", exc_info=True)
        sys.exit(1)


@cli.command()
@click.pass_context
def once(ctx: click.Context) -> None:
    """Run a single reconciliation pass."""
    _run(_run_once(ctx.obj["settings"]), "sync_once")


@cli.command("dry-run")
@click.pass_context
def dry_run(ctx: click.Context) -> None:
    """Show the operations a pass would perform, without applying them."""
    _run(_dry_run(ctx.obj["settings"]), "dry_run")


@cli.command()
@click.option("--interval", type=int, default=None, help="Minutes between passes (default: from config)")
@click.pass_context
def schedule(ctx: click.Context, interval: int | None) -> None:
    """Run passes forever at a fixed interval."""
    settings = ctx.obj["settings"]
    _run(_schedule(settings, interval or settings.sync.interval_minutes), "schedule")


@cli.command()
@click.option("--interval", type=int, default=None, help="Minutes between passes (default: from config)")
@click.option("--host", default=None, help="Bind address (default: from config)")
@click.option("--port", type=int, default=None, help="Listen port (default: from config)")
@click.pass_context
def serve(ctx: click.Context, interval: int | None, host: str | None, port: int | None) -> None:
    """Run the webhook server alongside scheduled passes."""
    settings = ctx.obj["settings"]
    _run(
        _serve(
            settings,
            interval or settings.sync.interval_minutes,
            host or settings.webhook.host,
            port or settings.webhook.port,
        ),
        "serve",
    )


def _build_engine(settings: SyncSettings) -> SyncEngine:
    return SyncEngine(create_ledger_store(settings), create_tracker_store(settings), settings.routing())


async def _shutdown(engine: SyncEngine) -> None:
    await engine.close()
    await close_all_pools()


def _print_summary(result: SyncResult) -> None:
    summary = result.summary()
    click.echo("=== Sync summary ===")
    click.echo(f"Created: {summary['created']}")
    click.echo(f"Updated: {summary['updated']}")
    click.echo(f"Deleted: {summary['deleted']}")
    click.echo(f"Failed:  {summary['failed']}")
    click.echo(f"Total:   {summary['total']}")
    for failure in summary["failures"]:
        click.echo(f"  - {failure['action']} ({failure['item_id'] or '?'}): {failure['error']}")


def _print_plan(operations: list[SyncOperation]) -> None:
    click.echo(f"Would perform {len(operations)} operations")
    counts = Counter(op.action.value for op in operations)
    for action, count in sorted(counts.items()):
        click.echo(f"  {action}: {count}")
        for op in operations:
            if op.action.value == action:
                click.echo(f"    - [{op.item_id or '?'}] {op.reason}")


async def _run_once(settings: SyncSettings) -> None:
    engine = _build_engine(settings)
    await engine.connect()
    try:
        result = await engine.sync_once()
    finally:
        await _shutdown(engine)
    _print_summary(result)


async def _dry_run(settings: SyncSettings) -> None:
    engine = _build_engine(settings)
    await engine.connect()
    try:
        operations = await engine.dry_run()
    finally:
        await _shutdown(engine)
    _print_plan(operations)


async def _schedule_loop(engine: SyncEngine, interval: int) -> None:
    """Run passes every ``interval`` minutes; a failed pass never stops the loop."""
    while True:
        try:
            result = await engine.sync_once()
            click.echo(
                f"Pass complete: {result.created} created, {result.updated} updated, "
                f"{result.deleted} deleted, {result.failed} failed. Next in {interval} min"
            )
        except LedgerSyncError as e:
            log.error("scheduled_sync_failed", error=e.message, exc_info=True)
            click.echo(f"Error: {e.message}", err=True)
        except Exception as e:
            log.error("scheduled_sync_unexpected", error=str(e), exc_info=True)
            click.echo(f"Unexpected error: {e}", err=True)

        await asyncio.sleep(interval * 60)


async def _schedule(settings: SyncSettings, interval: int) -> None:
    log.info("schedule_started", interval_minutes=interval)
    click.echo(f"Starting scheduled sync (every {interval} min)")

    engine = _build_engine(settings)
    await engine.connect()
    try:
        await _schedule_loop(engine, interval)
    finally:
        await _shutdown(engine)


async def _serve(settings: SyncSettings, interval: int, host: str, port: int) -> None:
    import uvicorn

    from ledger_sync import webhook_server

    engine = _build_engine(settings)
    await engine.connect()
    webhook_server.set_engine(engine)

    server = uvicorn.Server(uvicorn.Config(webhook_server.app, host=host, port=port, log_config=None))
    log.info("webhook_server_starting", host=host, port=port, interval_minutes=interval)
    click.echo(f"Webhook server on http://{host}:{port}/webhook/ledger, syncing every {interval} min")

    schedule_task = asyncio.create_task(_schedule_loop(engine, interval))
    try:
        await server.serve()
    finally:
        schedule_task.cancel()
        try:
            await schedule_task
        except asyncio.CancelledError:
            pass
        webhook_server.set_engine(None)
        await _shutdown(engine)


if __name__ == "__main__":
    cli()

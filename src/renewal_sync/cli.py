"""CLI for Renewal Sync: preview and push renewal follow-ups to a calendar."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import time
from datetime import date, datetime
from pathlib import Path

import click

from renewal_sync import __version__
from renewal_sync.calendar import CalendarProvider
from renewal_sync.config import ConfigError, RenewalSyncConfig, load_config
from renewal_sync.core.logging import configure_logging
from renewal_sync.records import FeedError, feed_status, read_feed
from renewal_sync.sync import RenewalSync, SyncReport, build_provider

logger = logging.getLogger(__name__)


def _common_options(func):
    func = click.option(
        "--config",
        "config_path",
        type=click.Path(exists=True, path_type=Path),
        default=None,
        help="Path to renewal_sync.toml or its directory",
    )(func)
    func = click.option(
        "--today",
        type=click.DateTime(formats=["%Y-%m-%d"]),
        default=None,
        help="Override today's date (YYYY-MM-DD)",
    )(func)
    func = click.option(
        "--json", "as_json", is_flag=True, help="Print the run report as JSON"
    )(func)
    return func


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """Renewal Sync: schedule follow-up actions for expiring policies."""


@cli.command()
@click.argument("feed", required=False, type=click.Path(path_type=Path))
@_common_options
def preview(
    feed: Path | None, config_path: Path | None, today: datetime | None, as_json: bool
) -> None:
    """Preview the schedule without creating calendar events."""
    config = _load(config_path)
    report = _run(config, feed, today=today, dry_run=True)
    _print_report(report, as_json=as_json)


@cli.command()
@click.argument("feed", required=False, type=click.Path(path_type=Path))
@click.option("--yes", is_flag=True, help="Skip the confirmation countdown")
@_common_options
def sync(
    feed: Path | None,
    yes: bool,
    config_path: Path | None,
    today: datetime | None,
    as_json: bool,
) -> None:
    """Create real calendar events for every schedulable record."""
    config = _load(config_path)
    if not yes and config.confirm_countdown_seconds > 0:
        click.echo("This will create REAL calendar events!")
        click.echo(f"Press Ctrl+C within {config.confirm_countdown_seconds}s to cancel...")
        time.sleep(config.confirm_countdown_seconds)
    report = _run(config, feed, today=today, dry_run=False)
    _print_report(report, as_json=as_json)


@cli.command("test")
@click.argument("count", type=click.IntRange(min=1), default=10)
@click.argument("feed", required=False, type=click.Path(path_type=Path))
@_common_options
def test_cmd(
    count: int,
    feed: Path | None,
    config_path: Path | None,
    today: datetime | None,
    as_json: bool,
) -> None:
    """Create calendar events for the first COUNT records only."""
    config = _load(config_path)
    click.echo(f"Testing with first {count} records...")
    report = _run(config, feed, today=today, dry_run=False, max_records=count)
    _print_report(report, as_json=as_json)


@cli.command()
@click.argument("feed", required=False, type=click.Path(path_type=Path))
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to renewal_sync.toml or its directory",
)
def status(feed: Path | None, config_path: Path | None) -> None:
    """Show whether the renewal feed is present and ready to sync."""
    config = _load(config_path)
    path = feed or Path(config.feed_path)
    try:
        info = feed_status(path)
    except FeedError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    if not info.ready:
        click.echo(f"Feed not found: {info.path}")
        sys.exit(1)

    click.echo(f"Feed:      {info.path}")
    click.echo(f"Delimiter: {info.delimiter}")
    click.echo(f"Columns:   {len(info.columns)}")
    click.echo(f"Records:   {info.record_count}")
    click.echo(f"Size:      {info.size_bytes} bytes")


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", type=int, default=8000, show_default=True)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to renewal_sync.toml or its directory",
)
def serve(host: str, port: int, config_path: Path | None) -> None:
    """Serve the calendar sync HTTP API."""
    import uvicorn

    from renewal_sync.api.app import create_app

    config = _load(config_path)
    app = create_app(config_path=config_path)
    logger.info("Serving renewal sync API on %s:%d (feed=%s)", host, port, config.feed_path)
    uvicorn.run(app, host=host, port=port, log_level="warning")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load(config_path: Path | None) -> RenewalSyncConfig:
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(2)
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_root=config.logging.log_root,
    )
    return config


def _run(
    config: RenewalSyncConfig,
    feed: Path | None,
    *,
    today: datetime | None,
    dry_run: bool,
    max_records: int | None = None,
) -> SyncReport:
    path = feed or Path(config.feed_path)
    try:
        records = read_feed(path)
    except FeedError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    provider: CalendarProvider | None = None
    if not dry_run:
        try:
            provider = build_provider(config)
        except ConfigError as exc:
            click.echo(f"Configuration error: {exc}", err=True)
            sys.exit(2)

    run_date: date | None = today.date() if today is not None else None
    return asyncio.run(
        _run_sync(config, provider, records, today=run_date, dry_run=dry_run, max_records=max_records)
    )


async def _run_sync(config, provider, records, **kwargs) -> SyncReport:
    driver = RenewalSync.from_config(config, provider)
    try:
        return await driver.run(records, **kwargs)
    finally:
        if provider is not None:
            await provider.shutdown()


def _print_report(report: SyncReport, *, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        return

    if report.summary_lines:
        click.echo("Schedule summary:")
        for line in report.summary_lines:
            click.echo(f"  {line}")
    click.echo(f"Mode:              {'preview' if report.dry_run else 'live'}")
    click.echo(f"Records processed: {report.processed}")
    click.echo(f"Events created:    {report.events_created}")
    click.echo(f"Skipped:           {report.skipped_total}")
    click.echo(f"Errors:            {report.errors}")
    click.echo(f"Total records:     {report.total}")

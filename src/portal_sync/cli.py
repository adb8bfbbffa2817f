"""Command-line interface for portal-sync."""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import click

from .config import SyncConfig
from .events.engine import EventAggregator
from .events.models import RawEvent
from .exceptions import PortalSyncError
from .ratelimit import TokenBucketRateLimiter
from .retry import BackoffRetryPolicy, RetryOptions


def _load_config(config_path: Path | None) -> SyncConfig:
    if config_path is not None:
        return SyncConfig.from_file(config_path)
    return SyncConfig.from_environment()


def _build_aggregator(config: SyncConfig, lookup: Any) -> EventAggregator:
    options = RetryOptions.from_config(config.retry)
    return EventAggregator(
        lookup=lookup,
        rate_limiter=TokenBucketRateLimiter(
            config.rate_limit.cloudtrail_burst,
            config.rate_limit.cloudtrail_per_second,
        ),
        retry_policy=BackoffRetryPolicy(options),
        config=config.events,
        retry_options=options,
    )


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _event_summary(e: RawEvent) -> dict[str, Any]:
    return {
        "event_id": e.event_id,
        "event_name": e.event_name,
        "event_time": e.event_time.isoformat() if e.event_time else None,
        "username": e.username,
        "resources": [r.resource_name for r in e.resources if r.resource_name],
    }


config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML config file (default: PORTAL_SYNC_* environment variables)",
)
region_option = click.option(
    "--region",
    help="AWS region (default: use boto3 defaults)",
)
endpoint_option = click.option(
    "--endpoint-url",
    help="AWS endpoint URL (e.g., http://localhost:4566 for LocalStack)",
)


@click.group()
@click.version_option(package_name="portal-sync")
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Log level for diagnostics written to stderr",
)
def cli(log_level: str) -> None:
    """portal-sync metadata synchronization CLI."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.option("--days", default=90, type=int, show_default=True, help="Lookback in days (max 90)")
@click.option(
    "--event-name",
    "event_names",
    multiple=True,
    help="Event name to aggregate (repeatable, default: all tracked events)",
)
@config_option
@region_option
@endpoint_option
def activity(
    days: int,
    event_names: tuple[str, ...],
    config_path: Path | None,
    region: str | None,
    endpoint_url: str | None,
) -> None:
    """Aggregate per-user activity from CloudTrail and print it as JSON."""
    from .events.cloudtrail import CloudTrailLookup

    async def _run() -> dict[str, Any]:
        config = _load_config(config_path)
        async with CloudTrailLookup(region=region, endpoint_url=endpoint_url) as lookup:
            aggregator = _build_aggregator(config, lookup)
            report = await aggregator.get_user_activity(
                days=days,
                event_names=list(event_names) or None,
            )
            return report.as_dict()

    try:
        _echo_json(asyncio.run(_run()))
    except PortalSyncError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("event_name")
@click.option("--days", default=7, type=int, show_default=True, help="Lookback in days (max 90)")
@config_option
@region_option
@endpoint_option
def events(
    event_name: str,
    days: int,
    config_path: Path | None,
    region: str | None,
    endpoint_url: str | None,
) -> None:
    """List raw CloudTrail events for EVENT_NAME."""
    from .events.cloudtrail import CloudTrailLookup

    async def _run() -> list[dict[str, Any]]:
        config = _load_config(config_path)
        async with CloudTrailLookup(region=region, endpoint_url=endpoint_url) as lookup:
            aggregator = _build_aggregator(config, lookup)
            start_time, end_time = aggregator.build_time_range(days)
            found = await aggregator.fetch_events_by_name(event_name, start_time, end_time)
            return [_event_summary(e) for e in found]

    try:
        _echo_json(asyncio.run(_run()))
    except PortalSyncError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("asset_type", type=click.Choice(["dashboard", "analysis"]))
@click.argument("asset_ids", nargs=-1, required=True)
@click.option("--days", default=90, type=int, show_default=True, help="Lookback in days (max 90)")
@config_option
@region_option
@endpoint_option
def views(
    asset_type: str,
    asset_ids: tuple[str, ...],
    days: int,
    config_path: Path | None,
    region: str | None,
    endpoint_url: str | None,
) -> None:
    """List view events for the given dashboard or analysis ids."""
    from .events.cloudtrail import CloudTrailLookup

    async def _run() -> list[dict[str, Any]]:
        config = _load_config(config_path)
        async with CloudTrailLookup(region=region, endpoint_url=endpoint_url) as lookup:
            aggregator = _build_aggregator(config, lookup)
            found = await aggregator.fetch_view_events(asset_type, asset_ids, days=days)
            return [_event_summary(e) for e in found]

    try:
        _echo_json(asyncio.run(_run()))
    except PortalSyncError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command("config")
@config_option
def show_config(config_path: Path | None) -> None:
    """Print the effective configuration."""
    try:
        _echo_json(_load_config(config_path).as_dict())
    except PortalSyncError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def main() -> None:
    """Entry point for the portal-sync command."""
    cli()


if __name__ == "__main__":
    main()

"""
Command-line interface for research-collector.

Provides commands to collect research material for a topic and to inspect
the collectors and the result cache.

Usage:
    research-collector collect "ai safety"     # Collect from all sources
    research-collector sources                 # Show configured sources
    research-collector cache-stats             # Show cache entry counts
    research-collector cache-clear             # Drop every cached result
"""

import asyncio
import sys
from datetime import datetime

import click

from src.config.settings import get_settings
from src.observability.logging import bind_context, clear_context, setup_logging
from src.observability.metrics import get_metrics


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Research Collector - topic research from feeds, web, forums and social media."""
    setup_logging("DEBUG" if debug else None)


def _parse_sources(value: str | None) -> list[str] | None:
    if not value:
        return None
    return [s.strip().lower() for s in value.split(",") if s.strip()]


def _parse_filters(values: tuple[str, ...]) -> dict[str, str]:
    filters = {}
    for item in values:
        key, sep, val = item.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"Expected KEY=VALUE, got {item!r}", param_hint="--filter")
        filters[key.strip()] = val.strip()
    return filters


@main.command()
@click.argument("topic")
@click.option("--sources", default=None, help="Comma-separated source kinds in priority order (feed,web,forum,social)")
@click.option("--max-results", default=None, type=click.IntRange(min=1), help="Total number of records")
@click.option("--deadline", default=None, type=click.FloatRange(min=0, min_open=True), help="Deadline in seconds")
@click.option("--since", default=None, type=click.DateTime(), help="Only records published on or after this date")
@click.option("--until", default=None, type=click.DateTime(), help="Only records published on or before this date")
@click.option("--filter", "filters", multiple=True, help="Collector filter as KEY=VALUE (category, site, subreddit, lang)")
@click.option("--output", "-o", default=None, type=click.Path(dir_okay=False), help="Write JSON here instead of stdout")
@click.option("--metrics/--no-metrics", default=False, help="Expose Prometheus metrics while collecting")
def collect(
    topic: str,
    sources: str | None,
    max_results: int | None,
    deadline: float | None,
    since: datetime | None,
    until: datetime | None,
    filters: tuple[str, ...],
    output: str | None,
    metrics: bool,
) -> None:
    """Collect records about TOPIC and print them as JSON."""
    from src.collection.schemas import CollectorOptions, DateRange
    from src.services.collection_service import CollectionOrchestrator

    date_range = None
    if since or until:
        try:
            date_range = DateRange(
                start=since or datetime(1970, 1, 1),
                end=until or datetime.now(),
            )
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--since/--until")
    options = CollectorOptions(date_range=date_range, filters=_parse_filters(filters))

    if metrics:
        get_metrics().start_server()

    async def run():
        # Tag every log line of the run, collector logs included
        bind_context(topic=topic.strip())
        try:
            async with CollectionOrchestrator.from_settings() as orchestrator:
                return await orchestrator.run_with_report(
                    topic,
                    source_kinds=_parse_sources(sources),
                    max_results=max_results,
                    deadline_seconds=deadline,
                    options=options,
                )
        finally:
            clear_context()

    report = asyncio.run(run())
    payload = report.model_dump_json(indent=2)

    if output:
        import structlog
        logger = structlog.get_logger()

        with open(output, "w", encoding="utf-8") as f:
            f.write(payload)
        logger.info("Report written", path=output, records=len(report.records))
    else:
        click.echo(payload)

    click.echo(f"\nCollected {len(report.records)} records for '{report.topic}'", err=True)
    for diag in report.diagnostics:
        color = "green" if diag.status == "ok" else "yellow" if diag.status in ("skipped", "timed_out") else "red"
        line = f"  {diag.source}: {diag.status} ({diag.returned}/{diag.requested})"
        if diag.message:
            line += f" - {diag.message}"
        click.echo(click.style(line, fg=color), err=True)

    if any(d.status == "invalid_topic" for d in report.diagnostics):
        sys.exit(1)


@main.command()
def sources() -> None:
    """Show source kinds and whether each collector is configured."""
    from src.services.collection_service import CollectionOrchestrator

    orchestrator = CollectionOrchestrator.from_settings()

    click.echo("\nSources:")
    click.echo("-" * 40)
    for kind, collector in orchestrator.collectors.items():
        configured = collector.is_configured
        icon = "✓" if configured else "✗"
        color = "green" if configured else "red"
        status = "configured" if configured else "missing credentials"
        click.echo(
            click.style(
                f"  {icon} {kind.value}: {status} "
                f"(default {collector.default_max_results}, "
                f"cap {collector.max_results_cap}, ttl {collector.cache_ttl}s)",
                fg=color,
            )
        )
    click.echo("-" * 40)


@main.command("cache-stats")
def cache_stats() -> None:
    """Show result cache entry counts."""
    from src.collection.cache import ResultCache

    settings = get_settings()

    async def run():
        async with ResultCache(settings.cache_path, sweep_interval=None) as cache:
            return await cache.stats()

    stats = asyncio.run(run())
    click.echo(f"Cache: {settings.cache_path}")
    click.echo(f"  entries: {stats.total}")
    click.echo(f"  expired: {stats.expired}")


@main.command("cache-clear")
@click.confirmation_option(prompt="Delete every cached result?")
def cache_clear() -> None:
    """Delete every cached result."""
    from src.collection.cache import ResultCache

    settings = get_settings()

    async def run():
        async with ResultCache(settings.cache_path, sweep_interval=None) as cache:
            await cache.clear()

    asyncio.run(run())
    click.echo("Cache cleared")


if __name__ == "__main__":
    main()

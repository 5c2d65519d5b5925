"""
Collection service - gathers research material for a topic from every source.

Splits the result budget across the requested source kinds, runs their
collectors concurrently under an optional deadline, and merges the results
in priority order.

Features:
- Concurrent collector execution
- Deadline with partial results from unfinished collectors
- Priority-ordered merge with URL deduplication
- Per-source diagnostics
"""

import asyncio
import time
from collections.abc import Sequence
from types import TracebackType

import structlog

from src.collection.base_collector import BaseCollector
from src.collection.cache import ResultCache
from src.collection.extraction import ArticleExtractor
from src.collection.feed_collector import FeedCollector
from src.collection.forum_collector import ForumCollector
from src.collection.http_client import RateLimitedFetcher, RetryPolicy
from src.collection.schemas import (
    CollectionReport,
    CollectorOptions,
    SourceDiagnostic,
    SourceKind,
    SourceRecord,
)
from src.collection.social_collector import SocialCollector
from src.collection.web_collector import WebCollector
from src.config.settings import Settings, get_settings
from src.config.sources import parse_feed_urls

logger = structlog.get_logger(__name__)

# Default merge priority
PRIORITY = list(SourceKind)


def split_budget(total: int, kinds: Sequence[SourceKind]) -> dict[SourceKind, int]:
    """
    Split `total` evenly over `kinds`, giving the remainder to the first ones.

    Example: 10 over (feed, web, forum) -> {feed: 4, web: 3, forum: 3}
    """
    if not kinds:
        return {}
    base, remainder = divmod(total, len(kinds))
    return {kind: base + (1 if i < remainder else 0) for i, kind in enumerate(kinds)}


def merge_records(
    results: dict[SourceKind, list[SourceRecord]],
    order: Sequence[SourceKind],
    limit: int,
) -> list[SourceRecord]:
    """
    Concatenate per-source results in priority order, keeping the first
    record for each normalized URL, capped at `limit`.
    """
    merged: list[SourceRecord] = []
    seen_urls: set[str] = set()
    for kind in order:
        for record in results.get(kind, []):
            if len(merged) >= limit:
                return merged
            if record.normalized_url in seen_urls:
                continue
            seen_urls.add(record.normalized_url)
            merged.append(record)
    return merged


class CollectionOrchestrator:
    """
    Runs collectors for a topic and merges their results.

    Owns the shared fetcher and cache it is given, and closes them.

    Usage:
        async with CollectionOrchestrator.from_settings() as orchestrator:
            records = await orchestrator.run("ai safety", max_results=20)
    """

    def __init__(
        self,
        collectors: dict[SourceKind, BaseCollector],
        fetcher: RateLimitedFetcher | None = None,
        cache: ResultCache | None = None,
        default_max_results: int = 20,
        deadline_seconds: float | None = None,
    ):
        """
        Initialize orchestrator.

        Args:
            collectors: One collector per source kind
            fetcher: Shared fetcher, opened on start and closed on close
            cache: Shared cache, connected on start and closed on close
            default_max_results: Total budget when run() is not given one
            deadline_seconds: Default deadline for a run (None waits for all)
        """
        self._collectors = dict(collectors)
        self._fetcher = fetcher
        self._cache = cache
        self._default_max_results = default_max_results
        self._deadline_seconds = deadline_seconds
        self._started = False

        logger.info(
            "Collection orchestrator initialized",
            collectors=[kind.value for kind in self._collectors],
            deadline_seconds=deadline_seconds,
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "CollectionOrchestrator":
        """Build the fetcher, cache and all collectors from configuration."""
        settings = settings or get_settings()

        fetcher = RateLimitedFetcher(
            retry_policy=RetryPolicy(
                max_retries=settings.max_http_retries,
                rate_limit_delay=settings.rate_limit_delay_seconds,
                transient_delay=settings.transient_delay_seconds,
            ),
            min_interval=settings.min_request_interval_seconds,
            host_intervals=settings.host_request_intervals,
            timeout=settings.http_timeout_seconds,
            user_agent=settings.http_user_agent,
        )
        cache = ResultCache(
            path=settings.cache_path,
            sweep_interval=settings.cache_sweep_interval_seconds,
        )
        extractor = ArticleExtractor(fetcher, settings.article_reader_url)

        collectors: dict[SourceKind, BaseCollector] = {
            SourceKind.FEED: FeedCollector(
                fetcher,
                cache,
                feeds=parse_feed_urls(settings.feed_urls),
                extractor=extractor,
                fetch_full_content=settings.fetch_full_content,
                default_max_results=settings.feed_max_results,
                cache_ttl=settings.feed_cache_ttl,
            ),
            SourceKind.WEB: WebCollector(
                fetcher,
                cache,
                extractor=extractor,
                default_max_results=settings.web_max_results,
                cache_ttl=settings.web_cache_ttl,
            ),
            SourceKind.FORUM: ForumCollector(
                fetcher,
                cache,
                client_id=settings.reddit_client_id,
                client_secret=settings.reddit_client_secret,
                user_agent=settings.reddit_user_agent,
                default_max_results=settings.forum_max_results,
                cache_ttl=settings.forum_cache_ttl,
            ),
            SourceKind.SOCIAL: SocialCollector(
                fetcher,
                cache,
                bearer_token=settings.twitter_bearer_token,
                default_max_results=settings.social_max_results,
                cache_ttl=settings.social_cache_ttl,
            ),
        }

        return cls(
            collectors,
            fetcher=fetcher,
            cache=cache,
            default_max_results=settings.default_max_results,
            deadline_seconds=settings.collection_deadline_seconds,
        )

    @property
    def collectors(self) -> dict[SourceKind, BaseCollector]:
        return dict(self._collectors)

    async def start(self) -> None:
        """Open the fetcher and connect the cache (idempotent)."""
        if self._started:
            return
        if self._fetcher:
            await self._fetcher.open()
        if self._cache:
            await self._cache.connect()
        self._started = True

    async def close(self) -> None:
        """Close the fetcher and the cache."""
        if self._fetcher:
            await self._fetcher.aclose()
        if self._cache:
            await self._cache.close()
        self._started = False
        logger.info("Collection orchestrator closed")

    async def __aenter__(self) -> "CollectionOrchestrator":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def run(
        self,
        topic: str,
        source_kinds: Sequence[SourceKind | str] | None = None,
        max_results: int | None = None,
        *,
        deadline_seconds: float | None = None,
        options: CollectorOptions | None = None,
    ) -> list[SourceRecord]:
        """Collect and return the merged records only. See run_with_report."""
        report = await self.run_with_report(
            topic,
            source_kinds,
            max_results,
            deadline_seconds=deadline_seconds,
            options=options,
        )
        return report.records

    async def run_with_report(
        self,
        topic: str,
        source_kinds: Sequence[SourceKind | str] | None = None,
        max_results: int | None = None,
        *,
        deadline_seconds: float | None = None,
        options: CollectorOptions | None = None,
    ) -> CollectionReport:
        """
        Collect records for a topic from several sources.

        Args:
            topic: Topic to research
            source_kinds: Sources in priority order (defaults to all)
            max_results: Total number of records to return
            deadline_seconds: Overrides the default deadline for this run
            options: Date range and filters passed to every collector

        Returns:
            CollectionReport with merged records and per-source diagnostics
        """
        start_time = time.monotonic()
        topic = (topic or "").strip()
        if not topic:
            logger.warning("Rejected collection with empty topic")
            return CollectionReport(
                topic=topic,
                diagnostics=[
                    SourceDiagnostic(
                        source="*",
                        status="invalid_topic",
                        message="Topic must be a non-empty string",
                    )
                ],
            )

        await self.start()

        # 0 or less leaves every source without budget
        total = max(0, max_results if max_results is not None else self._default_max_results)
        deadline = deadline_seconds if deadline_seconds is not None else self._deadline_seconds
        base_options = options or CollectorOptions()
        log = logger.bind(topic=topic)

        diagnostics: dict[str, SourceDiagnostic] = {}
        kinds: list[SourceKind] = []
        names: list[str] = []
        for value in source_kinds or PRIORITY:
            names.append(value.value if isinstance(value, SourceKind) else str(value))
            try:
                kind = SourceKind(value)
            except ValueError:
                log.warning("Unknown source kind", source=str(value))
                diagnostics[str(value)] = SourceDiagnostic(
                    source=str(value), status="skipped", message="Unknown source kind"
                )
                continue
            if kind not in kinds:
                kinds.append(kind)

        shares = split_budget(total, kinds)
        results: dict[SourceKind, list[SourceRecord]] = {}
        tasks: dict[SourceKind, asyncio.Task] = {}

        for kind in kinds:
            share = shares[kind]
            collector = self._collectors.get(kind)
            reason = None
            if share == 0:
                reason = "No budget left for this source"
            elif collector is None:
                reason = "No collector registered"
            elif not collector.is_configured:
                reason = "Collector is not configured (missing credentials)"

            if reason:
                log.warning("Skipping source", source=kind.value, reason=reason)
                diagnostics[kind.value] = SourceDiagnostic(
                    source=kind.value, status="skipped", requested=share, message=reason
                )
                continue

            results[kind] = []
            tasks[kind] = asyncio.create_task(
                collector.collect(
                    topic,
                    base_options.with_max_results(share),
                    into=results[kind],
                ),
                name=f"collect_{kind.value}",
            )

        timed_out = False
        if tasks:
            done, pending = await asyncio.wait(tasks.values(), timeout=deadline)
            if pending:
                timed_out = True
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                log.warning(
                    "Collection deadline reached",
                    deadline_seconds=deadline,
                    pending=[t.get_name() for t in pending],
                )

            for kind, task in tasks.items():
                diagnostics[kind.value] = self._diagnose(
                    kind, task, shares[kind], len(results[kind]), pending
                )

        records = merge_records(results, kinds, total)
        elapsed = time.monotonic() - start_time

        ordered = [diagnostics[name] for name in dict.fromkeys(names) if name in diagnostics]

        log.info(
            "Collection finished",
            records=len(records),
            per_source={k.value: len(v) for k, v in results.items()},
            timed_out=timed_out,
            elapsed_seconds=round(elapsed, 2),
        )

        return CollectionReport(
            topic=topic,
            records=records,
            diagnostics=ordered,
            timed_out=timed_out,
            elapsed_seconds=elapsed,
        )

    def _diagnose(
        self,
        kind: SourceKind,
        task: asyncio.Task,
        requested: int,
        returned: int,
        pending: set[asyncio.Task],
    ) -> SourceDiagnostic:
        if task in pending:
            return SourceDiagnostic(
                source=kind.value,
                status="timed_out",
                requested=requested,
                returned=returned,
                message="Deadline reached; partial results kept",
            )

        if task.exception() is not None:
            return SourceDiagnostic(
                source=kind.value,
                status="failed",
                requested=requested,
                returned=returned,
                message=str(task.exception()),
            )

        errors = self._collectors[kind].stats.errors
        if errors and returned == 0:
            return SourceDiagnostic(
                source=kind.value,
                status="failed",
                requested=requested,
                returned=returned,
                message=f"{errors} errors during collection",
            )
        return SourceDiagnostic(
            source=kind.value,
            status="ok",
            requested=requested,
            returned=returned,
            message=f"{errors} errors during collection" if errors else None,
        )

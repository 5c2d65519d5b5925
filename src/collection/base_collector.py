"""
Base collector interface and shared functionality for source collectors.

Each collector turns a topic into a bounded list of SourceRecords. The base
class provides:
- Cache lookup and storage around every collection
- The query-variant loop with per-variant failure isolation
- Budget, date-range and duplicate-id enforcement (CollectionRun)
- Stats, logging and metrics
"""

import hashlib
import logging
import re
import time
from abc import ABC, abstractmethod
from contextlib import nullcontext
from dataclasses import dataclass, field

from src.collection.cache import ResultCache, build_cache_key
from src.collection.http_client import RateLimitedFetcher
from src.collection.quality import FilterTally, QualityVerdict
from src.collection.schemas import (
    CollectorOptions,
    DateRange,
    RecordKind,
    SourceKind,
    SourceRecord,
)
from src.observability.metrics import get_metrics

logger = logging.getLogger(__name__)


class CollectorAuthError(Exception):
    """Credentials were rejected or could not be obtained; stops the run."""

    pass


@dataclass
class CollectorStats:
    """Statistics for a collector run."""

    fetched: int = 0
    accepted: int = 0
    rejected: FilterTally = field(default_factory=FilterTally)
    errors: int = 0
    cache_hit: bool = False
    start_time: float = field(default_factory=time.monotonic)

    @property
    def filtered(self) -> int:
        return self.rejected.total

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.start_time


class CollectionRun:
    """
    Accumulator for one collect() call.

    Records land in `records` as soon as they are accepted, so a caller
    that abandons the call (deadline) still sees everything produced so far.
    """

    def __init__(
        self,
        records: list[SourceRecord],
        budget: int,
        stats: CollectorStats,
        date_range: DateRange | None = None,
    ):
        self.records = records
        self.budget = budget
        self.stats = stats
        self.date_range = date_range
        self._seen_ids = {r.id for r in records}

    @property
    def remaining(self) -> int:
        return max(0, self.budget - len(self.records))

    @property
    def full(self) -> bool:
        return self.remaining == 0

    def has(self, record_id: str) -> bool:
        return record_id in self._seen_ids

    def judge(self, verdict: QualityVerdict) -> bool:
        """Count a quality verdict; True if the candidate was accepted."""
        self.stats.fetched += 1
        self.stats.rejected.add(verdict)
        return verdict.accepted

    def add(self, record: SourceRecord | None) -> bool:
        """
        Append a record unless the budget is spent, it falls outside the
        date range, or its id was already produced in this run.
        """
        if record is None or self.full:
            return False
        if record.id in self._seen_ids:
            return False
        if (
            self.date_range is not None
            and record.published_at is not None
            and not self.date_range.contains(record.published_at)
        ):
            return False

        self._seen_ids.add(record.id)
        self.records.append(record)
        self.stats.accepted += 1
        return True


class BaseCollector(ABC):
    """
    Abstract base class for source collectors.

    Subclasses must implement:
        - kind: SourceKind enum value
        - query_variants(): Deterministic query phrasings for a topic
        - _collect_variant(): Fetch, filter and normalize for one variant
          (or override _collect() for sources not searched per variant)

    Subclasses may override:
        - is_configured: False when credentials are missing

    The base class handles:
        - Cache lookup/storage keyed by (kind, topic, options)
        - Budget enforcement and per-variant error isolation
        - Logging and metrics
    """

    default_max_results: int = 20
    max_results_cap: int = 50
    cache_ttl: int = 3600

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        cache: ResultCache | None = None,
        default_max_results: int | None = None,
        cache_ttl: int | None = None,
    ):
        """
        Initialize collector.

        Args:
            fetcher: Shared rate-limited HTTP fetcher
            cache: Shared result cache (None disables caching)
            default_max_results: Budget when options do not set one
            cache_ttl: Seconds to keep this collector's results
        """
        self._fetcher = fetcher
        self._cache = cache
        if default_max_results is not None:
            self.default_max_results = default_max_results
        if cache_ttl is not None:
            self.cache_ttl = cache_ttl
        self._stats = CollectorStats()
        self._metrics = get_metrics()

    @property
    @abstractmethod
    def kind(self) -> SourceKind:
        """Return the source kind this collector handles."""
        ...

    @property
    def name(self) -> str:
        """Human-readable collector name."""
        return f"{self.kind.value}_collector"

    @property
    def is_configured(self) -> bool:
        """Whether the collector has what it needs (credentials) to run."""
        return True

    @property
    def stats(self) -> CollectorStats:
        """Get statistics of the latest run."""
        return self._stats

    def budget_for(self, options: CollectorOptions) -> int:
        return min(options.max_results or self.default_max_results, self.max_results_cap)

    def cache_key(self, topic: str, options: CollectorOptions) -> str:
        return build_cache_key(self.kind.value, topic, options.cache_fragment())

    @abstractmethod
    def query_variants(self, topic: str, options: CollectorOptions) -> list[str]:
        """
        Expand a topic into query phrasings, tried in order.

        Must be deterministic for a given topic and options.
        """
        ...

    async def collect(
        self,
        topic: str,
        options: CollectorOptions | None = None,
        *,
        into: list[SourceRecord] | None = None,
    ) -> list[SourceRecord]:
        """
        Collect records for a topic.

        This is the main entry point called by the orchestrator. It never
        raises: failures are logged and the records accumulated so far are
        returned. Partial results are not cached.

        Args:
            topic: Topic to collect for
            options: Budget, date range and filters
            into: List to append records to as they are produced

        Returns:
            The list of collected records (`into` if given)
        """
        options = options or CollectorOptions()
        records = into if into is not None else []
        topic = topic.strip()
        self._stats = CollectorStats()

        logger.info(f"Starting {self.kind.value} collection for topic: {topic}")

        key = self.cache_key(topic, options)
        lock = self._cache.lock(key) if self._cache else nullcontext()

        try:
            async with lock:
                cached = await self._load_cached(key)
                if cached is not None:
                    self._stats.cache_hit = True
                    records.extend(cached)
                    return records

                if not self.is_configured:
                    logger.warning(
                        f"{self.name} is not configured (missing credentials), "
                        "collecting nothing"
                    )
                    return records

                run = CollectionRun(
                    records,
                    budget=self.budget_for(options),
                    stats=self._stats,
                    date_range=options.date_range,
                )
                await self._collect(topic, options, run)

                if self._stats.errors == 0:
                    await self._store(key, records)

        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Error in {self.name} collect: {e}", exc_info=True)

        finally:
            logger.info(
                f"{self.name} completed for topic '{topic}': "
                f"records={len(records)}, "
                f"cache_hit={self._stats.cache_hit}, "
                f"candidates={self._stats.fetched}, "
                f"filtered={self._stats.filtered} {self._stats.rejected.counts}, "
                f"errors={self._stats.errors}, "
                f"elapsed={self._stats.elapsed_seconds:.2f}s"
            )
            self._metrics.record_collection(
                self.kind.value,
                accepted=self._stats.accepted,
                filtered=self._stats.filtered,
                latency=self._stats.elapsed_seconds,
                errors=self._stats.errors,
            )

        return records

    async def _collect(
        self,
        topic: str,
        options: CollectorOptions,
        run: CollectionRun,
    ) -> None:
        """
        Run the variant loop until the budget is spent.

        A failing variant is logged and skipped; an authentication failure
        ends the run because every later variant would fail the same way.
        """
        for variant in self.query_variants(topic, options):
            if run.full:
                break
            try:
                await self._collect_variant(variant, topic, options, run)
            except CollectorAuthError:
                raise
            except Exception as e:
                run.stats.errors += 1
                logger.warning(f"{self.name} failed for query {variant!r}: {e}")

    async def _collect_variant(
        self,
        variant: str,
        topic: str,
        options: CollectorOptions,
        run: CollectionRun,
    ) -> None:
        """
        Fetch candidates for one variant and add accepted records to `run`.

        Implementations must filter candidates before any per-item detail
        request and stop as soon as `run.full` is True. Collectors that
        override _collect() need not implement it.
        """
        raise NotImplementedError(f"{type(self).__name__} does not search per variant")

    async def _load_cached(self, key: str) -> list[SourceRecord] | None:
        if self._cache is None:
            return None
        cached = await self._cache.get(key)
        if cached is None:
            return None
        try:
            return [SourceRecord.model_validate(item) for item in cached]
        except Exception as e:
            logger.warning(f"Discarding unreadable cache entry {key}: {e}")
            await self._cache.delete(key)
            return None

    async def _store(self, key: str, records: list[SourceRecord]) -> None:
        if self._cache is None:
            return
        await self._cache.set(
            key, [r.to_cache_dict() for r in records], ttl_seconds=self.cache_ttl
        )


# Common normalization utilities used across collectors

def make_record_id(kind: RecordKind, native_id: str) -> str:
    """Stable record ID: {record_kind}_{native_id}."""
    return f"{kind.value}_{native_id}"


def clean_text(text: str) -> str:
    """
    Clean text content by removing excessive whitespace and control characters.

    Args:
        text: Raw text content

    Returns:
        Cleaned text
    """
    # Remove null bytes and other control characters
    text = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)

    # Remove excessive whitespace
    text = " ".join(text.split())

    return text.strip()


def word_count(text: str) -> int:
    return len(text.split())


def stable_hash(value: str) -> str:
    """
    Generate a stable, deterministic hash from a string.

    Uses SHA256 truncated to 16 hex characters (64 bits) for a compact but
    collision-resistant ID. Unlike Python's built-in hash(), this is
    deterministic across process restarts and Python versions.

    Args:
        value: String to hash (typically a URL or identifier)

    Returns:
        16-character hex string (e.g., "a1b2c3d4e5f67890")
    """
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]

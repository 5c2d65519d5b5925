"""Pytest fixtures for research-collector tests."""

import asyncio
from datetime import datetime, timezone

import pytest

from src.collection.cache import IN_MEMORY, ResultCache
from src.collection.clock import Clock
from src.collection.http_client import RateLimitedFetcher, RetryPolicy
from src.collection.schemas import RecordKind, SourceRecord
from src.config.settings import Settings

# 2025-01-01T00:00:00Z
FAKE_EPOCH = 1_735_689_600.0


class FakeClock(Clock):
    """Clock whose sleep() advances time instantly and records each wait."""

    def __init__(self, start: float = FAKE_EPOCH):
        self.now = start
        self.sleeps: list[float] = []

    def time(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            self.sleeps.append(seconds)
            self.now += seconds
        # Let other tasks run, as a real sleep would
        await asyncio.sleep(0)

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def test_settings() -> Settings:
    """Settings configured for testing."""
    return Settings(
        environment="development",
        log_level="DEBUG",
        cache_path=IN_MEMORY,
        reddit_client_id="test-client",
        reddit_client_secret="test-secret",
        twitter_bearer_token="test-token",
        article_reader_url=None,
        collection_deadline_seconds=None,
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def fetcher(fake_clock: FakeClock):
    """Opened fetcher on the fake clock; retries disabled unless a test overrides."""
    fetcher = RateLimitedFetcher(
        retry_policy=RetryPolicy(max_retries=0),
        min_interval=1.0,
        clock=fake_clock,
    )
    await fetcher.open()
    yield fetcher
    await fetcher.aclose()


@pytest.fixture
async def cache(fake_clock: FakeClock):
    """In-memory result cache on the fake clock, no background sweeper."""
    cache = ResultCache(IN_MEMORY, sweep_interval=None, clock=fake_clock)
    await cache.connect()
    yield cache
    await cache.close()


@pytest.fixture
def sample_record() -> SourceRecord:
    """Create a sample forum post record for testing."""
    return SourceRecord(
        id="forum_post_abc123",
        kind=RecordKind.FORUM_POST,
        url="https://www.reddit.com/r/MachineLearning/comments/abc123/ai_safety/",
        title="What does AI safety research actually look like day to day?",
        author="researcher42",
        published_at=datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc),
        body="I've been working on interpretability for two years and wanted to share how the work is organized.",
        attributes={
            "subreddit": "MachineLearning",
            "score": 120,
            "num_comments": 34,
            "query": "ai safety",
        },
    )


@pytest.fixture
def make_record():
    """Factory for minimal valid records."""

    def _make(
        native_id: str,
        url: str,
        kind: RecordKind = RecordKind.WEB_ARTICLE,
        published_at: datetime | None = None,
    ) -> SourceRecord:
        return SourceRecord(
            id=f"{kind.value}_{native_id}",
            kind=kind,
            url=url,
            title=f"Record {native_id}",
            published_at=published_at,
            body=f"Body of record {native_id}",
        )

    return _make

"""
RSS/Atom feed collector.

Reads the configured tech-press feeds and keeps the entries that mention the
topic. Handles:
- RSS/Atom parsing (feedparser)
- Topic matching against title and summary
- Full article text via the reader service when the feed only carries an excerpt
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlsplit

import feedparser

from src.collection.base_collector import (
    BaseCollector,
    CollectionRun,
    clean_text,
    make_record_id,
    stable_hash,
    word_count,
)
from src.collection.cache import ResultCache
from src.collection.extraction import (
    MAX_ARTICLE_CHARS,
    ArticleExtractor,
    html_to_text,
)
from src.collection.http_client import RateLimitedFetcher
from src.collection.quality import ARTICLE_THRESHOLDS, check_article
from src.collection.schemas import (
    CollectorOptions,
    RecordKind,
    SourceKind,
    SourceRecord,
    is_valid_url,
    normalize_url,
)
from src.config.sources import DEFAULT_FEEDS, FeedSource

logger = logging.getLogger(__name__)

# Appended to the topic to build match terms
SEARCH_TERM_SUFFIXES = ["technology", "trends", "analysis", "future", "impact", "research"]


class FeedCollector(BaseCollector):
    """
    Feed collector for tech-press articles.

    Each feed gets an equal share of the budget (rounded up), so one busy
    feed cannot crowd out the others.

    Content Handling:
        - Feed content/summary HTML -> clean text (BeautifulSoup)
        - Excerpts shorter than the article floor are replaced with the
          full article when full-content fetching is enabled
    """

    default_max_results = 20
    max_results_cap = 50
    cache_ttl = 7200

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        cache: ResultCache | None = None,
        feeds: list[FeedSource] | None = None,
        extractor: ArticleExtractor | None = None,
        fetch_full_content: bool = True,
        default_max_results: int | None = None,
        cache_ttl: int | None = None,
    ):
        """
        Initialize feed collector.

        Args:
            fetcher: Shared rate-limited HTTP fetcher
            cache: Shared result cache
            feeds: Feeds to read (defaults to DEFAULT_FEEDS)
            extractor: Article extractor for full content
            fetch_full_content: Whether to fetch articles whose excerpt is short
            default_max_results: Budget when options do not set one
            cache_ttl: Seconds to keep results
        """
        super().__init__(fetcher, cache, default_max_results, cache_ttl)
        self._feeds = feeds if feeds is not None else list(DEFAULT_FEEDS)
        self._extractor = extractor or ArticleExtractor(fetcher)
        self._fetch_full_content = fetch_full_content

    @property
    def kind(self) -> SourceKind:
        return SourceKind.FEED

    @property
    def is_configured(self) -> bool:
        return bool(self._feeds)

    def query_variants(self, topic: str, options: CollectorOptions) -> list[str]:
        """Match terms: the topic itself, then topic + each suffix."""
        topic = topic.lower()
        return [topic] + [f"{topic} {suffix}" for suffix in SEARCH_TERM_SUFFIXES]

    def feeds_for(self, options: CollectorOptions) -> list[FeedSource]:
        category = options.filters.get("category")
        if category is None:
            return list(self._feeds)
        return [f for f in self._feeds if f.category == str(category)]

    async def _collect(
        self,
        topic: str,
        options: CollectorOptions,
        run: CollectionRun,
    ) -> None:
        """Read each feed in order, taking at most its share of the budget."""
        feeds = self.feeds_for(options)
        if not feeds:
            logger.warning(f"No feeds match filters {options.filters}")
            return

        terms = self.query_variants(topic, options)
        share = math.ceil(run.budget / len(feeds))

        for feed in feeds:
            if run.full:
                break
            try:
                await self._collect_feed(feed, terms, share, run)
            except Exception as e:
                run.stats.errors += 1
                logger.warning(f"Failed to read feed {feed.name} ({feed.url}): {e}")

    async def _collect_feed(
        self,
        feed: FeedSource,
        terms: list[str],
        share: int,
        run: CollectionRun,
    ) -> None:
        response = await self._fetcher.get(feed.url)
        parsed = feedparser.parse(response.text)

        entries = parsed.get("entries", [])
        relevant = [e for e in entries if self._matches(e, terms)][:share]
        logger.debug(
            f"Feed {feed.name}: {len(entries)} entries, {len(relevant)} relevant"
        )

        for entry in relevant:
            if run.full:
                break
            record = await self._build_record(entry, feed, terms[0], run)
            if record is None:
                continue
            run.add(record)

    def _matches(self, entry: dict[str, Any], terms: list[str]) -> bool:
        text = f"{entry.get('title', '')} {html_to_text(entry.get('summary', ''))}".lower()
        return any(term in text for term in terms)

    async def _build_record(
        self,
        entry: dict[str, Any],
        feed: FeedSource,
        query: str,
        run: CollectionRun,
    ) -> SourceRecord | None:
        url = (entry.get("link") or "").strip()
        title = clean_text(entry.get("title") or "")
        if not is_valid_url(url) or not title:
            return None

        body = clean_text(html_to_text(self._entry_html(entry)))
        author = entry.get("author") or feed.name
        published_at = _entry_timestamp(entry)
        method = "feed_summary"

        if len(body) < ARTICLE_THRESHOLDS.min_length and self._fetch_full_content:
            article = await self._extractor.extract(url)
            if article is not None and article.text:
                body = clean_text(article.text)
                author = article.author or author
                published_at = published_at or article.published_at
                method = article.method

        if not run.judge(check_article(body)):
            return None

        body = body[:MAX_ARTICLE_CHARS]
        return SourceRecord(
            id=make_record_id(RecordKind.FEED_ARTICLE, stable_hash(normalize_url(url))),
            kind=RecordKind.FEED_ARTICLE,
            url=url,
            title=title,
            author=author,
            published_at=published_at,
            body=body,
            attributes={
                "query": query,
                "feed": feed.name,
                "category": feed.category,
                "extraction_method": method,
                "domain": urlsplit(url).netloc.lower(),
                "word_count": word_count(body),
            },
        )

    def _entry_html(self, entry: dict[str, Any]) -> str:
        if entry.get("content"):
            return entry["content"][0].get("value", "")
        return entry.get("summary", "")


def _entry_timestamp(entry: dict[str, Any]) -> datetime | None:
    """UTC timestamp from feedparser's parsed struct_time fields."""
    for field in ("published_parsed", "updated_parsed", "created_parsed"):
        value = entry.get(field)
        if value:
            try:
                return datetime(*value[:6], tzinfo=timezone.utc)
            except (TypeError, ValueError):
                continue
    return None

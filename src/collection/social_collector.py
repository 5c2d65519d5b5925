"""
Twitter/X API v2 collector.

Uses the recent-search endpoint with a bearer token. Authors are joined
from the `includes.users` expansion so verified accounts can bypass the
engagement floor.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any

from src.collection.base_collector import (
    BaseCollector,
    CollectionRun,
    CollectorAuthError,
    clean_text,
    make_record_id,
)
from src.collection.cache import ResultCache
from src.collection.extraction import parse_timestamp
from src.collection.http_client import FetchError, RateLimitedFetcher
from src.collection.quality import check_social_post, social_engagement
from src.collection.schemas import (
    CollectorOptions,
    DateRange,
    RecordKind,
    SourceKind,
    SourceRecord,
)

logger = logging.getLogger(__name__)

# Twitter API v2 endpoints
TWITTER_API_BASE = "https://api.twitter.com/2"
TWEETS_SEARCH_RECENT = f"{TWITTER_API_BASE}/tweets/search/recent"

# The endpoint rejects max_results outside this range
MIN_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

# Recent search only covers the last 7 days; end_time must be
# at least END_TIME_MARGIN in the past
RECENT_SEARCH_WINDOW = timedelta(days=7)
END_TIME_MARGIN = timedelta(seconds=10)

URL_PATTERN = re.compile(r"https?://\S+")
HASHTAG_PATTERN = re.compile(r"#(\w+)")
MENTION_PATTERN = re.compile(r"@(\w+)")


def clean_post_text(text: str) -> str:
    """Replace links with [URL] and collapse whitespace."""
    return clean_text(URL_PATTERN.sub("[URL]", text))


def extract_hashtags(text: str) -> list[str]:
    return HASHTAG_PATTERN.findall(text)


def extract_mentions(text: str) -> list[str]:
    return MENTION_PATTERN.findall(text)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _format_time(value: datetime) -> str:
    return _as_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


class SocialCollector(BaseCollector):
    """
    Twitter/X collector for short posts.

    Rate Limits:
        - 450 requests per 15-min window (app auth); 429 responses carry
          x-rate-limit-reset, which the shared fetcher honors

    Content Handling:
        - Links replaced with [URL]
        - Hashtags and mentions kept in the text and extracted to attributes
        - Records keep fetch order
    """

    default_max_results = 50
    max_results_cap = 100
    cache_ttl = 1800

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        cache: ResultCache | None = None,
        bearer_token: str | None = None,
        default_max_results: int | None = None,
        cache_ttl: int | None = None,
    ):
        """
        Initialize Twitter collector.

        Args:
            fetcher: Shared rate-limited HTTP fetcher
            cache: Shared result cache
            bearer_token: Twitter API v2 bearer token
        """
        super().__init__(fetcher, cache, default_max_results, cache_ttl)
        self._bearer_token = bearer_token

    @property
    def kind(self) -> SourceKind:
        return SourceKind.SOCIAL

    @property
    def is_configured(self) -> bool:
        return bool(self._bearer_token)

    def query_variants(self, topic: str, options: CollectorOptions) -> list[str]:
        lang = options.filters.get("lang") or "en"
        return [
            f'"{topic}" -is:retweet lang:{lang}',
            f"{topic} (analysis OR trends) -is:retweet lang:{lang}",
            f"{topic} criticism -is:retweet lang:{lang}",
            f"{topic} (from:techcrunch OR from:verge OR from:wired)",
        ]

    def search_window(self, date_range: DateRange) -> tuple[datetime, datetime | None] | None:
        """
        Clamp a date range to what recent search accepts.

        Returns (start_time, end_time), with end_time None when the range
        reaches the present, or None when no part of the range is searchable.
        """
        now = datetime.fromtimestamp(self._fetcher.clock.time(), tz=timezone.utc)
        earliest = now - RECENT_SEARCH_WINDOW + END_TIME_MARGIN
        latest = now - END_TIME_MARGIN
        start = max(_as_utc(date_range.start), earliest)
        end = _as_utc(date_range.end)
        if start >= latest or end <= start:
            return None
        return start, (end if end < latest else None)

    def build_params(
        self,
        query: str,
        remaining: int,
        date_range: DateRange | None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "query": query,
            "max_results": max(MIN_PAGE_SIZE, min(remaining, MAX_PAGE_SIZE)),
            "tweet.fields": "created_at,public_metrics,author_id",
            "expansions": "author_id",
            "user.fields": "name,username,verified,public_metrics",
        }
        window = self.search_window(date_range) if date_range is not None else None
        if window is not None:
            start, end = window
            params["start_time"] = _format_time(start)
            if end is not None:
                params["end_time"] = _format_time(end)
        return params

    async def _collect(
        self,
        topic: str,
        options: CollectorOptions,
        run: CollectionRun,
    ) -> None:
        if options.date_range is not None and self.search_window(options.date_range) is None:
            logger.info(
                f"Date range {options.date_range.start} - {options.date_range.end} "
                "is outside the recent search window, skipping Twitter"
            )
            return
        await super()._collect(topic, options, run)

    async def _collect_variant(
        self,
        variant: str,
        topic: str,
        options: CollectorOptions,
        run: CollectionRun,
    ) -> None:
        try:
            response = await self._fetcher.get(
                TWEETS_SEARCH_RECENT,
                params=self.build_params(variant, run.remaining, options.date_range),
                headers={"Authorization": f"Bearer {self._bearer_token}"},
            )
        except FetchError as e:
            if e.status_code in (401, 403):
                raise CollectorAuthError(f"Twitter authentication failed: {e}") from e
            raise

        data = response.json()

        # Build author lookup from includes
        authors = {user["id"]: user for user in data.get("includes", {}).get("users", [])}

        tweets = data.get("data", [])
        logger.debug(f"Twitter search {variant!r}: {len(tweets)} tweets")

        for tweet in tweets:
            if run.full:
                break
            author = authors.get(tweet.get("author_id"), {})
            if not run.judge(check_social_post(tweet, author)):
                continue
            run.add(self._transform(tweet, author, variant))

    def _transform(
        self,
        tweet: dict[str, Any],
        author: dict[str, Any],
        query: str,
    ) -> SourceRecord | None:
        """Transform Twitter API tweet to SourceRecord."""
        try:
            text = tweet.get("text", "")
            metrics = tweet.get("public_metrics", {})
            username = author.get("username") or "i"
            name = author.get("name") or username

            return SourceRecord(
                id=make_record_id(RecordKind.SOCIAL_POST, tweet["id"]),
                kind=RecordKind.SOCIAL_POST,
                url=f"https://twitter.com/{username}/status/{tweet['id']}",
                title=f"Post by {name} (@{username})",
                author=name,
                published_at=parse_timestamp(tweet.get("created_at")),
                body=clean_post_text(text),
                attributes={
                    "query": query,
                    "username": author.get("username"),
                    "verified": bool(author.get("verified")),
                    "likes": int(metrics.get("like_count") or 0),
                    "reposts": int(metrics.get("retweet_count") or 0),
                    "replies": int(metrics.get("reply_count") or 0),
                    "quotes": int(metrics.get("quote_count") or 0),
                    "engagement": social_engagement(metrics),
                    "char_count": len(text),
                    "word_count": len(text.split()),
                    "hashtags": extract_hashtags(text),
                    "mentions": extract_mentions(text),
                },
            )
        except Exception as e:
            logger.debug(f"Failed to transform tweet {tweet.get('id')}: {e}")
            return None

"""
Reddit API collector for forum discussion.

Searches Reddit for posts about the topic and pulls the best comments of
well-discussed posts. Handles:
- OAuth2 client-credentials authentication (token cached until shortly
  before it expires)
- Site-wide and subreddit-scoped search variants
- Post and comment quality filtering before any comment request
- Reddit markdown cleanup
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any

from src.collection.base_collector import (
    BaseCollector,
    CollectionRun,
    CollectorAuthError,
    clean_text,
    make_record_id,
    word_count,
)
from src.collection.cache import ResultCache
from src.collection.http_client import FetchError, RateLimitedFetcher
from src.collection.quality import check_forum_comment, check_forum_post, forum_post_text
from src.collection.schemas import (
    CollectorOptions,
    DateRange,
    RecordKind,
    SourceKind,
    SourceRecord,
)
from src.config.sources import relevant_subreddits

logger = logging.getLogger(__name__)

# Reddit API endpoints
REDDIT_API_BASE = "https://oauth.reddit.com"
REDDIT_TOKEN_URL = "https://www.reddit.com/api/v1/access_token"
REDDIT_WEB_BASE = "https://www.reddit.com"

# Tokens are treated as expired this many seconds early
TOKEN_EXPIRY_MARGIN = 60

SCOPED_SUBREDDITS = 3
SEARCH_PAGE_LIMIT = 25
COMMENT_FETCH_LIMIT = 5
COMMENTS_PER_POST = 3
# Posts need more comments than this before their comments are fetched
MIN_COMMENTS_FOR_FETCH = 5

# Reddit's `t` search windows, smallest first
TIME_WINDOWS = [
    ("hour", 3600),
    ("day", 86400),
    ("week", 7 * 86400),
    ("month", 31 * 86400),
    ("year", 366 * 86400),
]

_SCOPE_PREFIX = re.compile(r"^r/(\w+)\s+(.*)$", re.DOTALL)


def clean_reddit_markdown(text: str) -> str:
    """
    Clean Reddit-specific markdown formatting.

    Args:
        text: Raw Reddit text with markdown

    Returns:
        Cleaned plain text
    """
    # Remove blockquotes
    text = re.sub(r'^>+\s*', '', text, flags=re.MULTILINE)

    # Remove bold/italic markers
    text = re.sub(r'\*{1,2}([^*]+)\*{1,2}', r'\1', text)

    # Remove links but keep text
    text = re.sub(r'\[([^\]]+)\]\([^)]+\)', r'\1', text)

    # Remove code fences, keep inline code text
    text = re.sub(r'```[^`]*```', '', text)
    text = re.sub(r'`([^`]+)`', r'\1', text)

    # Remove strikethrough
    text = re.sub(r'~~([^~]+)~~', r'\1', text)

    # Remove heading markers
    text = re.sub(r'^#{1,6}\s+', '', text, flags=re.MULTILINE)

    # Remove horizontal rules
    text = re.sub(r'^[-*_]{3,}\s*$', '', text, flags=re.MULTILINE)

    return text


def time_window(date_range: DateRange | None, now: float) -> str:
    """Smallest Reddit `t` window reaching back to the start of the range."""
    if date_range is None:
        return "month"
    start = date_range.start
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    age = now - start.timestamp()
    for name, seconds in TIME_WINDOWS:
        if age <= seconds:
            return name
    return "all"


def split_scope(variant: str) -> tuple[str | None, str]:
    """Split "r/<subreddit> <query>" into (subreddit, query)."""
    match = _SCOPE_PREFIX.match(variant)
    if match:
        return match.group(1), match.group(2)
    return None, variant


class ForumCollector(BaseCollector):
    """
    Reddit collector for posts and comments.

    Rate Limits:
        - 60 requests per minute (OAuth); pacing is done by the shared fetcher

    Content Handling:
        - Posts: self text, or the title for link posts
        - Comments: top comments of posts with real discussion
        - Handles Reddit markdown formatting
    """

    default_max_results = 30
    max_results_cap = 50
    cache_ttl = 3600

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        cache: ResultCache | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        user_agent: str = "research-collector/0.1.0",
        default_max_results: int | None = None,
        cache_ttl: int | None = None,
    ):
        """
        Initialize Reddit collector.

        Args:
            fetcher: Shared rate-limited HTTP fetcher
            cache: Shared result cache
            client_id: Reddit OAuth client ID
            client_secret: Reddit OAuth client secret
            user_agent: User agent string (Reddit requires a descriptive one)
        """
        super().__init__(fetcher, cache, default_max_results, cache_ttl)
        self._client_id = client_id
        self._client_secret = client_secret
        self._user_agent = user_agent
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    @property
    def kind(self) -> SourceKind:
        return SourceKind.FORUM

    @property
    def is_configured(self) -> bool:
        return bool(self._client_id) and bool(self._client_secret)

    def query_variants(self, topic: str, options: CollectorOptions) -> list[str]:
        """
        Site-wide phrasings, then the same topic scoped to the most relevant
        subreddits. A subreddit filter scopes every phrasing instead.
        """
        base = [
            topic,
            f'"{topic}"',
            f"{topic} discussion",
            f"{topic} experience",
            f"{topic} criticism",
        ]

        subreddit = options.filters.get("subreddit")
        if subreddit:
            return [f"r/{subreddit} {query}" for query in base]

        scoped = [f"r/{sub} {topic}" for sub in relevant_subreddits(topic)[:SCOPED_SUBREDDITS]]
        return base + scoped

    async def _get_access_token(self) -> str:
        """
        Get an OAuth access token, reusing the cached one until it nears expiry.

        Raises:
            CollectorAuthError: If Reddit does not issue a token
        """
        now = self._fetcher.clock.time()
        if self._access_token and now < self._token_expires_at:
            return self._access_token

        try:
            response = await self._fetcher.post(
                REDDIT_TOKEN_URL,
                auth=(self._client_id, self._client_secret),
                data={"grant_type": "client_credentials"},
                headers={"User-Agent": self._user_agent},
            )
            data = response.json()
        except (FetchError, ValueError) as e:
            raise CollectorAuthError(f"Failed to get Reddit access token: {e}") from e

        token = data.get("access_token")
        if not token:
            raise CollectorAuthError(f"Reddit token response has no access_token: {data}")

        expires_in = float(data.get("expires_in") or 3600)
        self._access_token = token
        self._token_expires_at = now + expires_in - TOKEN_EXPIRY_MARGIN
        logger.info("Authenticated with Reddit API")
        return token

    async def _api_get(self, path: str, params: dict[str, Any]) -> Any:
        token = await self._get_access_token()
        try:
            response = await self._fetcher.get(
                f"{REDDIT_API_BASE}{path}",
                params=params,
                headers={
                    "Authorization": f"Bearer {token}",
                    "User-Agent": self._user_agent,
                },
            )
        except FetchError as e:
            if e.status_code in (401, 403):
                self._access_token = None
                raise CollectorAuthError(f"Reddit rejected the access token: {e}") from e
            raise
        return response.json()

    async def _collect_variant(
        self,
        variant: str,
        topic: str,
        options: CollectorOptions,
        run: CollectionRun,
    ) -> None:
        subreddit, query = split_scope(variant)
        params: dict[str, Any] = {
            "q": query,
            "sort": "relevance",
            "t": time_window(options.date_range, self._fetcher.clock.time()),
            "limit": min(run.remaining, SEARCH_PAGE_LIMIT),
            "type": "link",
            "raw_json": 1,
        }
        if subreddit:
            path = f"/r/{subreddit}/search"
            params["restrict_sr"] = 1
        else:
            path = "/search"

        data = await self._api_get(path, params)
        posts = [child.get("data", {}) for child in data.get("data", {}).get("children", [])]
        logger.debug(f"Reddit search {variant!r}: {len(posts)} posts")

        for post in posts:
            if run.full:
                break
            if not run.judge(check_forum_post(post)):
                continue

            # Repeats across variants and posts outside the date range get no comment fetch
            if not run.add(self._transform_post(post, variant)):
                continue

            if not run.full and int(post.get("num_comments") or 0) > MIN_COMMENTS_FOR_FETCH:
                await self._collect_comments(post, variant, run)

    async def _collect_comments(
        self,
        post: dict[str, Any],
        query: str,
        run: CollectionRun,
    ) -> None:
        try:
            data = await self._api_get(
                f"/comments/{post['id']}",
                {"sort": "top", "limit": COMMENT_FETCH_LIMIT, "raw_json": 1},
            )
        except CollectorAuthError:
            raise
        except Exception as e:
            run.stats.errors += 1
            logger.warning(f"Failed to get comments for post {post.get('id')}: {e}")
            return

        children = data[1].get("data", {}).get("children", []) if len(data) > 1 else []
        comments = [c.get("data", {}) for c in children if c.get("kind") == "t1"]

        kept = 0
        for comment in comments[:COMMENT_FETCH_LIMIT]:
            if run.full or kept >= COMMENTS_PER_POST:
                break
            if not run.judge(check_forum_comment(comment)):
                continue
            if run.add(self._transform_comment(comment, post, query)):
                kept += 1

    def _transform_post(self, post: dict[str, Any], query: str) -> SourceRecord | None:
        """Transform Reddit post to SourceRecord."""
        try:
            body = clean_text(clean_reddit_markdown(forum_post_text(post)))
            return SourceRecord(
                id=make_record_id(RecordKind.FORUM_POST, post["id"]),
                kind=RecordKind.FORUM_POST,
                url=f"{REDDIT_WEB_BASE}{post['permalink']}",
                title=post.get("title", ""),
                author=post.get("author"),
                published_at=_created_at(post),
                body=body,
                attributes={
                    "query": query,
                    "subreddit": post.get("subreddit"),
                    "score": int(post.get("score") or 0),
                    "num_comments": int(post.get("num_comments") or 0),
                    "is_self_post": bool(post.get("selftext")),
                    "external_url": post.get("url"),
                    "word_count": word_count(body),
                },
            )
        except Exception as e:
            logger.debug(f"Failed to transform Reddit post {post.get('id')}: {e}")
            return None

    def _transform_comment(
        self,
        comment: dict[str, Any],
        post: dict[str, Any],
        query: str,
    ) -> SourceRecord | None:
        """Transform Reddit comment to SourceRecord."""
        try:
            body = clean_text(clean_reddit_markdown(comment.get("body", "")))
            return SourceRecord(
                id=make_record_id(RecordKind.FORUM_COMMENT, comment["id"]),
                kind=RecordKind.FORUM_COMMENT,
                url=f"{REDDIT_WEB_BASE}{comment['permalink']}",
                title=f"Comment on: {post.get('title', '')}",
                author=comment.get("author"),
                published_at=_created_at(comment),
                body=body,
                attributes={
                    "query": query,
                    "subreddit": post.get("subreddit"),
                    "score": int(comment.get("score") or 0),
                    "parent_id": post.get("id"),
                    "parent_title": post.get("title"),
                    "word_count": word_count(body),
                },
            )
        except Exception as e:
            logger.debug(f"Failed to transform Reddit comment {comment.get('id')}: {e}")
            return None


def _created_at(item: dict[str, Any]) -> datetime | None:
    created = item.get("created_utc")
    if created is None:
        return None
    return datetime.fromtimestamp(float(created), tz=timezone.utc)

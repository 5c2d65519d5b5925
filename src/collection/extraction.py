"""
Article text extraction shared by the feed and web collectors.

Two strategies:
- reader: fetch the page through a reader service (e.g. r.jina.ai) that
  returns clean text with a small header block
- html: fetch the page directly and strip it with BeautifulSoup

Both go through the RateLimitedFetcher, so pacing and retries apply.
"""

import html
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone

from bs4 import BeautifulSoup

from src.collection.http_client import FetchError, RateLimitedFetcher

logger = logging.getLogger(__name__)

# Extracted bodies are capped to keep cached lists and analysis prompts small
MAX_ARTICLE_CHARS = 10_000

# Header lines emitted by reader services before the content
_READER_HEADER = re.compile(r"^(Title|URL Source|Published Time):\s*(.*)$")
_READER_CONTENT_MARKER = "Markdown Content:"


@dataclass(frozen=True)
class ExtractedArticle:
    """Text and metadata pulled out of an article page."""

    text: str
    title: str | None = None
    author: str | None = None
    published_at: datetime | None = None
    method: str = "html"


def html_to_text(html_content: str) -> str:
    """
    Extract clean text from HTML content.

    Args:
        html_content: Raw HTML string

    Returns:
        Clean text content
    """
    if not html_content:
        return ""

    soup = BeautifulSoup(html_content, "html.parser")

    # Remove non-content elements
    for element in soup(["script", "style", "nav", "footer", "header", "aside", "form"]):
        element.decompose()

    text = soup.get_text(separator=" ")
    text = html.unescape(text)
    text = re.sub(r"\s+", " ", text)

    return text.strip()


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp (with Z suffix) to UTC, or None."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def extract_from_html(page: str) -> ExtractedArticle:
    """
    Pull title, author, publication time and body text out of an HTML page.

    Prefers <article>/<main> over the whole <body> when present.
    """
    soup = BeautifulSoup(page, "html.parser")

    title = _meta(soup, "og:title") or (soup.title.string.strip() if soup.title and soup.title.string else None)
    author = _meta(soup, "author") or _meta(soup, "article:author")
    published_at = parse_timestamp(_meta(soup, "article:published_time"))

    container = soup.find("article") or soup.find("main") or soup.body or soup
    text = html_to_text(str(container))

    return ExtractedArticle(
        text=text[:MAX_ARTICLE_CHARS],
        title=title,
        author=author,
        published_at=published_at,
        method="html",
    )


def extract_from_reader(payload: str) -> ExtractedArticle:
    """
    Parse a reader-service response.

    The response starts with "Title:", "URL Source:" and "Published Time:"
    lines followed by "Markdown Content:" and the text. Responses without
    the header block are taken as plain text.
    """
    title = None
    published_at = None
    body = payload

    if _READER_CONTENT_MARKER in payload:
        header, body = payload.split(_READER_CONTENT_MARKER, 1)
        for line in header.splitlines():
            match = _READER_HEADER.match(line.strip())
            if not match:
                continue
            name, value = match.groups()
            if name == "Title":
                title = value.strip() or None
            elif name == "Published Time":
                published_at = parse_timestamp(value)

    text = " ".join(body.split())
    return ExtractedArticle(
        text=text[:MAX_ARTICLE_CHARS],
        title=title,
        published_at=published_at,
        method="reader",
    )


class ArticleExtractor:
    """
    Fetches an article page and extracts its text.

    Uses the reader service when one is configured, falling back to direct
    HTML extraction if the reader request fails.
    """

    def __init__(self, fetcher: RateLimitedFetcher, reader_url: str | None = None):
        self._fetcher = fetcher
        self._reader_url = reader_url

    async def extract(self, url: str) -> ExtractedArticle | None:
        """
        Extract an article.

        Returns:
            ExtractedArticle, or None if the page could not be fetched
        """
        if self._reader_url:
            try:
                response = await self._fetcher.get(f"{self._reader_url}{url}")
                article = extract_from_reader(response.text)
                if article.text:
                    return article
            except FetchError as e:
                logger.warning(f"Reader extraction failed for {url}: {e}")

        try:
            response = await self._fetcher.get(url)
        except FetchError as e:
            logger.warning(f"Failed to fetch article {url}: {e}")
            return None

        return extract_from_html(response.text)


def _meta(soup: BeautifulSoup, name: str) -> str | None:
    tag = soup.find("meta", attrs={"property": name}) or soup.find("meta", attrs={"name": name})
    if tag and tag.get("content"):
        return tag["content"].strip()
    return None

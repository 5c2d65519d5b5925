"""
Web search collector.

Searches DuckDuckGo's HTML endpoint for articles about the topic, then fetches
and extracts each result page. Search result links point at a redirect
wrapper (/l/?uddg=<target>); the target URL is decoded from it.
"""

import logging
from typing import Any
from urllib.parse import parse_qs, urlsplit

from bs4 import BeautifulSoup

from src.collection.base_collector import (
    BaseCollector,
    CollectionRun,
    clean_text,
    make_record_id,
    stable_hash,
    word_count,
)
from src.collection.cache import ResultCache
from src.collection.extraction import ArticleExtractor
from src.collection.http_client import RateLimitedFetcher
from src.collection.quality import QualityVerdict, check_article
from src.collection.schemas import (
    CollectorOptions,
    RecordKind,
    SourceKind,
    SourceRecord,
    is_valid_url,
    normalize_url,
)

logger = logging.getLogger(__name__)

SEARCH_URL = "https://html.duckduckgo.com/html/"
SEARCH_ENGINE_HOST = "duckduckgo.com"

# The HTML endpoint serves an empty page to unknown clients
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)


def decode_result_url(href: str) -> str | None:
    """
    Resolve a search result href to the target URL.

    Returns None for search-engine internal links and anything that is not
    an absolute http(s) URL.
    """
    if not href:
        return None
    if href.startswith("//"):
        href = f"https:{href}"

    parts = urlsplit(href)
    if parts.netloc.endswith(SEARCH_ENGINE_HOST):
        target = parse_qs(parts.query).get("uddg", [None])[0]
        if not target:
            return None
        href = target

    if not is_valid_url(href) or urlsplit(href).netloc.endswith(SEARCH_ENGINE_HOST):
        return None
    return href


def parse_search_results(page: str) -> list[tuple[str, str]]:
    """
    Extract (url, title) pairs from a search results page, in page order.

    Duplicate targets are dropped.
    """
    soup = BeautifulSoup(page, "html.parser")
    anchors = soup.select("a.result__a") or soup.find_all("a", href=True)

    results: dict[str, str] = {}
    for anchor in anchors:
        url = decode_result_url(anchor.get("href", ""))
        if url and url not in results:
            results[url] = clean_text(anchor.get_text(" "))
    return list(results.items())


class WebCollector(BaseCollector):
    """
    Web search collector for blog posts and articles.

    Results are fetched one by one through the article extractor; pages
    that cannot be fetched or fail the article filter are skipped.
    """

    default_max_results = 10
    max_results_cap = 30
    cache_ttl = 7200

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        cache: ResultCache | None = None,
        extractor: ArticleExtractor | None = None,
        default_max_results: int | None = None,
        cache_ttl: int | None = None,
    ):
        super().__init__(fetcher, cache, default_max_results, cache_ttl)
        self._extractor = extractor or ArticleExtractor(fetcher)

    @property
    def kind(self) -> SourceKind:
        return SourceKind.WEB

    def query_variants(self, topic: str, options: CollectorOptions) -> list[str]:
        variants = [
            f"{topic} analysis",
            f"{topic} trends",
            f"{topic} criticism",
            f'"{topic}" tech blog analysis insights',
        ]
        site = options.filters.get("site")
        if site:
            variants = [f"{v} site:{site}" for v in variants]
        return variants

    async def _collect_variant(
        self,
        variant: str,
        topic: str,
        options: CollectorOptions,
        run: CollectionRun,
    ) -> None:
        response = await self._fetcher.get(
            SEARCH_URL,
            params={"q": variant},
            headers={"User-Agent": BROWSER_USER_AGENT},
        )
        results = parse_search_results(response.text)
        logger.debug(f"Web search {variant!r}: {len(results)} results")

        for url, anchor_title in results:
            if run.full:
                break
            record_id = make_record_id(RecordKind.WEB_ARTICLE, stable_hash(normalize_url(url)))
            if run.has(record_id):
                continue

            record = await self._build_record(record_id, url, anchor_title, variant, run)
            run.add(record)

    async def _build_record(
        self,
        record_id: str,
        url: str,
        anchor_title: str,
        query: str,
        run: CollectionRun,
    ) -> SourceRecord | None:
        article = await self._extractor.extract(url)
        if article is None:
            run.judge(QualityVerdict(False, "unreachable"))
            return None

        body = clean_text(article.text)
        if not run.judge(check_article(body)):
            return None

        attributes: dict[str, Any] = {
            "query": query,
            "extraction_method": article.method,
            "domain": urlsplit(url).netloc.lower(),
            "word_count": word_count(body),
        }
        return SourceRecord(
            id=record_id,
            kind=RecordKind.WEB_ARTICLE,
            url=url,
            title=article.title or anchor_title,
            author=article.author,
            published_at=article.published_at,
            body=body,
            attributes=attributes,
        )

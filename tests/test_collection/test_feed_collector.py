"""Tests for the RSS/Atom feed collector."""

import httpx
import pytest
import respx

from src.collection.extraction import ArticleExtractor
from src.collection.feed_collector import FeedCollector
from src.collection.schemas import CollectorOptions, RecordKind
from src.config.sources import FeedSource

LONG_BODY = (
    "<p>AI safety teams are growing quickly across the industry. "
    "This piece looks at how labs structure evaluations, red-teaming and "
    "interpretability work, and what that means for startups building on "
    "frontier models over the next few years.</p>"
)

TECH_FEED = FeedSource("https://tech.example.com/feed", "Tech Daily", "tech")
VC_FEED = FeedSource("https://vc.example.com/feed", "VC Notes", "vc")


def _rss(items: list[tuple[str, str, str]]) -> str:
    body = "".join(
        f"""
        <item>
          <title>{title}</title>
          <link>{link}</link>
          <description><![CDATA[{description}]]></description>
          <author>editor@example.com (Jane Editor)</author>
          <pubDate>Wed, 01 Jan 2025 12:00:00 GMT</pubDate>
        </item>"""
        for title, link, description in items
    )
    return f"""<?xml version="1.0"?>
    <rss version="2.0"><channel><title>Feed</title>{body}</channel></rss>"""


TECH_RSS = _rss(
    [
        ("AI safety goes mainstream", "https://tech.example.com/ai-safety", LONG_BODY),
        ("New phone review", "https://tech.example.com/phone", "<p>Unrelated gadget news.</p>"),
        ("Why AI safety matters for startups", "https://tech.example.com/startups", LONG_BODY),
        ("AI safety funding round", "https://tech.example.com/funding", LONG_BODY),
    ]
)

VC_RSS = _rss(
    [
        ("Our thesis on AI safety tooling", "https://vc.example.com/thesis", "<p>Short teaser.</p>"),
    ]
)


@pytest.fixture
def collector(fetcher, cache):
    return FeedCollector(
        fetcher,
        cache,
        feeds=[TECH_FEED, VC_FEED],
        extractor=ArticleExtractor(fetcher, reader_url=None),
    )


class TestFeedCollector:
    def test_search_terms(self, collector):
        terms = collector.query_variants("AI Safety", CollectorOptions())

        assert terms[0] == "ai safety"
        assert "ai safety trends" in terms
        assert len(terms) == 7

    @pytest.mark.asyncio
    async def test_collects_matching_entries(self, collector):
        article_html = f"<html><body><article>{LONG_BODY}</article></body></html>"
        with respx.mock:
            respx.get(TECH_FEED.url).mock(return_value=httpx.Response(200, text=TECH_RSS))
            respx.get(VC_FEED.url).mock(return_value=httpx.Response(200, text=VC_RSS))
            respx.get("https://vc.example.com/thesis").mock(
                return_value=httpx.Response(200, text=article_html)
            )

            records = await collector.collect("AI safety", CollectorOptions(max_results=4))

        # ceil(4 / 2 feeds) = 2 per feed
        assert [r.url for r in records] == [
            "https://tech.example.com/ai-safety",
            "https://tech.example.com/startups",
            "https://vc.example.com/thesis",
        ]
        first = records[0]
        assert first.kind == RecordKind.FEED_ARTICLE
        assert first.id.startswith("feed_article_")
        assert first.attributes["feed"] == "Tech Daily"
        assert first.attributes["extraction_method"] == "feed_summary"
        assert first.published_at is not None
        assert records[2].attributes["extraction_method"] == "html"

    @pytest.mark.asyncio
    async def test_short_excerpt_dropped_without_full_content(self, fetcher, cache):
        collector = FeedCollector(fetcher, cache, feeds=[VC_FEED], fetch_full_content=False)
        with respx.mock:
            respx.get(VC_FEED.url).mock(return_value=httpx.Response(200, text=VC_RSS))

            records = await collector.collect("AI safety")

        assert records == []
        assert collector.stats.rejected.counts == {"too_short": 1}

    @pytest.mark.asyncio
    async def test_category_filter(self, collector):
        with respx.mock(assert_all_called=False) as router:
            tech = router.get(TECH_FEED.url).mock(return_value=httpx.Response(200, text=TECH_RSS))
            vc = router.get(VC_FEED.url).mock(return_value=httpx.Response(200, text=VC_RSS))

            records = await collector.collect(
                "AI safety", CollectorOptions(filters={"category": "tech"})
            )

            assert tech.called
            assert not vc.called
        assert len(records) == 3

    @pytest.mark.asyncio
    async def test_failing_feed_does_not_stop_others(self, collector):
        with respx.mock:
            respx.get(TECH_FEED.url).mock(return_value=httpx.Response(404))
            respx.get(VC_FEED.url).mock(return_value=httpx.Response(200, text=VC_RSS))
            respx.get("https://vc.example.com/thesis").mock(
                return_value=httpx.Response(200, text=f"<article>{LONG_BODY}</article>")
            )

            records = await collector.collect("AI safety")

        assert len(records) == 1
        assert collector.stats.errors == 1

    @pytest.mark.asyncio
    async def test_idempotent_through_cache(self, collector):
        with respx.mock:
            route = respx.get(TECH_FEED.url).mock(return_value=httpx.Response(200, text=TECH_RSS))
            respx.get(VC_FEED.url).mock(return_value=httpx.Response(200, text=_rss([])))

            first = await collector.collect("AI safety")
            calls = route.call_count
            second = await collector.collect("AI safety")

            assert route.call_count == calls
        assert first == second

"""
Curated source lists used by the collectors.

Feeds are tracked by the feed collector unless FEED_URLS overrides them.
Subreddits are picked for the forum collector based on keywords in the topic.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class FeedSource:
    """An RSS/Atom feed tracked by the feed collector."""

    url: str
    name: str
    category: str


# Tech press and venture blogs
DEFAULT_FEEDS = [
    FeedSource("https://techcrunch.com/feed/", "TechCrunch", "tech"),
    FeedSource("https://feeds.wired.com/wired/index", "Wired", "tech"),
    FeedSource("https://www.theverge.com/rss/index.xml", "The Verge", "tech"),
    FeedSource("https://a16z.com/feed/", "Andreessen Horowitz", "vc"),
    FeedSource("https://blog.ycombinator.com/feed/", "Y Combinator", "startup"),
]

# Always searched, in this order
BASE_SUBREDDITS = [
    "technology",
    "programming",
    "MachineLearning",
    "webdev",
    "startups",
    "Futurology",
    "tech",
    "software",
    "dataisbeautiful",
    "sysadmin",
]

# Topic keyword -> extra subreddits, checked in this order
TOPIC_SUBREDDITS = [
    (("ai", "machine learning"), ["MachineLearning", "artificial", "deeplearning"]),
    (("startup", "business"), ["startups", "Entrepreneur", "business"]),
    (("programming", "coding"), ["programming", "learnprogramming", "webdev", "coding"]),
]


def relevant_subreddits(topic: str) -> list[str]:
    """
    Return subreddits relevant to a topic, topic-specific ones first.

    Keyword matches are on whole words so "ai" does not match "said".
    The result is deterministic and free of duplicates.
    """
    words = set(topic.lower().split())
    topic_lower = topic.lower()

    specific: list[str] = []
    for keywords, subreddits in TOPIC_SUBREDDITS:
        if any((k in words) if " " not in k else (k in topic_lower) for k in keywords):
            specific.extend(subreddits)

    return list(dict.fromkeys(specific + BASE_SUBREDDITS))


def parse_feed_urls(value: list[str] | None) -> list[FeedSource]:
    """
    Build feed sources from a list of URLs, falling back to the defaults.

    Feeds configured by URL only get the host as their name and no category.
    """
    if not value:
        return list(DEFAULT_FEEDS)

    known = {feed.url: feed for feed in DEFAULT_FEEDS}
    feeds = []
    for url in value:
        url = url.strip()
        if not url:
            continue
        if url in known:
            feeds.append(known[url])
            continue
        host = url.split("//", 1)[-1].split("/", 1)[0]
        feeds.append(FeedSource(url=url, name=host, category="custom"))
    return feeds or list(DEFAULT_FEEDS)

"""
Quality filters for raw candidates, one set of thresholds per source kind.

Every filter has the same shape:
- a minimum content length (drops boilerplate and empty items)
- an engagement floor that an authoritative originator may bypass
- a deny-list of low-quality markers that only very high engagement overrides
- separate, usually stricter, thresholds for derived content such as replies

The functions are pure. Collectors call them on raw API items before
normalization and before any per-item enrichment request.
"""

import re
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class QualityThresholds:
    """Tunable thresholds for one kind of candidate."""

    min_length: int = 0
    min_engagement: int = 0
    # If set, a candidate passes the engagement floor by meeting either floor
    min_secondary_engagement: int | None = None
    # Verified/high-authority originators bypass the engagement floor
    authority_override: bool = False
    deny_markers: tuple[str, ...] = ()
    deny_patterns: tuple[re.Pattern, ...] = ()
    # Engagement at which deny-list matches are forgiven; None means never
    deny_override_engagement: int | None = None


@dataclass(frozen=True)
class QualityCandidate:
    """Signals extracted from a raw item."""

    text: str
    engagement: int = 0
    secondary_engagement: int = 0
    authoritative: bool = False


@dataclass(frozen=True)
class QualityVerdict:
    accepted: bool
    reason: str = "ok"

    def __bool__(self) -> bool:
        return self.accepted


ACCEPT = QualityVerdict(True)


def evaluate(candidate: QualityCandidate, thresholds: QualityThresholds) -> QualityVerdict:
    """
    Decide whether a candidate is worth keeping.

    Args:
        candidate: Text and engagement signals of the raw item
        thresholds: Thresholds for the item's kind

    Returns:
        QualityVerdict with the first failing rule as reason
    """
    text = candidate.text.strip()
    if len(text) < thresholds.min_length:
        return QualityVerdict(False, "too_short")

    authority = thresholds.authority_override and candidate.authoritative

    below_primary = candidate.engagement < thresholds.min_engagement
    below_secondary = (
        thresholds.min_secondary_engagement is None
        or candidate.secondary_engagement < thresholds.min_secondary_engagement
    )
    if below_primary and below_secondary and not authority:
        return QualityVerdict(False, "low_engagement")

    if _matches_deny_list(text, thresholds):
        forgiven = authority or (
            thresholds.deny_override_engagement is not None
            and candidate.engagement >= thresholds.deny_override_engagement
        )
        if not forgiven:
            return QualityVerdict(False, "low_quality_marker")

    return ACCEPT


def _matches_deny_list(text: str, thresholds: QualityThresholds) -> bool:
    lowered = text.lower()
    if any(marker in lowered for marker in thresholds.deny_markers):
        return True
    return any(pattern.search(text) for pattern in thresholds.deny_patterns)


# Forum (Reddit)

FORUM_POST_THRESHOLDS = QualityThresholds(
    min_length=100,
    min_engagement=3,  # score
    min_secondary_engagement=5,  # comments
    deny_markers=(
        "shitpost",
        "meme",
        "clickbait",
        "first time",
        "new here",
        "what do you think",
    ),
    deny_override_engagement=10,
)

FORUM_COMMENT_THRESHOLDS = QualityThresholds(
    min_length=100,
    min_engagement=1,
    deny_patterns=(
        re.compile(r"^\s*this\.\s*$", re.IGNORECASE),
        re.compile(r"^\s*thanks\s*$", re.IGNORECASE),
        re.compile(r"^\s*good point\s*$", re.IGNORECASE),
        re.compile(r"^\s*i agree\s*$", re.IGNORECASE),
        re.compile(r"^\s*\+\d+\s*$"),
        re.compile(r"^\s*edit:", re.IGNORECASE),
    ),
)

# Social (Twitter)

SOCIAL_POST_THRESHOLDS = QualityThresholds(
    min_length=50,
    min_engagement=5,  # likes + reposts
    authority_override=True,
    deny_markers=("click here", "buy now", "free money", "🚀", "moon", "100x"),
    deny_override_engagement=1000,
)

# Articles (feeds and web pages)

ARTICLE_THRESHOLDS = QualityThresholds(
    min_length=200,
    deny_markers=(
        "page not found",
        "access denied",
        "enable javascript",
        "subscribe to continue",
        "sponsored content",
    ),
)


def forum_post_text(post: dict[str, Any]) -> str:
    """Text judged for a forum post: self text, else the title."""
    return post.get("selftext") or post.get("title") or ""


def check_forum_post(
    post: dict[str, Any],
    thresholds: QualityThresholds = FORUM_POST_THRESHOLDS,
) -> QualityVerdict:
    """Judge a raw Reddit post (listing `data` object)."""
    if post.get("over_18"):
        return QualityVerdict(False, "nsfw")
    return evaluate(
        QualityCandidate(
            text=forum_post_text(post),
            engagement=int(post.get("score") or 0),
            secondary_engagement=int(post.get("num_comments") or 0),
        ),
        thresholds,
    )


def check_forum_comment(
    comment: dict[str, Any],
    thresholds: QualityThresholds = FORUM_COMMENT_THRESHOLDS,
) -> QualityVerdict:
    """Judge a raw Reddit comment."""
    return evaluate(
        QualityCandidate(
            text=comment.get("body") or "",
            engagement=int(comment.get("score") or 0),
        ),
        thresholds,
    )


def social_engagement(metrics: dict[str, Any] | None) -> int:
    """Likes plus reposts from Twitter public_metrics."""
    metrics = metrics or {}
    return int(metrics.get("like_count") or 0) + int(metrics.get("retweet_count") or 0)


def check_social_post(
    tweet: dict[str, Any],
    author: dict[str, Any] | None = None,
    thresholds: QualityThresholds = SOCIAL_POST_THRESHOLDS,
) -> QualityVerdict:
    """Judge a raw tweet together with its expanded author."""
    return evaluate(
        QualityCandidate(
            text=tweet.get("text") or "",
            engagement=social_engagement(tweet.get("public_metrics")),
            authoritative=bool((author or {}).get("verified")),
        ),
        thresholds,
    )


def check_article(
    text: str,
    thresholds: QualityThresholds = ARTICLE_THRESHOLDS,
) -> QualityVerdict:
    """Judge extracted article text; articles carry no engagement signal."""
    return evaluate(QualityCandidate(text=text), thresholds)


@dataclass
class FilterTally:
    """Rejection counts by reason, for end-of-run logging."""

    counts: dict[str, int] = field(default_factory=dict)

    def add(self, verdict: QualityVerdict) -> None:
        if not verdict.accepted:
            self.counts[verdict.reason] = self.counts.get(verdict.reason, 0) + 1

    @property
    def total(self) -> int:
        return sum(self.counts.values())

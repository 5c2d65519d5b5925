"""Tests for quality filters."""

from src.collection.quality import (
    FilterTally,
    QualityCandidate,
    QualityThresholds,
    QualityVerdict,
    check_article,
    check_forum_comment,
    check_forum_post,
    check_social_post,
    evaluate,
    social_engagement,
)

LONG_TEXT = (
    "Interpretability research tries to explain what large models compute internally, "
    "and recent work on sparse autoencoders has made real progress on that front."
)


def _post(**overrides):
    post = {
        "id": "p1",
        "title": "Sparse autoencoders for interpretability",
        "selftext": LONG_TEXT,
        "score": 12,
        "num_comments": 8,
        "over_18": False,
    }
    post.update(overrides)
    return post


class TestEvaluate:
    def test_too_short(self):
        verdict = evaluate(QualityCandidate(text="short"), QualityThresholds(min_length=10))

        assert not verdict
        assert verdict.reason == "too_short"

    def test_below_both_engagement_floors(self):
        thresholds = QualityThresholds(min_engagement=3, min_secondary_engagement=5)

        assert evaluate(QualityCandidate("x", engagement=2, secondary_engagement=4), thresholds).reason == "low_engagement"
        assert evaluate(QualityCandidate("x", engagement=3, secondary_engagement=0), thresholds)
        assert evaluate(QualityCandidate("x", engagement=0, secondary_engagement=5), thresholds)

    def test_authority_override_needs_permission(self):
        allowed = QualityThresholds(min_engagement=5, authority_override=True)
        denied = QualityThresholds(min_engagement=5)
        candidate = QualityCandidate("x", engagement=0, authoritative=True)

        assert evaluate(candidate, allowed)
        assert not evaluate(candidate, denied)

    def test_deny_marker_forgiven_by_engagement(self):
        thresholds = QualityThresholds(deny_markers=("meme",), deny_override_engagement=10)

        assert evaluate(QualityCandidate("A MEME post", engagement=9), thresholds).reason == "low_quality_marker"
        assert evaluate(QualityCandidate("A MEME post", engagement=10), thresholds)


class TestForumFilters:
    def test_good_post_accepted(self):
        assert check_forum_post(_post()) == QualityVerdict(True)

    def test_nsfw_dropped(self):
        assert check_forum_post(_post(over_18=True)).reason == "nsfw"

    def test_short_post_rejected(self):
        assert check_forum_post(_post(selftext="", title="tiny")).reason == "too_short"

    def test_title_used_for_link_posts(self):
        assert check_forum_post(_post(selftext="", title=LONG_TEXT))

    def test_low_engagement_post(self):
        assert check_forum_post(_post(score=2, num_comments=4)).reason == "low_engagement"

    def test_marker_rejected_unless_high_score(self):
        text = "First time posting here, hope this is useful. " + LONG_TEXT

        assert check_forum_post(_post(selftext=text, score=5)).reason == "low_quality_marker"
        assert check_forum_post(_post(selftext=text, score=10))

    def test_comment_thresholds(self):
        assert check_forum_comment({"body": LONG_TEXT, "score": 1})
        assert check_forum_comment({"body": LONG_TEXT, "score": 0}).reason == "low_engagement"
        assert check_forum_comment({"body": "thanks", "score": 50}).reason == "too_short"
        edit = "Edit: " + LONG_TEXT
        assert check_forum_comment({"body": edit, "score": 50}).reason == "low_quality_marker"


class TestSocialFilters:
    def test_engagement_is_likes_plus_reposts(self):
        assert social_engagement({"like_count": 3, "retweet_count": 2, "reply_count": 9}) == 5
        assert social_engagement(None) == 0

    def test_low_engagement_rejected_unless_verified(self):
        tweet = {"text": LONG_TEXT, "public_metrics": {"like_count": 1, "retweet_count": 0}}

        assert check_social_post(tweet, {"verified": False}).reason == "low_engagement"
        assert check_social_post(tweet, {"verified": True})

    def test_spam_marker(self):
        tweet = {
            "text": "This token will 100x by friday, get in now. " + LONG_TEXT,
            "public_metrics": {"like_count": 50, "retweet_count": 10},
        }

        assert check_social_post(tweet, {}).reason == "low_quality_marker"
        assert check_social_post(tweet, {"verified": True})

        viral = dict(tweet, public_metrics={"like_count": 900, "retweet_count": 100})
        assert check_social_post(viral, {})


class TestArticleFilter:
    def test_article_length_floor(self):
        assert not check_article(LONG_TEXT[:150])
        assert check_article(LONG_TEXT * 2)

    def test_markers_always_reject(self):
        assert check_article("Subscribe to continue reading. " + LONG_TEXT * 2).reason == "low_quality_marker"


class TestFilterTally:
    def test_counts_rejections_by_reason(self):
        tally = FilterTally()

        tally.add(QualityVerdict(True))
        tally.add(QualityVerdict(False, "too_short"))
        tally.add(QualityVerdict(False, "too_short"))
        tally.add(QualityVerdict(False, "nsfw"))

        assert tally.counts == {"too_short": 2, "nsfw": 1}
        assert tally.total == 3

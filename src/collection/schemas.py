"""
Canonical record schema for the collection pipeline.

CRITICAL: Every collector MUST output SourceRecord. The orchestrator, the
cache and downstream callers (analysis, publishing) depend on these field
names. Records are frozen: they are built once per collection and never
mutated afterwards.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SourceKind(str, Enum):
    """Categories of external origin, one collector each.

    Declaration order is the default merge priority.
    """

    FEED = "feed"
    WEB = "web"
    FORUM = "forum"
    SOCIAL = "social"


class RecordKind(str, Enum):
    """Categories of collected content."""

    FEED_ARTICLE = "feed_article"
    WEB_ARTICLE = "web_article"
    FORUM_POST = "forum_post"
    FORUM_COMMENT = "forum_comment"
    SOCIAL_POST = "social_post"


# Values allowed in SourceRecord.attributes
AttributeValue = str | int | float | bool | list[str] | None
FilterValue = str | int | float | bool


def is_valid_url(url: str | None) -> bool:
    """Check that a URL is absolute http(s) with a host."""
    if not url or any(c.isspace() for c in url):
        return False
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def normalize_url(url: str) -> str:
    """Dedup key for a URL: lower-cased, trailing slashes removed."""
    return url.strip().lower().rstrip("/")


class SourceRecord(BaseModel):
    """
    CANONICAL RECORD SCHEMA

    Identity is `id` alone; it is derived from the record kind and the
    origin identifier so the same item collected twice gets the same id.
    `attributes` carries per-kind metadata for ranking and filtering only.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(
        ...,
        description="Stable ID in format: {record_kind}_{native_id}",
        examples=["forum_post_abc123", "feed_article_a1b2c3d4e5f67890"],
    )
    kind: RecordKind = Field(..., description="Record category")
    url: str = Field(..., description="Canonical origin URL")
    title: str = Field(default="", description="Title or synthesized heading")
    author: str | None = Field(default=None, description="Author or publisher name")
    published_at: datetime | None = Field(
        default=None,
        description="UTC publication timestamp if the source provides one",
    )
    body: str = Field(
        ...,
        min_length=1,
        description="Extracted text content, whitespace-normalized",
    )
    attributes: dict[str, AttributeValue] = Field(
        default_factory=dict,
        description="Source-specific metadata (never used for identity)",
    )

    @field_validator("id")
    @classmethod
    def validate_id_format(cls, v: str) -> str:
        """Ensure ID follows kind_nativeid format."""
        if "_" not in v:
            raise ValueError("ID must be in format: {record_kind}_{native_id}")
        return v

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        if not is_valid_url(v):
            raise ValueError(f"Not a valid http(s) URL: {v!r}")
        return v

    @field_validator("body")
    @classmethod
    def normalize_body(cls, v: str) -> str:
        """Collapse whitespace runs."""
        return " ".join(v.split())

    @field_validator("published_at")
    @classmethod
    def ensure_utc(cls, v: datetime | None) -> datetime | None:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def normalized_url(self) -> str:
        return normalize_url(self.url)

    def to_cache_dict(self) -> dict[str, Any]:
        """JSON-safe representation stored in the result cache."""
        return self.model_dump(mode="json")


class DateRange(BaseModel):
    """Inclusive publication window."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def check_order(self) -> "DateRange":
        if _as_utc(self.start) > _as_utc(self.end):
            raise ValueError("date range start must not be after end")
        return self

    def contains(self, ts: datetime) -> bool:
        start, end, ts = (_as_utc(d) for d in (self.start, self.end, ts))
        return start <= ts <= end


class CollectorOptions(BaseModel):
    """Per-call options for a collector.

    Filters understood by the collectors:
        feed:   category (str) - only feeds in this category
        web:    site (str) - restrict search to a domain
        forum:  subreddit (str) - search only this subreddit
        social: lang (str) - tweet language, default "en"
    """

    model_config = ConfigDict(frozen=True)

    max_results: int | None = Field(default=None, ge=1)
    date_range: DateRange | None = None
    filters: dict[str, FilterValue] = Field(default_factory=dict)

    def cache_fragment(self) -> str:
        """Deterministic serialization so distinct option sets never collide."""
        return json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))

    def with_max_results(self, max_results: int) -> "CollectorOptions":
        return self.model_validate({**self.model_dump(), "max_results": max_results})


class SourceDiagnostic(BaseModel):
    """Outcome of one source within an orchestrated run."""

    source: str
    status: Literal["ok", "skipped", "failed", "timed_out", "invalid_topic"]
    requested: int = 0
    returned: int = 0
    message: str | None = None


class CollectionReport(BaseModel):
    """Merged result of an orchestrated run plus per-source diagnostics."""

    topic: str
    records: list[SourceRecord] = Field(default_factory=list)
    diagnostics: list[SourceDiagnostic] = Field(default_factory=list)
    timed_out: bool = False
    elapsed_seconds: float = 0.0


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

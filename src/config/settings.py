"""Application settings using Pydantic Settings for environment-based configuration."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the research collector.

    All settings can be overridden via environment variables.
    Prefix is not used to allow standard env var names (e.g., REDDIT_CLIENT_ID).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    debug: bool = False

    # Result cache (SQLite file, survives restarts)
    cache_path: str = "./data/cache.db"
    cache_sweep_interval_seconds: float = Field(default=3600.0, gt=0)

    # HTTP
    http_timeout_seconds: float = Field(default=30.0, gt=0)
    http_user_agent: str = "research-collector/0.1.0"

    # Rate limiting (minimum seconds between requests to the same host)
    min_request_interval_seconds: float = Field(default=1.0, ge=0.0)
    host_request_intervals: dict[str, float] = Field(default_factory=dict)

    # Retry policy
    max_http_retries: int = Field(default=1, ge=0, le=10)
    rate_limit_delay_seconds: float = Field(default=60.0, ge=0.0, le=900.0)
    transient_delay_seconds: float = Field(default=5.0, ge=0.0, le=300.0)

    # Reddit API
    reddit_client_id: str | None = None
    reddit_client_secret: str | None = None
    reddit_user_agent: str = "research-collector/0.1.0"

    # Twitter API v2
    twitter_bearer_token: str | None = None

    # Feeds and article extraction
    feed_urls: list[str] = Field(default_factory=list)
    article_reader_url: str | None = "https://r.jina.ai/"
    fetch_full_content: bool = True

    # Default result counts per source kind
    feed_max_results: int = Field(default=20, ge=1)
    web_max_results: int = Field(default=10, ge=1)
    forum_max_results: int = Field(default=30, ge=1)
    social_max_results: int = Field(default=50, ge=1)

    # Cache TTLs per source kind (seconds)
    feed_cache_ttl: int = Field(default=7200, gt=0)
    web_cache_ttl: int = Field(default=7200, gt=0)
    forum_cache_ttl: int = Field(default=3600, gt=0)
    social_cache_ttl: int = Field(default=1800, gt=0)

    # Orchestrator
    default_max_results: int = Field(default=20, ge=1, le=500)
    collection_deadline_seconds: float | None = Field(default=300.0, gt=0)

    # Observability
    metrics_port: int = 8000

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def twitter_configured(self) -> bool:
        """Check if Twitter API is configured."""
        return bool(self.twitter_bearer_token)

    @property
    def reddit_configured(self) -> bool:
        """Check if Reddit API is configured."""
        return bool(self.reddit_client_id) and bool(self.reddit_client_secret)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    Clear cache with get_settings.cache_clear() if needed.
    """
    return Settings()

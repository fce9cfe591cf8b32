"""TweetPulse: Central Configuration via Pydantic Settings."""

import os
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Database ──
    database_url: str = ""

    # ── Apify (scraper platform) ──
    apify_token: str = ""
    apify_actor_id: str = "apidojo~tweet-scraper"
    apify_actor_build: Optional[str] = None
    apify_base_url: str = "https://api.apify.com/v2"
    apify_wait_timeout_secs: int = 900  # Upper bound on waiting for a run
    apify_http_timeout_secs: float = 90.0

    # ── Live ingestion defaults ──
    tweet_language: Optional[str] = "en"
    tweet_sort: str = "Latest"  # Latest | Top
    ingestion_max_items: int = 100  # Total across all keywords
    use_date_filtering: bool = False
    default_lookback_days: int = 7
    minimum_retweets: Optional[int] = None
    minimum_favorites: Optional[int] = None
    minimum_replies: Optional[int] = None
    dedup_chunk_size: int = 500

    # ── Backfill ──
    backfill_max_items: int = 200

    # ── Sentiment provider ──
    sentiment_provider: str = "gemini"  # gemini | claude
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta/models"
    anthropic_api_key: Optional[str] = None
    claude_model: str = "claude-sonnet-4-20250514"
    sentiment_model_version: str = ""  # Defaults to the provider model name

    # ── Sentiment processor ──
    sentiment_batch_size: int = 10
    sentiment_max_retries: int = 3
    sentiment_concurrency: Optional[int] = None
    sentiment_rpm_cap: Optional[int] = None
    sentiment_tpm_cap: Optional[int] = None
    sentiment_tokens_per_request: int = 600
    sentiment_request_delay_secs: float = 4.0
    sentiment_request_timeout_secs: float = 30.0
    sentiment_transport_retries: int = 3

    # ── App ──
    log_level: str = "INFO"
    internal_api_key: Optional[str] = None
    scheduler_enabled: bool = True
    collection_hours: str = "*/6"  # Cron expression for the hour field
    sentiment_interval_minutes: int = 30
    retention_days: int = 0  # 0 keeps every revision forever

    @property
    def effective_database_url(self) -> str:
        """Return PostgreSQL URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        if os.environ.get("VERCEL"):
            return "sqlite:////tmp/tweetpulse.db"
        return "sqlite:///./tweetpulse.db"

    @property
    def effective_model_version(self) -> str:
        if self.sentiment_model_version:
            return self.sentiment_model_version
        if self.sentiment_provider == "claude":
            return self.claude_model
        return self.gemini_model

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()

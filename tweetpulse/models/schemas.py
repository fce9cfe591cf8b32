"""TweetPulse: Pipeline Schemas (non-table Pydantic models)."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


# ─────────────────────────────────────────────
# NORMALIZATION
# ─────────────────────────────────────────────


class NormalizationContext(BaseModel):
    """Per-attempt context handed to the normalizer."""

    run_id: str
    collected_at: datetime
    keywords: List[str] = []
    raw_tweet_id: Optional[int] = None
    collector: str = "apify-actor"


class NormalizedTweetPrototype(BaseModel):
    """A normalized tweet before it has a database id."""

    raw_tweet_id: Optional[int] = None
    run_id: str
    platform: str = "twitter"
    platform_id: str
    revision: int = 1
    author_handle: Optional[str] = None
    author_name: Optional[str] = None
    posted_at: datetime
    collected_at: datetime
    language: Optional[str] = None
    content: str
    url: Optional[str] = None
    engagement_likes: Optional[int] = None
    engagement_retweets: Optional[int] = None
    keyword_snapshot: List[str] = []
    status: str = "pending_sentiment"
    status_changed_at: datetime
    model_context: Dict[str, Any] = {}


# ─────────────────────────────────────────────
# SCRAPER
# ─────────────────────────────────────────────


class MinimumEngagement(BaseModel):
    retweets: Optional[int] = None
    favorites: Optional[int] = None
    replies: Optional[int] = None


class ScraperConfig(BaseModel):
    """One scraper invocation covering every keyword up to a shared cap."""

    keywords: List[str]
    tweet_language: Optional[str] = None
    sort: str = "Latest"  # "Latest" | "Top"
    max_items: int = Field(default=100, ge=1)
    since_date: Optional[str] = None
    until_date: Optional[str] = None
    minimum_engagement: MinimumEngagement = MinimumEngagement()


class ApifyRun(BaseModel):
    """State of an actor run as reported by Apify."""

    run_id: str
    status: str
    actor_id: str = ""
    dataset_id: Optional[str] = None
    item_count: Optional[int] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None


class ScraperResult(BaseModel):
    run: ApifyRun
    items: List[Dict[str, Any]] = []


# ─────────────────────────────────────────────
# INGESTION
# ─────────────────────────────────────────────


class IngestionResult(BaseModel):
    """Outcome of one ingestion attempt, mirrored in its cron_runs row."""

    run_id: str
    status: str
    new_count: int = 0
    duplicate_count: int = 0
    error_count: int = 0
    candidate_count: int = 0
    errors: List[Dict[str, Any]] = []


# ─────────────────────────────────────────────
# SENTIMENT
# ─────────────────────────────────────────────


class TokenUsage(BaseModel):
    prompt: int = 0
    completion: int = 0
    total: int = 0


class SentimentRequest(BaseModel):
    tweet_id: int
    content: str
    author_handle: Optional[str] = None
    language: Optional[str] = None


class SentimentOutcome(BaseModel):
    """Classified result of one provider call: success or a typed failure."""

    success: bool
    label: Optional[str] = None
    score: Optional[float] = None
    summary: Optional[str] = None
    error_code: Optional[str] = None
    retryable: bool = False
    message: Optional[str] = None
    latency_ms: int = 0
    token_usage: Optional[TokenUsage] = None

    @classmethod
    def failure(
        cls, code: str, message: str, retryable: bool, latency_ms: int = 0
    ) -> "SentimentOutcome":
        return cls(
            success=False,
            error_code=code,
            message=message,
            retryable=retryable,
            latency_ms=latency_ms,
        )


class ProcessingStats(BaseModel):
    """Aggregate counters returned by a sentiment processor run."""

    processed: int = 0
    failed: int = 0
    skipped: int = 0
    total_latency_ms: int = 0
    total_tokens: int = 0

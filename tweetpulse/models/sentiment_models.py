"""TweetPulse: Sentiment Results & Failure Ledger (Append-Only)."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field


class SentimentLabel(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class TweetSentiment(SQLModel, table=True):
    """A sentiment classification of one normalized tweet revision.

    Several may exist per tweet (one per model version / replay);
    the current one is the latest by processed_at.
    """

    __tablename__ = "tweet_sentiments"

    id: Optional[int] = Field(default=None, primary_key=True)
    normalized_tweet_id: int = Field(foreign_key="normalized_tweets.id", index=True)
    model_version: str
    sentiment_label: str
    sentiment_score: float = Field(description="Clamped to [-1, 1]")
    reasoning: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    processed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    latency_ms: Optional[int] = None


class SentimentFailure(SQLModel, table=True):
    """One failed enrichment attempt. retry_count is the running total."""

    __tablename__ = "sentiment_failures"

    id: Optional[int] = Field(default=None, primary_key=True)
    normalized_tweet_id: int = Field(foreign_key="normalized_tweets.id", index=True)
    model_version: Optional[str] = None
    failure_stage: str
    error_code: Optional[str] = None
    error_message: str
    retry_count: int = Field(default=1, index=True)
    last_attempt_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    payload: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

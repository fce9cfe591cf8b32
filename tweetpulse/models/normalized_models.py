"""TweetPulse: Normalized Tweet Models (Append-Only Revisions).

Every status change inserts a new revision; rows are never updated in place.
The current state of a tweet is its highest revision for
(platform, platform_id).
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field, UniqueConstraint


class TweetStatus(str, Enum):
    PENDING_SENTIMENT = "pending_sentiment"
    PROCESSED = "processed"
    FAILED = "failed"


class NormalizedTweet(SQLModel, table=True):
    """One revision of a canonical tweet record.

    Unique constraint on (platform, platform_id, revision) keeps the
    revision log gap-free per natural key.
    """

    __tablename__ = "normalized_tweets"
    __table_args__ = (
        UniqueConstraint(
            "platform",
            "platform_id",
            "revision",
            name="uq_normalized_tweet_revision",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    raw_tweet_id: Optional[int] = Field(default=None, foreign_key="raw_tweets.id")
    run_id: str = Field(index=True)
    platform: str = Field(default="twitter", index=True)
    platform_id: str = Field(index=True)
    revision: int = Field(default=1)
    author_handle: Optional[str] = None
    author_name: Optional[str] = None
    posted_at: datetime
    collected_at: datetime
    language: Optional[str] = None
    content: str
    url: Optional[str] = None
    engagement_likes: Optional[int] = None
    engagement_retweets: Optional[int] = None
    keyword_snapshot: List[str] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    status: str = Field(default=TweetStatus.PENDING_SENTIMENT.value, index=True)
    status_changed_at: datetime
    model_context: Dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=False)
    )
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

"""TweetPulse: Raw Data Models (Immutable)."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field, UniqueConstraint


class IngestionReason(str, Enum):
    INITIAL = "initial"
    BACKFILL = "backfill"


class RawTweet(SQLModel, table=True):
    """Immutable raw item as returned by the scraper dataset.

    Never modify this data: it's the audit trail.
    """

    __tablename__ = "raw_tweets"
    __table_args__ = (
        UniqueConstraint("run_id", "platform", "platform_id", name="uq_raw_tweet_run"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    run_id: str = Field(index=True, description="Cron run that collected the item")
    platform: str = Field(default="twitter", index=True)
    platform_id: str = Field(index=True, description="Source platform's post id")
    collected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    payload: Dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
        description="Raw item plus collection context",
    )
    ingestion_reason: str = Field(default=IngestionReason.INITIAL.value)

"""TweetPulse: Run Audit, Backfill Queue & Keyword Models."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field


class RunStatus(str, Enum):
    SUCCEEDED = "succeeded"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


class BackfillStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_BACKFILL_STATUSES = {BackfillStatus.COMPLETED.value, BackfillStatus.FAILED.value}


class CronRun(SQLModel, table=True):
    """Immutable audit row: one per ingestion attempt (live or backfill)."""

    __tablename__ = "cron_runs"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    trigger_source: str = Field(index=True)
    keyword_batch: List[str] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    started_at: datetime = Field(index=True)
    finished_at: datetime
    status: str = Field(index=True)
    processed_new_count: int = 0
    processed_duplicate_count: int = 0
    processed_error_count: int = 0
    # "metadata" is reserved on declarative classes
    run_metadata: Dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    errors: List[Dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )


class BackfillBatch(SQLModel, table=True):
    """Historical (keywords, date window) work item.

    pending → running → completed | failed. The metadata dict carries
    attempt_count, apify_run_id, dataset_id, counts and timestamps.
    """

    __tablename__ = "backfill_batches"

    id: Optional[int] = Field(default=None, primary_key=True)
    keywords: List[str] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    start_date: str = Field(description="ISO date or datetime, inclusive")
    end_date: str = Field(description="ISO date or datetime")
    status: str = Field(default=BackfillStatus.PENDING.value, index=True)
    priority: int = Field(default=0, index=True)
    batch_metadata: Dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Keyword(SQLModel, table=True):
    """Tracked search keyword. Managed outside this service."""

    __tablename__ = "keywords"

    id: Optional[int] = Field(default=None, primary_key=True)
    keyword: str = Field(unique=True)
    is_enabled: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

"""TweetPulse: Backfill Batch Scheduler.

Priority queue of historical (keywords, date window) batches:

    pending → running → completed | failed

A batch records the Apify run id as soon as the run is started. If the
process dies after that point, processing the batch again without
``force_new_run`` reuses that run instead of paying for a second scrape.
"""

import uuid
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlmodel import Session, select

from tweetpulse.config import settings
from tweetpulse.connectors.apify.scraper import TwitterScraper
from tweetpulse.core.errors import (
    BackfillBatchNotFound,
    BackfillGuardError,
    BackfillStateError,
)
from tweetpulse.core.logging import get_logger
from tweetpulse.core.utils import utcnow
from tweetpulse.models.raw_models import IngestionReason
from tweetpulse.models.run_models import (
    TERMINAL_BACKFILL_STATUSES,
    BackfillBatch,
    BackfillStatus,
)
from tweetpulse.models.schemas import IngestionResult, ScraperConfig
from tweetpulse.pipeline.ingest import ingest_items, record_failed_attempt

logger = get_logger("pipeline.backfill")


def _as_iso(value: date | datetime | str) -> str:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def plan_batches(
    keywords: List[str],
    total_days: int,
    batch_days: int,
    end: Optional[date] = None,
    base_priority: int = 100,
    priority_step: int = 10,
) -> List[Dict[str, Any]]:
    """Split a lookback window into newest-first batches.

    Newer windows get higher priority so they are scraped first.
    """
    if total_days <= 0 or batch_days <= 0:
        raise ValueError("total_days and batch_days must be positive")
    end = end or utcnow().date()
    count = -(-total_days // batch_days)  # ceil

    batches = []
    for i in range(count):
        batch_end = end - timedelta(days=i * batch_days)
        batch_start = batch_end - timedelta(days=batch_days)
        batches.append(
            {
                "keywords": list(keywords),
                "start_date": batch_start.isoformat(),
                "end_date": batch_end.isoformat(),
                "priority": base_priority - i * priority_step,
            }
        )
    return batches


class BackfillScheduler:
    """Enqueue, pick and process backfill batches."""

    def __init__(
        self,
        session: Session,
        scraper: TwitterScraper,
        max_items: int | None = None,
        tweet_language: str | None = None,
    ):
        self.session = session
        self.scraper = scraper
        self.max_items = max_items or settings.backfill_max_items
        self.tweet_language = tweet_language or settings.tweet_language

    # ── Queue ──

    def enqueue_batch(
        self,
        keywords: List[str],
        start_date: date | datetime | str,
        end_date: date | datetime | str,
        priority: int = 0,
    ) -> int:
        keywords = [k for k in (kw.strip() for kw in keywords) if k]
        if not keywords:
            raise ValueError("A backfill batch needs at least one keyword")
        start, end = _as_iso(start_date), _as_iso(end_date)
        if start > end:
            raise ValueError(f"start_date {start} is after end_date {end}")

        batch = BackfillBatch(
            keywords=keywords,
            start_date=start,
            end_date=end,
            priority=priority,
            status=BackfillStatus.PENDING.value,
            batch_metadata={"attempt_count": 0},
        )
        self.session.add(batch)
        self.session.commit()
        self.session.refresh(batch)
        logger.info(
            f"Enqueued backfill batch {start} → {end} (priority {priority})",
            extra={"batch_id": batch.id},
        )
        return batch.id

    def get_batch(self, batch_id: int) -> Optional[BackfillBatch]:
        return self.session.get(BackfillBatch, batch_id)

    def get_next_batch(self) -> Optional[BackfillBatch]:
        """Highest priority pending batch; oldest first on ties."""
        return self.session.exec(
            select(BackfillBatch)
            .where(BackfillBatch.status == BackfillStatus.PENDING.value)
            .order_by(
                BackfillBatch.priority.desc(),  # type: ignore
                BackfillBatch.created_at,
                BackfillBatch.id,
            )
            .limit(1)
        ).first()

    def list_batches(self, status: Optional[str] = None, limit: int = 50) -> List[BackfillBatch]:
        query = select(BackfillBatch).order_by(BackfillBatch.created_at.desc()).limit(limit)  # type: ignore
        if status:
            query = query.where(BackfillBatch.status == status)
        return list(self.session.exec(query).all())

    def _update(
        self,
        batch: BackfillBatch,
        status: BackfillStatus,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        batch.status = status.value
        batch.batch_metadata = {**(batch.batch_metadata or {}), **(metadata or {})}
        batch.updated_at = utcnow()
        self.session.add(batch)
        self.session.commit()

    # ── Processing ──

    async def process_batch(
        self, batch_id: int, force_new_run: bool = False
    ) -> IngestionResult:
        """Run one batch through scrape → ingest.

        Without ``force_new_run`` a recorded Apify run is reused and a batch
        with no recorded run is refused.
        """
        batch = self.get_batch(batch_id)
        if batch is None:
            raise BackfillBatchNotFound(f"Backfill batch {batch_id} not found")
        if batch.status in TERMINAL_BACKFILL_STATUSES:
            raise BackfillStateError(f"Backfill batch {batch_id} is already {batch.status}")

        prior_run_id = (batch.batch_metadata or {}).get("apify_run_id")
        if not prior_run_id and not force_new_run:
            raise BackfillGuardError(
                f"Backfill batch {batch_id} has no recorded Apify run; "
                "pass force_new_run=True to start one"
            )

        keywords = list(batch.keywords)
        attempt_count = int((batch.batch_metadata or {}).get("attempt_count", 0)) + 1
        started_at = utcnow()
        self._update(
            batch,
            BackfillStatus.RUNNING,
            {"attempt_count": attempt_count, "last_started_at": started_at.isoformat()},
        )
        logger.info(f"Processing backfill batch (attempt {attempt_count})", extra={"batch_id": batch_id})

        trigger_source = f"backfill:{batch_id}"
        ingestion: Optional[IngestionResult] = None
        try:
            reused = bool(prior_run_id) and not force_new_run
            if reused:
                run_id = prior_run_id
                logger.info(
                    "Reusing Apify run from a previous attempt",
                    extra={"batch_id": batch_id, "apify_run_id": run_id},
                )
            else:
                run = await self.scraper.start(
                    ScraperConfig(
                        keywords=keywords,
                        tweet_language=self.tweet_language,
                        sort="Latest",
                        max_items=self.max_items,
                        since_date=batch.start_date,
                        until_date=batch.end_date,
                    )
                )
                run_id = run.run_id
                self._update(
                    batch,
                    BackfillStatus.RUNNING,
                    {"apify_run_id": run_id, "apify_run_started_at": utcnow().isoformat()},
                )

            result = await self.scraper.collect(run_id, self.max_items)
            ingestion = ingest_items(
                self.session,
                items=result.items,
                keywords=keywords,
                run_id=str(uuid.uuid4()),
                trigger_source=trigger_source,
                started_at=started_at,
                ingestion_reason=IngestionReason.BACKFILL,
                metadata={
                    "backfill_batch_id": batch_id,
                    "apify_run_id": run_id,
                    "dataset_id": result.run.dataset_id,
                    "reused_run": reused,
                    "start_date": batch.start_date,
                    "end_date": batch.end_date,
                },
            )

            self._update(
                batch,
                BackfillStatus.COMPLETED,
                {
                    "dataset_id": result.run.dataset_id,
                    "cron_run_id": ingestion.run_id,
                    "new_count": ingestion.new_count,
                    "duplicate_count": ingestion.duplicate_count,
                    "error_count": ingestion.error_count,
                    "completed_at": utcnow().isoformat(),
                },
            )
            logger.info(
                f"Backfill batch completed: new={ingestion.new_count} "
                f"duplicates={ingestion.duplicate_count}",
                extra={"batch_id": batch_id},
            )
            return ingestion

        except Exception as e:
            logger.error(f"Backfill batch failed: {e}", extra={"batch_id": batch_id})
            if ingestion is None:
                record_failed_attempt(
                    self.session,
                    trigger_source,
                    keywords,
                    started_at,
                    e,
                    {"backfill_batch_id": batch_id},
                )
            else:
                self.session.rollback()
            batch = self.get_batch(batch_id)
            self._update(
                batch,
                BackfillStatus.FAILED,
                {"error_message": str(e), "failed_at": utcnow().isoformat()},
            )
            raise

    async def process_next(self, force_new_run: bool = True) -> Optional[IngestionResult]:
        """Advance the queue by one batch. None when nothing is pending."""
        batch = self.get_next_batch()
        if batch is None:
            logger.info("No pending backfill batches")
            return None
        return await self.process_batch(batch.id, force_new_run=force_new_run)

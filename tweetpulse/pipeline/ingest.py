"""TweetPulse: Ingestion Attempt.

Shared by live collection and backfill batches:

  collapse candidates → batched dedup lookup → normalize
  → store raw + normalized revision 1 (one savepoint per tweet) → record cron run

Per-item problems land in the attempt's error list and the item is skipped.
Persistence errors propagate: the caller records the attempt as failed.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlmodel import Session

from tweetpulse.config import settings
from tweetpulse.connectors.apify.transformer import (
    PLATFORM,
    extract_platform_id,
    normalize_tweet,
)
from tweetpulse.core.errors import NormalizationError
from tweetpulse.core.logging import get_logger
from tweetpulse.core.utils import utcnow
from tweetpulse.models.raw_models import IngestionReason, RawTweet
from tweetpulse.models.run_models import RunStatus
from tweetpulse.models.schemas import IngestionResult, NormalizationContext, NormalizedTweetPrototype
from tweetpulse.storage.cron_runs import determine_status, record_cron_run
from tweetpulse.storage.normalized_tweets import (
    fetch_existing_platform_ids,
    insert_first_revisions,
)

logger = get_logger("pipeline.ingest")


def collapse_candidates(
    items: List[Dict[str, Any]],
) -> Tuple[Dict[str, Dict[str, Any]], List[Dict[str, Any]], int]:
    """First-seen-wins map of platform_id → item.

    Returns (candidates, errors, in_batch_duplicates). Items without any
    identifier alias become ``normalization_precheck_failed`` errors.
    """
    candidates: Dict[str, Dict[str, Any]] = {}
    errors: List[Dict[str, Any]] = []
    in_batch_duplicates = 0

    for item in items:
        try:
            platform_id = extract_platform_id(item)
        except NormalizationError as e:
            errors.append(
                {
                    "type": "normalization_precheck_failed",
                    "code": e.code,
                    "message": str(e),
                    "item": item,
                }
            )
            continue
        if platform_id in candidates:
            in_batch_duplicates += 1
            continue
        candidates[platform_id] = item

    return candidates, errors, in_batch_duplicates


def ingest_items(
    session: Session,
    items: List[Dict[str, Any]],
    keywords: List[str],
    run_id: str,
    trigger_source: str,
    started_at: datetime,
    ingestion_reason: IngestionReason = IngestionReason.INITIAL,
    metadata: Optional[Dict[str, Any]] = None,
    chunk_size: Optional[int] = None,
) -> IngestionResult:
    """Persist one attempt's scraper items and write its audit row."""
    candidates, errors, in_batch_duplicates = collapse_candidates(items)

    existing = fetch_existing_platform_ids(
        session,
        PLATFORM,
        candidates.keys(),
        chunk_size=chunk_size or settings.dedup_chunk_size,
    )
    new_ids = [pid for pid in candidates if pid not in existing]

    # ── Normalize ──
    collected_at = utcnow()
    context = NormalizationContext(
        run_id=run_id, collected_at=collected_at, keywords=keywords
    )
    prototypes: Dict[str, NormalizedTweetPrototype] = {}
    for platform_id in new_ids:
        try:
            prototypes[platform_id] = normalize_tweet(candidates[platform_id], context)
        except NormalizationError as e:
            errors.append(
                {
                    "type": "normalization_failed",
                    "code": e.code,
                    "platform_id": platform_id,
                    "message": str(e),
                }
            )
        except Exception as e:
            logger.warning(
                f"Unexpected error normalizing {platform_id}: {e}",
                extra={"run_id": run_id},
            )
            errors.append(
                {
                    "type": "normalization_failed",
                    "code": NormalizationError.code,
                    "platform_id": platform_id,
                    "message": f"{type(e).__name__}: {e}",
                }
            )

    # ── Store raw + normalized revision 1 in one transaction ──
    pairs = [
        (
            RawTweet(
                run_id=run_id,
                platform=PLATFORM,
                platform_id=platform_id,
                collected_at=collected_at,
                payload={
                    "item": candidates[platform_id],
                    "keywords": keywords,
                    "fetched_at": collected_at.isoformat(),
                },
                ingestion_reason=ingestion_reason.value,
            ),
            prototype,
        )
        for platform_id, prototype in prototypes.items()
    ]
    stored, late_duplicates = insert_first_revisions(session, pairs)

    # ── Audit ──
    new_count = len(stored)
    duplicate_count = len(existing) + len(late_duplicates)
    status = determine_status(new_count, len(errors))

    record_cron_run(
        session,
        run_id=run_id,
        trigger_source=trigger_source,
        keyword_batch=keywords,
        started_at=started_at,
        finished_at=utcnow(),
        status=status,
        new_count=new_count,
        duplicate_count=duplicate_count,
        error_count=len(errors),
        metadata={
            **(metadata or {}),
            "ingestion_reason": ingestion_reason.value,
            "candidate_count": len(candidates),
            "item_count": len(items),
            "in_batch_duplicate_count": in_batch_duplicates,
            "late_duplicate_count": len(late_duplicates),
        },
        errors=errors,
    )

    logger.info(
        f"Ingestion attempt complete: new={new_count} duplicates={duplicate_count} "
        f"errors={len(errors)}",
        extra={"run_id": run_id},
    )
    return IngestionResult(
        run_id=run_id,
        status=status.value,
        new_count=new_count,
        duplicate_count=duplicate_count,
        error_count=len(errors),
        candidate_count=len(candidates),
        errors=errors,
    )


def record_failed_attempt(
    session: Session,
    trigger_source: str,
    keywords: List[str],
    started_at: datetime,
    error: BaseException,
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    """Write the failed audit row for an attempt that raised.

    The original error is what the caller re-raises; a failure to write
    this row is only logged.
    """
    session.rollback()
    try:
        record_cron_run(
            session,
            trigger_source=trigger_source,
            keyword_batch=keywords,
            started_at=started_at,
            finished_at=utcnow(),
            status=RunStatus.FAILED,
            error_count=1,
            metadata={**(metadata or {}), "fatal_error": True},
            errors=[{"type": "actor_crash", "message": str(error)}],
        )
    except Exception as log_error:
        session.rollback()
        logger.error(f"Failed to record failed attempt in cron_runs: {log_error}")

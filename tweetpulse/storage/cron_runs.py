"""TweetPulse: Cron Run Recorder.

One immutable audit row per ingestion attempt, live or backfill.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from tweetpulse.core.logging import get_logger
from tweetpulse.models.run_models import CronRun, RunStatus

logger = get_logger("storage.cron_runs")


def determine_status(new_count: int, error_count: int) -> RunStatus:
    """Shared by live and backfill attempts.

    no errors → succeeded; errors with new rows → partial_success;
    errors without new rows → failed.
    """
    if error_count == 0:
        return RunStatus.SUCCEEDED
    if new_count > 0:
        return RunStatus.PARTIAL_SUCCESS
    return RunStatus.FAILED


def record_cron_run(
    session: Session,
    trigger_source: str,
    keyword_batch: List[str],
    started_at: datetime,
    finished_at: datetime,
    status: RunStatus | str,
    new_count: int = 0,
    duplicate_count: int = 0,
    error_count: int = 0,
    metadata: Optional[Dict[str, Any]] = None,
    errors: Optional[List[Dict[str, Any]]] = None,
    run_id: Optional[str] = None,
) -> CronRun:
    row = CronRun(
        trigger_source=trigger_source,
        keyword_batch=list(keyword_batch),
        started_at=started_at,
        finished_at=finished_at,
        status=status.value if isinstance(status, RunStatus) else status,
        processed_new_count=new_count,
        processed_duplicate_count=duplicate_count,
        processed_error_count=error_count,
        run_metadata=metadata or {},
        errors=errors or [],
    )
    if run_id:
        row.id = run_id
    session.add(row)
    session.commit()
    session.refresh(row)
    logger.info(
        f"Cron run recorded: {row.status} "
        f"(new={new_count}, duplicates={duplicate_count}, errors={error_count})",
        extra={"run_id": row.id},
    )
    return row


def get_last_successful_run(session: Session) -> Optional[CronRun]:
    return session.exec(
        select(CronRun)
        .where(CronRun.status == RunStatus.SUCCEEDED.value)
        .order_by(CronRun.started_at.desc())  # type: ignore
        .limit(1)
    ).first()


def count_failed_runs_since(session: Session, since: datetime) -> int:
    return session.exec(
        select(func.count())
        .select_from(CronRun)
        .where(CronRun.status == RunStatus.FAILED.value, CronRun.started_at >= since)
    ).one()

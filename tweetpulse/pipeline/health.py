"""TweetPulse: Pipeline Health Checks.

Each check reports ok / warning / critical; the overall status is the worst.
"""

from datetime import timedelta
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy import func
from sqlmodel import Session, select

from tweetpulse.core.logging import get_logger
from tweetpulse.core.utils import ensure_utc, utcnow
from tweetpulse.models.normalized_models import TweetStatus
from tweetpulse.models.run_models import BackfillBatch, BackfillStatus
from tweetpulse.storage.cron_runs import count_failed_runs_since, get_last_successful_run
from tweetpulse.storage.normalized_tweets import count_current_by_status
from tweetpulse.storage.sentiments import count_failures_with_retries

logger = get_logger("pipeline.health")

OK = "ok"
WARNING = "warning"
CRITICAL = "critical"
_SEVERITY = {OK: 0, WARNING: 1, CRITICAL: 2}

PENDING_WARN = 100
PENDING_CRITICAL = 200
FAILURE_RETRY_THRESHOLD = 3
FAILURES_WARN = 10
FAILURES_CRITICAL = 50
FAILED_RUN_LOOKBACK = timedelta(hours=2)
SUCCESS_MAX_AGE = timedelta(hours=7)


class HealthCheck(BaseModel):
    name: str
    status: str
    value: Optional[float] = None
    message: str


class HealthReport(BaseModel):
    status: str
    checks: List[HealthCheck]


def _tiered(value: int, warn_at: int, critical_at: int) -> str:
    if value < warn_at:
        return OK
    if value < critical_at:
        return WARNING
    return CRITICAL


def check_pending_backlog(session: Session) -> HealthCheck:
    pending = count_current_by_status(session, TweetStatus.PENDING_SENTIMENT.value)
    return HealthCheck(
        name="pending_sentiment_backlog",
        status=_tiered(pending, PENDING_WARN, PENDING_CRITICAL),
        value=pending,
        message=f"{pending} tweets awaiting sentiment",
    )


def check_sentiment_failures(session: Session) -> HealthCheck:
    failures = count_failures_with_retries(session, FAILURE_RETRY_THRESHOLD)
    return HealthCheck(
        name="sentiment_failures",
        status=_tiered(failures, FAILURES_WARN, FAILURES_CRITICAL),
        value=failures,
        message=f"{failures} ledger entries at {FAILURE_RETRY_THRESHOLD}+ retries",
    )


def check_recent_failed_runs(session: Session) -> HealthCheck:
    failed = count_failed_runs_since(session, utcnow() - FAILED_RUN_LOOKBACK)
    return HealthCheck(
        name="recent_failed_runs",
        status=OK if failed == 0 else CRITICAL,
        value=failed,
        message=f"{failed} failed ingestion runs in the last 2h",
    )


def check_last_success(session: Session) -> HealthCheck:
    last = get_last_successful_run(session)
    if last is None:
        return HealthCheck(
            name="last_successful_run",
            status=CRITICAL,
            message="No successful ingestion run recorded",
        )
    age = utcnow() - ensure_utc(last.started_at)
    hours = round(age.total_seconds() / 3600, 2)
    return HealthCheck(
        name="last_successful_run",
        status=OK if age < SUCCESS_MAX_AGE else CRITICAL,
        value=hours,
        message=f"Last successful run {hours}h ago",
    )


def check_failed_backfills(session: Session) -> HealthCheck:
    failed = session.exec(
        select(func.count())
        .select_from(BackfillBatch)
        .where(BackfillBatch.status == BackfillStatus.FAILED.value)
    ).one()
    return HealthCheck(
        name="failed_backfill_batches",
        status=OK if failed == 0 else WARNING,
        value=failed,
        message=f"{failed} backfill batches failed",
    )


def run_health_checks(session: Session) -> HealthReport:
    checks = [
        check_pending_backlog(session),
        check_sentiment_failures(session),
        check_recent_failed_runs(session),
        check_last_success(session),
        check_failed_backfills(session),
    ]
    overall = max((c.status for c in checks), key=_SEVERITY.__getitem__)
    if overall != OK:
        logger.warning(
            f"Pipeline health {overall}: "
            + ", ".join(f"{c.name}={c.status}" for c in checks if c.status != OK)
        )
    return HealthReport(status=overall, checks=checks)

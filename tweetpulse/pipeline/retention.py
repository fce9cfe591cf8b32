"""TweetPulse: Operator-invoked Revision Compaction."""

from datetime import timedelta
from typing import Optional

from sqlmodel import Session

from tweetpulse.config import settings
from tweetpulse.core.logging import get_logger
from tweetpulse.core.utils import utcnow
from tweetpulse.storage.normalized_tweets import compact_revisions

logger = get_logger("pipeline.retention")


def run_retention(session: Session, retention_days: Optional[int] = None) -> int:
    """Drop superseded revisions older than ``retention_days``.

    A value of 0 disables compaction entirely.
    """
    days = settings.retention_days if retention_days is None else retention_days
    if days <= 0:
        logger.info("Retention disabled (retention_days=0)")
        return 0
    cutoff = utcnow() - timedelta(days=days)
    return compact_revisions(session, cutoff)

"""TweetPulse: Sentiment Results & Failure Ledger."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func
from sqlalchemy.orm import aliased
from sqlmodel import Session, select

from tweetpulse.core.logging import get_logger
from tweetpulse.core.utils import utcnow
from tweetpulse.models.normalized_models import NormalizedTweet, TweetStatus
from tweetpulse.models.sentiment_models import SentimentFailure, TweetSentiment
from tweetpulse.storage.normalized_tweets import select_current

logger = get_logger("storage.sentiments")


def insert_sentiment(
    session: Session,
    normalized_tweet_id: int,
    model_version: str,
    label: str,
    score: float,
    reasoning: Optional[Dict[str, Any]] = None,
    latency_ms: Optional[int] = None,
    processed_at: Optional[datetime] = None,
) -> TweetSentiment:
    sentiment = TweetSentiment(
        normalized_tweet_id=normalized_tweet_id,
        model_version=model_version,
        sentiment_label=label,
        sentiment_score=score,
        reasoning=reasoning,
        latency_ms=latency_ms,
        processed_at=processed_at or utcnow(),
    )
    session.add(sentiment)
    session.commit()
    session.refresh(sentiment)
    return sentiment


def record_failure(
    session: Session,
    normalized_tweet_id: int,
    failure_stage: str,
    error_message: str,
    retry_count: int,
    model_version: Optional[str] = None,
    error_code: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> SentimentFailure:
    failure = SentimentFailure(
        normalized_tweet_id=normalized_tweet_id,
        model_version=model_version,
        failure_stage=failure_stage,
        error_code=error_code,
        error_message=error_message,
        retry_count=retry_count,
        last_attempt_at=utcnow(),
        payload=payload,
    )
    session.add(failure)
    session.commit()
    session.refresh(failure)
    logger.info(
        f"Recorded {failure_stage} failure for tweet {normalized_tweet_id} (retry {retry_count})",
        extra={"tweet_id": normalized_tweet_id, "error_code": error_code},
    )
    return failure


def _failures_for_key(platform: str, platform_id: str):
    """Failures for any revision of one tweet, newest first."""
    return (
        select(SentimentFailure)
        .join(NormalizedTweet, SentimentFailure.normalized_tweet_id == NormalizedTweet.id)
        .where(
            NormalizedTweet.platform == platform,
            NormalizedTweet.platform_id == platform_id,
        )
        .order_by(SentimentFailure.id.desc())  # type: ignore
    )


def get_retry_count(session: Session, tweet: NormalizedTweet) -> int:
    """Running retry count: the latest ledger entry across all revisions."""
    latest = session.exec(_failures_for_key(tweet.platform, tweet.platform_id).limit(1)).first()
    return latest.retry_count if latest else 0


def get_failures(session: Session, tweet: NormalizedTweet) -> List[SentimentFailure]:
    return list(session.exec(_failures_for_key(tweet.platform, tweet.platform_id)).all())


def get_latest_sentiment(session: Session, tweet: NormalizedTweet) -> Optional[TweetSentiment]:
    return session.exec(
        select(TweetSentiment)
        .join(NormalizedTweet, TweetSentiment.normalized_tweet_id == NormalizedTweet.id)
        .where(
            NormalizedTweet.platform == tweet.platform,
            NormalizedTweet.platform_id == tweet.platform_id,
        )
        .order_by(TweetSentiment.processed_at.desc(), TweetSentiment.id.desc())  # type: ignore
        .limit(1)
    ).first()


def _latest_failure_per_key():
    """Newest ledger id per natural key, across every revision of the tweet."""
    revision = aliased(NormalizedTweet)
    return (
        select(
            revision.platform,
            revision.platform_id,
            func.max(SentimentFailure.id).label("failure_id"),
        )
        .select_from(SentimentFailure)
        .join(revision, SentimentFailure.normalized_tweet_id == revision.id)
        .group_by(revision.platform, revision.platform_id)
        .subquery()
    )


def get_replay_candidates(
    session: Session, min_retry_count: int, limit: int
) -> List[NormalizedTweet]:
    """Currently-failed tweets whose running retry count is at least the minimum.

    Oldest last attempt first, filtered and limited in one query.
    """
    latest_failure = _latest_failure_per_key()
    return list(
        session.exec(
            select_current()
            .join(
                latest_failure,
                and_(
                    NormalizedTweet.platform == latest_failure.c.platform,
                    NormalizedTweet.platform_id == latest_failure.c.platform_id,
                ),
            )
            .join(SentimentFailure, SentimentFailure.id == latest_failure.c.failure_id)
            .where(
                NormalizedTweet.status == TweetStatus.FAILED.value,
                SentimentFailure.retry_count >= min_retry_count,
            )
            .order_by(SentimentFailure.last_attempt_at, NormalizedTweet.id)
            .limit(limit)
        ).all()
    )


def count_failures_with_retries(session: Session, min_retry_count: int) -> int:
    return session.exec(
        select(func.count())
        .select_from(SentimentFailure)
        .where(SentimentFailure.retry_count >= min_retry_count)
    ).one()

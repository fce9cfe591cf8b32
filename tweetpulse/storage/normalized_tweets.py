"""TweetPulse: Normalized Tweet Revision Log.

Readers never trust a single row: the current state of a tweet is its
highest revision per (platform, platform_id). Writers only ever insert.
"""

from datetime import datetime
from typing import Iterable, List, Optional, Set, Tuple

from sqlalchemy import and_, delete, func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from tweetpulse.core.logging import get_logger
from tweetpulse.core.utils import chunked, utcnow
from tweetpulse.models.normalized_models import NormalizedTweet, TweetStatus
from tweetpulse.models.raw_models import RawTweet
from tweetpulse.models.schemas import NormalizedTweetPrototype
from tweetpulse.models.sentiment_models import SentimentFailure, TweetSentiment
from tweetpulse.storage.raw_tweets import stage_raw_tweet

logger = get_logger("storage.normalized")

DEFAULT_LOOKUP_CHUNK = 500


# ── Current-revision view ──


def _latest_revisions():
    return (
        select(
            NormalizedTweet.platform,
            NormalizedTweet.platform_id,
            func.max(NormalizedTweet.revision).label("revision"),
        )
        .group_by(NormalizedTweet.platform, NormalizedTweet.platform_id)
        .subquery()
    )


def select_current(column=None):
    """SELECT of the latest revision of every tweet (or one of its columns)."""
    latest = _latest_revisions()
    stmt = select(NormalizedTweet) if column is None else select(column)
    return stmt.join(
        latest,
        and_(
            NormalizedTweet.platform == latest.c.platform,
            NormalizedTweet.platform_id == latest.c.platform_id,
            NormalizedTweet.revision == latest.c.revision,
        ),
    )


def get_current(session: Session, platform: str, platform_id: str) -> Optional[NormalizedTweet]:
    return session.exec(
        select(NormalizedTweet)
        .where(
            NormalizedTweet.platform == platform,
            NormalizedTweet.platform_id == platform_id,
        )
        .order_by(NormalizedTweet.revision.desc())  # type: ignore
        .limit(1)
    ).first()


def get_history(session: Session, platform: str, platform_id: str) -> List[NormalizedTweet]:
    """Every revision of one tweet, oldest first."""
    return list(
        session.exec(
            select(NormalizedTweet)
            .where(
                NormalizedTweet.platform == platform,
                NormalizedTweet.platform_id == platform_id,
            )
            .order_by(NormalizedTweet.revision)
        ).all()
    )


def get_pending(session: Session, limit: int) -> List[NormalizedTweet]:
    """Oldest current revisions still awaiting sentiment."""
    return list(
        session.exec(
            select_current()
            .where(NormalizedTweet.status == TweetStatus.PENDING_SENTIMENT.value)
            .order_by(NormalizedTweet.collected_at, NormalizedTweet.id)
            .limit(limit)
        ).all()
    )


def count_current_by_status(session: Session, status: str) -> int:
    current = select_current().where(NormalizedTweet.status == status).subquery()
    return session.exec(select(func.count()).select_from(current)).one()


def get_last_collected_at(session: Session) -> Optional[datetime]:
    return session.exec(select(func.max(NormalizedTweet.collected_at))).one()


# ── Deduplication ──


def fetch_existing_platform_ids(
    session: Session,
    platform: str,
    platform_ids: Iterable[str],
    chunk_size: int = DEFAULT_LOOKUP_CHUNK,
) -> Set[str]:
    """Return the subset of ``platform_ids`` that already has a revision.

    One IN query per chunk, never one query per candidate.
    """
    ids = list(dict.fromkeys(platform_ids))
    existing: Set[str] = set()
    for chunk in chunked(ids, chunk_size):
        rows = session.exec(
            select(NormalizedTweet.platform_id)
            .where(
                NormalizedTweet.platform == platform,
                NormalizedTweet.platform_id.in_(chunk),  # type: ignore
            )
            .distinct()
        ).all()
        existing.update(rows)
    return existing


# ── Writes (insert-only) ──


def insert_first_revisions(
    session: Session,
    pairs: List[Tuple[RawTweet, NormalizedTweetPrototype]],
) -> Tuple[List[NormalizedTweet], List[str]]:
    """Store each new tweet's raw row and revision 1, then commit once.

    Every tweet is written inside its own savepoint. If another run stored
    the same key after our dedup read, the unique revision key rejects the
    insert; that tweet is returned as a late duplicate and the others are
    kept. Raw rows never outlive a rejected normalized row.
    """
    stored: List[NormalizedTweet] = []
    late_duplicates: List[str] = []
    for raw, prototype in pairs:
        try:
            with session.begin_nested():
                stage_raw_tweet(session, raw)
                prototype.raw_tweet_id = raw.id
                row = NormalizedTweet(**prototype.model_dump())
                session.add(row)
                session.flush()
        except IntegrityError:
            late_duplicates.append(prototype.platform_id)
            logger.warning(
                f"{prototype.platform}:{prototype.platform_id} stored concurrently, "
                f"counting it as a duplicate",
                extra={"run_id": prototype.run_id},
            )
            continue
        stored.append(row)

    session.commit()
    if stored:
        logger.info(f"Stored {len(stored)} new tweets (raw + revision 1)")
    return stored, late_duplicates


def append_status_revision(
    session: Session,
    tweet: NormalizedTweet,
    status: TweetStatus | str,
    changed_at: Optional[datetime] = None,
) -> NormalizedTweet:
    """Record a status change as a new revision of ``tweet``'s natural key.

    The new row copies the latest revision, not necessarily ``tweet`` itself,
    so concurrent writers cannot roll each other back.
    """
    status_value = status.value if isinstance(status, TweetStatus) else status
    current = get_current(session, tweet.platform, tweet.platform_id) or tweet

    revision = NormalizedTweet(
        raw_tweet_id=current.raw_tweet_id,
        run_id=current.run_id,
        platform=current.platform,
        platform_id=current.platform_id,
        revision=current.revision + 1,
        author_handle=current.author_handle,
        author_name=current.author_name,
        posted_at=current.posted_at,
        collected_at=current.collected_at,
        language=current.language,
        content=current.content,
        url=current.url,
        engagement_likes=current.engagement_likes,
        engagement_retweets=current.engagement_retweets,
        keyword_snapshot=list(current.keyword_snapshot or []),
        status=status_value,
        status_changed_at=changed_at or utcnow(),
        model_context=dict(current.model_context or {}),
    )
    session.add(revision)
    session.commit()
    session.refresh(revision)
    logger.debug(
        f"{current.platform}:{current.platform_id} r{revision.revision} → {status_value}",
        extra={"tweet_id": revision.id},
    )
    return revision


# ── Retention ──


def compact_revisions(session: Session, older_than: datetime) -> int:
    """Delete superseded revisions created before ``older_than``.

    The latest revision of every tweet is always kept, as is any revision
    still referenced by a sentiment or failure row.
    """
    current_ids = select_current(NormalizedTweet.id)
    result = session.execute(
        delete(NormalizedTweet).where(
            NormalizedTweet.created_at < older_than,
            NormalizedTweet.id.not_in(current_ids),  # type: ignore
            NormalizedTweet.id.not_in(select(TweetSentiment.normalized_tweet_id)),  # type: ignore
            NormalizedTweet.id.not_in(select(SentimentFailure.normalized_tweet_id)),  # type: ignore
        )
    )
    session.commit()
    removed = result.rowcount or 0
    logger.info(f"Compacted {removed} superseded revisions")
    return removed

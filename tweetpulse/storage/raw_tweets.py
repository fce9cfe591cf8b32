"""TweetPulse: Raw Tweet Writer."""

from typing import List

from sqlmodel import Session, select

from tweetpulse.models.raw_models import RawTweet


def stage_raw_tweet(session: Session, row: RawTweet) -> RawTweet:
    """Add a raw row to the open transaction and assign its id.

    Nothing is committed here: the raw row shares a transaction with the
    normalized revision that points at it.
    """
    session.add(row)
    session.flush()
    return row


def get_raw_for_run(session: Session, run_id: str) -> List[RawTweet]:
    return list(
        session.exec(
            select(RawTweet).where(RawTweet.run_id == run_id).order_by(RawTweet.id)
        ).all()
    )

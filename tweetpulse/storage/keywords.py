"""TweetPulse: Keyword Source (read-only)."""

from typing import List

from sqlmodel import Session, select

from tweetpulse.models.run_models import Keyword


def fetch_enabled_keywords(session: Session) -> List[str]:
    rows = session.exec(
        select(Keyword.keyword).where(Keyword.is_enabled == True).order_by(Keyword.id)  # noqa: E712
    ).all()
    return [k.strip() for k in rows if k and k.strip()]

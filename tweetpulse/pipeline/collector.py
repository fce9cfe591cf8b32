"""TweetPulse: Live Tweet Collection.

One scheduled attempt: resolve keywords, run the scraper once across all
of them with a shared item cap, and ingest the dataset.
"""

import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from sqlmodel import Session

from tweetpulse.config import settings
from tweetpulse.connectors.apify.scraper import TwitterScraper
from tweetpulse.core.logging import get_logger
from tweetpulse.core.utils import utcnow
from tweetpulse.models.raw_models import IngestionReason
from tweetpulse.models.schemas import IngestionResult, MinimumEngagement, ScraperConfig
from tweetpulse.pipeline.ingest import ingest_items, record_failed_attempt
from tweetpulse.storage.keywords import fetch_enabled_keywords
from tweetpulse.storage.normalized_tweets import get_last_collected_at

logger = get_logger("pipeline.collector")


class CollectionOptions(BaseModel):
    """Knobs for one live collection attempt."""

    tweet_language: Optional[str] = None
    sort: str = "Latest"
    max_items: int = Field(default=100, ge=1, le=1000)
    use_date_filtering: bool = False
    default_lookback_days: int = Field(default=7, ge=1, le=30)
    minimum_engagement: MinimumEngagement = MinimumEngagement()

    @classmethod
    def from_settings(cls) -> "CollectionOptions":
        return cls(
            tweet_language=settings.tweet_language,
            sort=settings.tweet_sort,
            max_items=settings.ingestion_max_items,
            use_date_filtering=settings.use_date_filtering,
            default_lookback_days=settings.default_lookback_days,
            minimum_engagement=MinimumEngagement(
                retweets=settings.minimum_retweets,
                favorites=settings.minimum_favorites,
                replies=settings.minimum_replies,
            ),
        )


def _resolve_since_date(session: Session, options: CollectionOptions) -> Optional[str]:
    if not options.use_date_filtering:
        return None
    last_collected = get_last_collected_at(session)
    if last_collected:
        return last_collected.date().isoformat()
    return (utcnow() - timedelta(days=options.default_lookback_days)).date().isoformat()


async def run_collection(
    session: Session,
    scraper: TwitterScraper,
    trigger_source: str = "manual",
    keywords: Optional[List[str]] = None,
    options: Optional[CollectionOptions] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[IngestionResult]:
    """Run one live collection attempt. Returns None when no keywords exist."""
    options = options or CollectionOptions.from_settings()
    started_at = utcnow()
    resolved: List[str] = list(keywords or [])

    try:
        if not resolved:
            resolved = fetch_enabled_keywords(session)
        if not resolved:
            logger.warning("No keywords available for ingestion")
            return None

        since_date = _resolve_since_date(session, options)
        config = ScraperConfig(
            keywords=resolved,
            tweet_language=options.tweet_language,
            sort=options.sort,
            max_items=options.max_items,
            since_date=since_date,
            minimum_engagement=options.minimum_engagement,
        )
        result = await scraper.run(config)

        return ingest_items(
            session,
            items=result.items,
            keywords=resolved,
            run_id=str(uuid.uuid4()),
            trigger_source=trigger_source,
            started_at=started_at,
            ingestion_reason=IngestionReason.INITIAL,
            metadata={
                **(metadata or {}),
                "apify_run_id": result.run.run_id,
                "dataset_id": result.run.dataset_id,
                "requested_max_items": options.max_items,
                "sort": options.sort,
                "tweet_language": options.tweet_language,
                "since_date": since_date,
            },
        )
    except Exception as e:
        logger.error(f"Fatal error in live collection: {e}")
        record_failed_attempt(session, trigger_source, resolved, started_at, e, metadata)
        raise

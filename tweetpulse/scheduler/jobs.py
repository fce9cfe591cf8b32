"""TweetPulse: Scheduler Jobs.

APScheduler jobs for periodic collection and sentiment annotation.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlmodel import Session

from tweetpulse.ai.factory import build_provider
from tweetpulse.config import settings
from tweetpulse.connectors.apify.client import ApifyClient
from tweetpulse.connectors.apify.scraper import TwitterScraper
from tweetpulse.core.logging import get_logger
from tweetpulse.database import engine
from tweetpulse.pipeline.collector import run_collection
from tweetpulse.pipeline.sentiment_processor import SentimentProcessor

logger = get_logger("scheduler")

scheduler = AsyncIOScheduler()


async def collection_job():
    """Run one live collection attempt for the enabled keywords."""
    logger.info("Scheduled collection starting...")
    client = ApifyClient()
    try:
        with Session(engine) as session:
            result = await run_collection(
                session, TwitterScraper(client), trigger_source="scheduler"
            )
        if result is not None:
            logger.info(
                f"Scheduled collection complete: {result.status} "
                f"(new={result.new_count}, duplicates={result.duplicate_count})",
                extra={"run_id": result.run_id},
            )
    except Exception as e:
        logger.error(f"Scheduled collection failed: {e}")
    finally:
        await client.close()


async def sentiment_job():
    """Annotate the next batch of pending tweets."""
    try:
        provider = build_provider()
    except (ValueError, RuntimeError) as e:
        logger.warning(f"Sentiment job skipped: {e}")
        return

    try:
        with Session(engine) as session:
            stats = await SentimentProcessor(session, provider).process_pending()
        logger.info(
            f"Scheduled sentiment pass complete: processed={stats.processed} "
            f"failed={stats.failed}"
        )
    except Exception as e:
        logger.error(f"Scheduled sentiment pass failed: {e}")
    finally:
        await provider.close()


def start_scheduler():
    """Configure and start the scheduler."""
    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled via config")
        return

    scheduler.add_job(
        collection_job,
        "cron",
        hour=settings.collection_hours,
        minute=0,
        id="tweet_collection",
        replace_existing=True,
        misfire_grace_time=3600,
        max_instances=1,
    )
    scheduler.add_job(
        sentiment_job,
        "interval",
        minutes=settings.sentiment_interval_minutes,
        id="sentiment_processing",
        replace_existing=True,
        max_instances=1,
    )
    scheduler.start()
    logger.info(
        f"Scheduler started. Collection at hour={settings.collection_hours} UTC, "
        f"sentiment every {settings.sentiment_interval_minutes}m"
    )


def stop_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")

"""TweetPulse: Twitter Scraper Invocation.

Maps a ScraperConfig onto the tweet-scraper actor input, then
start → wait → fetch. Any non-success terminal state is fatal.
"""

from typing import Any, Dict

from tweetpulse.connectors.apify.client import ApifyClient
from tweetpulse.core.errors import ApifyRunFailed
from tweetpulse.core.logging import get_logger
from tweetpulse.models.schemas import ApifyRun, ScraperConfig, ScraperResult

logger = get_logger("apify.scraper")


def build_actor_input(config: ScraperConfig) -> Dict[str, Any]:
    """Translate our config into the actor's raw input object."""
    actor_input: Dict[str, Any] = {
        "searchTerms": config.keywords,
        "sort": config.sort,
        "maxItems": config.max_items,
        "includeSearchTerms": True,
    }
    if config.tweet_language:
        actor_input["tweetLanguage"] = config.tweet_language
    if config.since_date:
        actor_input["start"] = config.since_date
    if config.until_date:
        actor_input["end"] = config.until_date

    engagement = config.minimum_engagement
    if engagement.retweets is not None:
        actor_input["minimumRetweets"] = engagement.retweets
    if engagement.favorites is not None:
        actor_input["minimumFavorites"] = engagement.favorites
    if engagement.replies is not None:
        actor_input["minimumReplies"] = engagement.replies
    return actor_input


class TwitterScraper:
    """Scraper adapter over an explicitly constructed ApifyClient."""

    def __init__(self, client: ApifyClient, wait_timeout_secs: int | None = None):
        self.client = client
        self.wait_timeout_secs = wait_timeout_secs

    async def start(self, config: ScraperConfig) -> ApifyRun:
        return await self.client.start_run(build_actor_input(config))

    async def collect(self, run_id: str, max_items: int | None = None) -> ScraperResult:
        """Await a started run and fetch its dataset."""
        run = await self.client.wait_for_run(run_id, self.wait_timeout_secs)
        if run.status != "SUCCEEDED":
            raise ApifyRunFailed(run_id, run.status)
        if not run.dataset_id:
            logger.warning(f"Apify run {run_id} did not return a dataset")
            return ScraperResult(run=run, items=[])
        items = await self.client.fetch_items(run.dataset_id, limit=max_items)
        return ScraperResult(run=run, items=items)

    async def run(self, config: ScraperConfig) -> ScraperResult:
        if not config.keywords:
            raise ValueError("At least one keyword is required to start a scraper run")
        run = await self.start(config)
        return await self.collect(run.run_id, config.max_items)

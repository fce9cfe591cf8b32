"""TweetPulse: Sentiment Annotation Processor.

Drains pending normalized tweets through a SentimentProvider with a small
asyncio worker pool. Every outcome is written as an append-only revision:
successes get a TweetSentiment row plus a ``processed`` revision, failures get
a ledger row and either stay pending or move to ``failed``.
"""

import asyncio
from typing import List, Optional

from pydantic import BaseModel

from tweetpulse.ai.base_provider import SentimentProvider
from tweetpulse.config import settings
from tweetpulse.core.logging import get_logger
from tweetpulse.core.rate_limiter import WindowRateLimiter
from tweetpulse.core.retry import ledger_policy
from tweetpulse.core.utils import utcnow
from tweetpulse.models.normalized_models import NormalizedTweet, TweetStatus
from tweetpulse.models.schemas import ProcessingStats, SentimentOutcome, SentimentRequest
from tweetpulse.storage.normalized_tweets import append_status_revision, get_current, get_pending
from tweetpulse.storage.sentiments import (
    get_replay_candidates,
    get_retry_count,
    insert_sentiment,
    record_failure,
)

logger = get_logger("pipeline.sentiment")

PROCESSOR_ERROR = "PROCESSOR_ERROR"
STAGE_API_CALL = "sentiment_api_call"
STAGE_UNEXPECTED = "unexpected_error"
STAGE_REPLAY = "replay_attempt"
PAYLOAD_CONTENT_CHARS = 500


class SentimentProcessorConfig(BaseModel):
    model_version: str
    batch_size: int = 10
    max_retries: int = 3
    concurrency: Optional[int] = None
    rpm_cap: Optional[int] = None
    tpm_cap: Optional[int] = None
    tokens_per_request_estimate: int = 600
    rate_limit_delay_secs: float = 4.0

    @classmethod
    def from_settings(cls, model_version: Optional[str] = None) -> "SentimentProcessorConfig":
        return cls(
            model_version=model_version or settings.effective_model_version,
            batch_size=settings.sentiment_batch_size,
            max_retries=settings.sentiment_max_retries,
            concurrency=settings.sentiment_concurrency,
            rpm_cap=settings.sentiment_rpm_cap,
            tpm_cap=settings.sentiment_tpm_cap,
            tokens_per_request_estimate=settings.sentiment_tokens_per_request,
            rate_limit_delay_secs=settings.sentiment_request_delay_secs,
        )

    @property
    def sequential(self) -> bool:
        """Neither concurrency nor an RPM cap given: one call at a time, fixed delay."""
        return not self.concurrency and not self.rpm_cap

    @property
    def worker_count(self) -> int:
        return max(1, self.concurrency or 1)

    def build_limiter(self) -> WindowRateLimiter:
        return WindowRateLimiter(
            rpm_cap=self.rpm_cap,
            tpm_cap=self.tpm_cap,
            tokens_per_request=self.tokens_per_request_estimate,
            min_interval=self.rate_limit_delay_secs if self.sequential else 0.0,
        )


class SentimentProcessor:
    """Annotate pending tweets with sentiment and keep the failure ledger."""

    def __init__(
        self,
        session,
        provider: SentimentProvider,
        config: Optional[SentimentProcessorConfig] = None,
        limiter: Optional[WindowRateLimiter] = None,
    ):
        self.session = session
        self.provider = provider
        self.config = config or SentimentProcessorConfig.from_settings(provider.model_version)
        self.retry_policy = ledger_policy(self.config.max_retries)
        self._limiter = limiter

    # ── Entry points ──

    async def process_pending(self) -> ProcessingStats:
        records = get_pending(self.session, self.config.batch_size)
        if not records:
            logger.info("No pending tweets to annotate")
            return ProcessingStats()

        logger.info(
            f"🧠 Annotating {len(records)} pending tweets "
            f"(workers={self.config.worker_count}, model={self.config.model_version})"
        )
        return await self._run_pool(records, failure_stage=STAGE_API_CALL)

    async def replay_failed(self, min_retry_count: int = 0, limit: int = 10) -> ProcessingStats:
        """Give currently-failed records one more attempt each."""
        records = get_replay_candidates(self.session, min_retry_count, limit)
        if not records:
            logger.info("No failed tweets eligible for replay")
            return ProcessingStats()

        logger.info(f"🔁 Replaying {len(records)} failed tweets")
        return await self._run_pool(records, failure_stage=STAGE_REPLAY, replay=True)

    # ── Worker pool ──

    async def _run_pool(
        self, records: List[NormalizedTweet], failure_stage: str, replay: bool = False
    ) -> ProcessingStats:
        stats = ProcessingStats()
        queue: asyncio.Queue = asyncio.Queue()
        for record in records:
            queue.put_nowait(record)

        limiter = self._limiter or self.config.build_limiter()

        async def worker() -> None:
            while True:
                try:
                    record = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                await self._process_one(record, limiter, stats, failure_stage, replay)

        await asyncio.gather(*(worker() for _ in range(self.config.worker_count)))

        logger.info(
            f"Sentiment pass done: processed={stats.processed} failed={stats.failed} "
            f"skipped={stats.skipped} tokens={stats.total_tokens}",
            extra={"duration_ms": stats.total_latency_ms},
        )
        return stats

    def _still_eligible(self, record: NormalizedTweet, replay: bool) -> Optional[NormalizedTweet]:
        current = get_current(self.session, record.platform, record.platform_id)
        if current is None:
            return None
        expected = TweetStatus.FAILED if replay else TweetStatus.PENDING_SENTIMENT
        if current.status != expected.value:
            return None
        return current

    async def _process_one(
        self,
        record: NormalizedTweet,
        limiter: WindowRateLimiter,
        stats: ProcessingStats,
        failure_stage: str,
        replay: bool,
    ) -> None:
        current = self._still_eligible(record, replay)
        if current is None:
            stats.skipped += 1
            logger.debug(f"Skipping {record.platform_id}: no longer eligible")
            return

        try:
            await limiter.acquire()
            outcome = await self.provider.analyze(
                SentimentRequest(
                    tweet_id=current.id,
                    content=current.content,
                    author_handle=current.author_handle,
                    language=current.language,
                )
            )
            stats.total_latency_ms += outcome.latency_ms
            if outcome.token_usage:
                stats.total_tokens += outcome.token_usage.total

            if outcome.success:
                self._record_success(current, outcome)
                stats.processed += 1
            else:
                self._record_failure(current, outcome, failure_stage, replay)
                stats.failed += 1
        except Exception as e:
            logger.error(
                f"Unexpected error annotating {current.platform_id}: {e}",
                extra={"tweet_id": current.id, "error_code": PROCESSOR_ERROR},
            )
            self.session.rollback()
            self._record_failure(
                current,
                SentimentOutcome.failure(PROCESSOR_ERROR, str(e), retryable=False),
                STAGE_UNEXPECTED,
                replay,
            )
            stats.failed += 1

    # ── Outcome writers ──

    def _record_success(self, tweet: NormalizedTweet, outcome: SentimentOutcome) -> None:
        insert_sentiment(
            self.session,
            normalized_tweet_id=tweet.id,
            model_version=self.config.model_version,
            label=outcome.label,
            score=outcome.score,
            reasoning={"summary": outcome.summary} if outcome.summary else None,
            latency_ms=outcome.latency_ms,
        )
        append_status_revision(self.session, tweet, TweetStatus.PROCESSED, utcnow())
        logger.debug(
            f"✅ {tweet.platform_id} → {outcome.label} ({outcome.score:+.2f})",
            extra={"tweet_id": tweet.id},
        )

    def _record_failure(
        self,
        tweet: NormalizedTweet,
        outcome: SentimentOutcome,
        failure_stage: str,
        replay: bool,
    ) -> None:
        retry_count = get_retry_count(self.session, tweet) + 1
        record_failure(
            self.session,
            normalized_tweet_id=tweet.id,
            failure_stage=failure_stage,
            error_message=outcome.message or "Unknown sentiment failure",
            retry_count=retry_count,
            model_version=self.config.model_version,
            error_code=outcome.error_code,
            payload={
                "content": tweet.content[:PAYLOAD_CONTENT_CHARS],
                "retryable": outcome.retryable,
            },
        )

        give_up = not outcome.retryable or self.retry_policy.exhausted(retry_count)
        if give_up and not replay:
            append_status_revision(self.session, tweet, TweetStatus.FAILED, utcnow())
        elif not give_up and replay:
            append_status_revision(self.session, tweet, TweetStatus.PENDING_SENTIMENT, utcnow())

        logger.warning(
            f"❌ {tweet.platform_id} failed with {outcome.error_code} "
            f"(retry {retry_count}/{self.config.max_retries}, "
            f"{'final' if give_up else 'will retry'})",
            extra={"tweet_id": tweet.id, "error_code": outcome.error_code},
        )

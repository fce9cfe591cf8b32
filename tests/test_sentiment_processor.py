# tests/test_sentiment_processor.py
"""
Sentiment annotation: outcomes become revisions, failures go to the ledger.
"""
import asyncio

from sqlmodel import select

from conftest import FakeProvider, make_item
from tweetpulse.ai.base_provider import parse_sentiment_text
from tweetpulse.core.utils import utcnow
from tweetpulse.models.schemas import SentimentOutcome
from tweetpulse.models.sentiment_models import SentimentFailure, TweetSentiment
from tweetpulse.pipeline.ingest import ingest_items
from tweetpulse.pipeline.sentiment_processor import SentimentProcessor, SentimentProcessorConfig
from tweetpulse.storage.normalized_tweets import get_current, get_history
from tweetpulse.storage.sentiments import get_retry_count


def _seed(session, ids):
    ingest_items(
        session,
        items=[make_item(i) for i in ids],
        keywords=["coding agent"],
        run_id="seed",
        trigger_source="manual",
        started_at=utcnow(),
    )


def _config(**overrides):
    values = {"model_version": "fake-model-1", "batch_size": 10, "max_retries": 3, "concurrency": 1}
    values.update(overrides)
    return SentimentProcessorConfig(**values)


def _run(session, provider, **config):
    processor = SentimentProcessor(session, provider, _config(**config))
    return asyncio.run(processor.process_pending())


def test_success_appends_processed_revision(session):
    _seed(session, ["1"])
    stats = _run(session, FakeProvider())

    assert stats.processed == 1
    assert stats.total_tokens == 60
    history = get_history(session, "twitter", "1")
    assert [(r.revision, r.status) for r in history] == [(1, "pending_sentiment"), (2, "processed")]

    sentiment = session.exec(select(TweetSentiment)).one()
    assert sentiment.sentiment_label == "positive"
    assert sentiment.sentiment_score == 0.8
    assert sentiment.model_version == "fake-model-1"
    assert sentiment.reasoning == {"summary": "Upbeat"}


def test_processed_records_are_not_picked_up_again(session):
    _seed(session, ["1"])
    provider = FakeProvider()
    _run(session, provider)
    stats = _run(session, provider)
    assert stats.processed == 0
    assert len(provider.requests) == 1


def test_non_retryable_failure_fails_after_one_attempt(session):
    _seed(session, ["1"])
    provider = FakeProvider(
        outcomes=[SentimentOutcome.failure("SAFETY_BLOCK", "blocked", retryable=False)]
    )
    stats = _run(session, provider)

    assert stats.failed == 1
    assert get_current(session, "twitter", "1").status == "failed"
    failure = session.exec(select(SentimentFailure)).one()
    assert failure.error_code == "SAFETY_BLOCK"
    assert failure.retry_count == 1
    assert failure.failure_stage == "sentiment_api_call"
    assert failure.payload["content"] == "Loving this coding agent"


def test_retryable_failure_stays_pending_until_max_retries(session):
    _seed(session, ["1"])
    rate_limited = SentimentOutcome.failure("RATE_LIMIT", "429", retryable=True)
    provider = FakeProvider(outcomes=[rate_limited, rate_limited, rate_limited])

    _run(session, provider)
    assert get_current(session, "twitter", "1").status == "pending_sentiment"
    _run(session, provider)
    assert get_current(session, "twitter", "1").status == "pending_sentiment"
    _run(session, provider)

    tweet = get_current(session, "twitter", "1")
    assert tweet.status == "failed"
    assert get_retry_count(session, tweet) == 3
    counts = [f.retry_count for f in session.exec(select(SentimentFailure)).all()]
    assert sorted(counts) == [1, 2, 3]


def test_unexpected_exception_is_recorded_as_processor_error(session):
    _seed(session, ["1", "2"])
    provider = FakeProvider(outcomes=[RuntimeError("boom")])
    stats = _run(session, provider)

    assert stats.failed == 1
    assert stats.processed == 1
    failure = session.exec(select(SentimentFailure)).one()
    assert failure.error_code == "PROCESSOR_ERROR"
    assert failure.failure_stage == "unexpected_error"


def test_concurrent_workers_process_every_record_once(session):
    _seed(session, [str(i) for i in range(6)])
    provider = FakeProvider()
    stats = _run(session, provider, concurrency=3)

    assert stats.processed == 6
    assert sorted(r.tweet_id for r in provider.requests) == sorted(set(r.tweet_id for r in provider.requests))
    assert len(session.exec(select(TweetSentiment)).all()) == 6


def test_batch_size_limits_work(session):
    _seed(session, [str(i) for i in range(5)])
    stats = _run(session, FakeProvider(), batch_size=2)
    assert stats.processed == 2


def test_replay_gives_failed_records_another_attempt(session):
    _seed(session, ["1"])
    _run(
        session,
        FakeProvider(outcomes=[SentimentOutcome.failure("PARSE_ERROR", "bad json", retryable=False)]),
        max_retries=1,
    )
    assert get_current(session, "twitter", "1").status == "failed"

    processor = SentimentProcessor(session, FakeProvider(), _config(max_retries=1))
    stats = asyncio.run(processor.replay_failed(min_retry_count=1, limit=5))

    assert stats.processed == 1
    assert get_current(session, "twitter", "1").status == "processed"


def test_replay_skips_records_below_minimum_retries(session):
    _seed(session, ["1"])
    _run(
        session,
        FakeProvider(outcomes=[SentimentOutcome.failure("PARSE_ERROR", "bad json", retryable=False)]),
    )
    processor = SentimentProcessor(session, FakeProvider(), _config())
    stats = asyncio.run(processor.replay_failed(min_retry_count=3, limit=5))
    assert stats.processed == 0


def test_score_is_clamped_and_derived_from_label():
    assert parse_sentiment_text('{"label": "positive", "score": 4.2}').score == 1.0
    assert parse_sentiment_text('{"label": "negative"}').score == -0.7
    assert parse_sentiment_text('{"label": "negative", "score": NaN}').score == -0.7
    assert parse_sentiment_text('{"label": "positive", "score": -Infinity}').score == 0.7
    assert parse_sentiment_text('{"label": "neutral", "score": 1e999}').score == 0.0
    assert parse_sentiment_text('```json\n{"label": "neutral", "score": 0.1}\n```').score == 0.1


def test_unparseable_and_unknown_labels_are_not_retryable():
    bad_json = parse_sentiment_text("I think it is positive")
    assert bad_json.error_code == "PARSE_ERROR"
    assert bad_json.retryable is False

    bad_label = parse_sentiment_text('{"label": "ecstatic", "score": 0.9}')
    assert bad_label.error_code == "INVALID_LABEL"

    empty = parse_sentiment_text("  ")
    assert empty.error_code == "EMPTY_RESPONSE"
    assert empty.retryable is True


def test_replay_default_includes_first_time_failures(session):
    _seed(session, ["1"])
    _run(
        session,
        FakeProvider(outcomes=[SentimentOutcome.failure("SAFETY_BLOCK", "blocked", retryable=False)]),
    )
    assert get_retry_count(session, get_current(session, "twitter", "1")) == 1

    processor = SentimentProcessor(session, FakeProvider(), _config())
    stats = asyncio.run(processor.replay_failed())

    assert stats.processed == 1
    assert get_current(session, "twitter", "1").status == "processed"


def test_replay_takes_oldest_attempts_first_up_to_limit(session):
    _seed(session, ["1", "2", "3"])
    refusal = SentimentOutcome.failure("PROMPT_REJECTED", "nope", retryable=False)
    _run(session, FakeProvider(outcomes=[refusal, refusal, refusal]))

    processor = SentimentProcessor(session, FakeProvider(), _config())
    stats = asyncio.run(processor.replay_failed(limit=2))

    assert stats.processed == 2
    statuses = {pid: get_current(session, "twitter", pid).status for pid in ["1", "2", "3"]}
    assert statuses == {"1": "processed", "2": "processed", "3": "failed"}

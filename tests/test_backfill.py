# tests/test_backfill.py
"""
Backfill queue: ordering, crash-resume via a recorded Apify run, failures.
"""
import asyncio
from datetime import date

import pytest
from sqlmodel import select

from conftest import FakeScraper, make_item
from tweetpulse.core.errors import BackfillBatchNotFound, BackfillGuardError, BackfillStateError
from tweetpulse.models.raw_models import RawTweet
from tweetpulse.models.run_models import BackfillStatus, CronRun
from tweetpulse.pipeline.backfill import BackfillScheduler, plan_batches


def test_plan_batches_newest_first_with_descending_priority():
    plans = plan_batches(["cursor"], total_days=12, batch_days=5, end=date(2025, 1, 31))
    assert [p["end_date"] for p in plans] == ["2025-01-31", "2025-01-26", "2025-01-21"]
    assert [p["start_date"] for p in plans] == ["2025-01-26", "2025-01-21", "2025-01-16"]
    assert [p["priority"] for p in plans] == [100, 90, 80]


def test_enqueue_validates_input(session):
    scheduler = BackfillScheduler(session, FakeScraper())
    with pytest.raises(ValueError):
        scheduler.enqueue_batch(["  "], "2025-01-01", "2025-01-05")
    with pytest.raises(ValueError):
        scheduler.enqueue_batch(["cursor"], "2025-01-05", "2025-01-01")


def test_next_batch_is_highest_priority(session):
    scheduler = BackfillScheduler(session, FakeScraper())
    low = scheduler.enqueue_batch(["a"], "2025-01-01", "2025-01-02", priority=10)
    high = scheduler.enqueue_batch(["b"], "2025-01-01", "2025-01-02", priority=90)
    assert scheduler.get_next_batch().id == high
    assert low != high


def test_process_batch_with_force_starts_run_and_completes(session):
    scraper = FakeScraper(items=[make_item("1"), make_item("2")])
    scheduler = BackfillScheduler(session, scraper)
    batch_id = scheduler.enqueue_batch(["cursor"], "2025-01-01", "2025-01-05")

    result = asyncio.run(scheduler.process_batch(batch_id, force_new_run=True))

    assert result.new_count == 2
    batch = scheduler.get_batch(batch_id)
    assert batch.status == "completed"
    assert batch.batch_metadata["apify_run_id"] == "run-1"
    assert batch.batch_metadata["attempt_count"] == 1
    assert batch.batch_metadata["new_count"] == 2
    assert scraper.started[0].since_date == "2025-01-01"
    assert scraper.started[0].until_date == "2025-01-05"

    run = session.exec(select(CronRun)).one()
    assert run.trigger_source == f"backfill:{batch_id}"
    reasons = {r.ingestion_reason for r in session.exec(select(RawTweet)).all()}
    assert reasons == {"backfill"}


def test_guard_refuses_new_run_without_force(session):
    scraper = FakeScraper()
    scheduler = BackfillScheduler(session, scraper)
    batch_id = scheduler.enqueue_batch(["cursor"], "2025-01-01", "2025-01-05")

    with pytest.raises(BackfillGuardError):
        asyncio.run(scheduler.process_batch(batch_id))

    batch = scheduler.get_batch(batch_id)
    assert batch.status == "pending"
    assert batch.batch_metadata["attempt_count"] == 0
    assert scraper.started == []


def test_resume_reuses_recorded_run(session):
    scraper = FakeScraper(items=[make_item("7")])
    scheduler = BackfillScheduler(session, scraper)
    batch_id = scheduler.enqueue_batch(["cursor"], "2025-01-01", "2025-01-05")

    # Simulate a crash after the run was started and recorded
    batch = scheduler.get_batch(batch_id)
    scheduler._update(batch, BackfillStatus.RUNNING, {"apify_run_id": "run-old", "attempt_count": 1})

    result = asyncio.run(scheduler.process_batch(batch_id))

    assert result.new_count == 1
    assert scraper.started == []
    assert scraper.collected == ["run-old"]
    batch = scheduler.get_batch(batch_id)
    assert batch.status == "completed"
    assert batch.batch_metadata["attempt_count"] == 2


def test_failure_marks_batch_failed_and_records_run(session):
    scraper = FakeScraper(fail_on="collect")
    scheduler = BackfillScheduler(session, scraper)
    batch_id = scheduler.enqueue_batch(["cursor"], "2025-01-01", "2025-01-05")

    with pytest.raises(RuntimeError):
        asyncio.run(scheduler.process_batch(batch_id, force_new_run=True))

    batch = scheduler.get_batch(batch_id)
    assert batch.status == "failed"
    assert batch.batch_metadata["apify_run_id"] == "run-1"
    assert "dataset fetch failed" in batch.batch_metadata["error_message"]
    run = session.exec(select(CronRun)).one()
    assert run.status == "failed"

    with pytest.raises(BackfillStateError):
        asyncio.run(scheduler.process_batch(batch_id, force_new_run=True))


def test_unknown_batch(session):
    scheduler = BackfillScheduler(session, FakeScraper())
    with pytest.raises(BackfillBatchNotFound):
        asyncio.run(scheduler.process_batch(999, force_new_run=True))


def test_process_next_drains_in_priority_order(session):
    scraper = FakeScraper(items=[make_item("1")])
    scheduler = BackfillScheduler(session, scraper)
    scheduler.enqueue_batch(["low"], "2025-01-01", "2025-01-02", priority=1)
    scheduler.enqueue_batch(["high"], "2025-01-03", "2025-01-04", priority=5)

    asyncio.run(scheduler.process_next())
    assert scraper.started[0].keywords == ["high"]
    asyncio.run(scheduler.process_next())
    assert scraper.started[1].keywords == ["low"]
    assert asyncio.run(scheduler.process_next()) is None

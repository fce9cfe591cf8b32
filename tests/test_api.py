# tests/test_api.py
"""
HTTP trigger surface: auth, collection, backfill, sentiment and health.
Dependencies are overridden so no network or real database is used.
"""
import pytest
from fastapi.testclient import TestClient

from conftest import FakeProvider, FakeScraper, make_item
from tweetpulse.api.pipeline_routes import get_scraper, get_sentiment_provider
from tweetpulse.config import settings
from tweetpulse.core.utils import utcnow
from tweetpulse.database import get_session
from tweetpulse.main import app
from tweetpulse.models.run_models import BackfillBatch
from tweetpulse.storage.cron_runs import record_cron_run


@pytest.fixture
def scraper():
    return FakeScraper(items=[make_item("1"), make_item("2")])


@pytest.fixture
def client(session, scraper, monkeypatch):
    monkeypatch.setattr(settings, "internal_api_key", "secret")
    monkeypatch.setattr(settings, "sentiment_concurrency", 2)
    monkeypatch.setattr(settings, "retention_days", 0)

    async def fake_scraper():
        yield scraper

    async def fake_provider():
        yield FakeProvider()

    app.dependency_overrides[get_session] = lambda: session
    app.dependency_overrides[get_scraper] = fake_scraper
    app.dependency_overrides[get_sentiment_provider] = fake_provider
    yield TestClient(app)
    app.dependency_overrides.clear()


AUTH = {"x-api-key": "secret"}


def test_mutating_routes_require_api_key(client):
    r = client.post("/collect", json={"keywords": ["cursor"]})
    assert r.status_code == 401
    r = client.post("/collect", json={"keywords": ["cursor"]}, headers={"x-api-key": "wrong"})
    assert r.status_code == 401


def test_platform_cron_header_is_accepted(client, session):
    r = client.post("/collect", json={"keywords": ["cursor"]}, headers={"x-vercel-cron": "1"})
    assert r.status_code == 202
    assert r.json()["data"]["new_count"] == 2


def test_collect_with_explicit_keywords(client, scraper):
    r = client.post("/collect", json={"keywords": ["cursor"], "trigger_source": "ops"}, headers=AUTH)
    assert r.status_code == 202
    body = r.json()
    assert body["status"] == "succeeded"
    assert body["data"]["new_count"] == 2
    assert scraper.started[0].keywords == ["cursor"]


def test_collect_without_keywords_is_skipped(client):
    r = client.post("/collect", headers=AUTH)
    assert r.status_code == 202
    assert r.json()["status"] == "skipped"


def test_backfill_enqueue_and_list(client, session):
    r = client.post(
        "/backfill/enqueue",
        json={"keywords": ["cursor"], "total_days": 10, "batch_days": 5},
        headers=AUTH,
    )
    assert r.status_code == 200
    assert len(r.json()["batch_ids"]) == 2

    r = client.get("/backfill/batches")
    batches = r.json()["batches"]
    assert {b["priority"] for b in batches} == {100, 90}
    assert all(b["status"] == "pending" for b in batches)


def test_backfill_enqueue_rejects_bad_window(client):
    r = client.post(
        "/backfill/enqueue",
        json={"keywords": ["cursor"], "start_date": "2025-02-01", "end_date": "2025-01-01"},
        headers=AUTH,
    )
    assert r.status_code == 422


def test_backfill_guard_maps_to_conflict(client, session):
    r = client.post(
        "/backfill/enqueue",
        json={"keywords": ["cursor"], "start_date": "2025-01-01", "end_date": "2025-01-05"},
        headers=AUTH,
    )
    batch_id = r.json()["batch_ids"][0]

    r = client.post("/backfill/process", json={"batch_id": batch_id}, headers=AUTH)
    assert r.status_code == 409

    r = client.post(
        "/backfill/process", json={"batch_id": batch_id, "force_new_run": True}, headers=AUTH
    )
    assert r.status_code == 200
    assert session.get(BackfillBatch, batch_id).status == "completed"


def test_backfill_process_unknown_batch(client):
    r = client.post("/backfill/process", json={"batch_id": 42, "force_new_run": True}, headers=AUTH)
    assert r.status_code == 404


def test_backfill_process_idle_queue(client):
    r = client.post("/backfill/process", headers=AUTH)
    assert r.json()["status"] == "idle"


def test_sentiment_process_after_collection(client):
    client.post("/collect", json={"keywords": ["cursor"]}, headers=AUTH)
    r = client.post("/sentiment/process", headers=AUTH)
    assert r.status_code == 200
    assert r.json()["stats"]["processed"] == 2


def test_sentiment_replay_with_nothing_failed(client):
    r = client.post("/sentiment/replay", json={"min_retry_count": 3, "limit": 5}, headers=AUTH)
    assert r.json()["stats"]["processed"] == 0


def test_compact_is_disabled_by_default(client):
    r = client.post("/maintenance/compact", headers=AUTH)
    assert r.json()["removed_revisions"] == 0


def test_health_reports_worst_check(client, session):
    r = client.get("/health")
    body = r.json()
    assert r.status_code == 200
    checks = {c["name"]: c["status"] for c in body["checks"]}
    assert checks["last_successful_run"] == "critical"
    assert body["status"] == "critical"

    now = utcnow()
    record_cron_run(session, "manual", ["cursor"], now, now, "succeeded")
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert all(c["status"] == "ok" for c in body["checks"])

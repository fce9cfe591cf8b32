# tests/conftest.py
"""
Shared fixtures: an in-memory SQLite database per test, plus small fakes
for the scraper and sentiment provider so nothing touches the network.
"""
from typing import Any, Dict, List

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session

from tweetpulse.ai.base_provider import SentimentProvider
from tweetpulse.database import build_engine, init_db
from tweetpulse.models.schemas import ApifyRun, ScraperResult, SentimentOutcome, TokenUsage


@pytest.fixture
def engine():
    eng = build_engine("sqlite://", poolclass=StaticPool)
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


def make_item(tweet_id: str, text: str = "Loving this coding agent", **extra) -> Dict[str, Any]:
    item = {
        "id": tweet_id,
        "text": text,
        "createdAt": "2025-01-10T12:00:00Z",
        "author": {"userName": "dev_jane", "name": "Jane"},
        "likeCount": 4,
        "retweetCount": 1,
        "lang": "en",
    }
    item.update(extra)
    return item


class FakeScraper:
    """Stands in for TwitterScraper; records start/collect calls."""

    def __init__(self, items: List[Dict[str, Any]] = None, fail_on: str = None):
        self.items = items or []
        self.fail_on = fail_on
        self.started: List[Any] = []
        self.collected: List[str] = []

    async def start(self, config):
        if self.fail_on == "start":
            raise RuntimeError("actor start failed")
        self.started.append(config)
        return ApifyRun(run_id=f"run-{len(self.started)}", status="RUNNING")

    async def collect(self, run_id, max_items=None):
        if self.fail_on == "collect":
            raise RuntimeError("dataset fetch failed")
        self.collected.append(run_id)
        run = ApifyRun(run_id=run_id, status="SUCCEEDED", dataset_id=f"ds-{run_id}")
        return ScraperResult(run=run, items=list(self.items))

    async def run(self, config):
        run = await self.start(config)
        return await self.collect(run.run_id, config.max_items)


class FakeProvider(SentimentProvider):
    """Returns queued outcomes in order, or a fixed one."""

    name = "fake"

    def __init__(self, outcomes: List[SentimentOutcome] = None, default: SentimentOutcome = None):
        self.outcomes = list(outcomes or [])
        self.default = default or SentimentOutcome(
            success=True,
            label="positive",
            score=0.8,
            summary="Upbeat",
            latency_ms=12,
            token_usage=TokenUsage(prompt=50, completion=10, total=60),
        )
        self.requests = []

    @property
    def model_version(self) -> str:
        return "fake-model-1"

    def is_available(self) -> bool:
        return True

    async def analyze(self, request):
        self.requests.append(request)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return self.default

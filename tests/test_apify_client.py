# tests/test_apify_client.py
"""
Apify REST client and scraper adapter against a mocked transport.
"""
import asyncio
import json

import httpx
import pytest

from tweetpulse.connectors.apify.client import ApifyClient
from tweetpulse.connectors.apify.scraper import TwitterScraper, build_actor_input
from tweetpulse.core.errors import ApifyAPIError, ApifyRunFailed, ApifyRunTimeout
from tweetpulse.models.schemas import MinimumEngagement, ScraperConfig


def _run_payload(status="SUCCEEDED", dataset="ds-1"):
    return {"data": {"id": "run-1", "status": status, "actId": "act", "defaultDatasetId": dataset}}


def _client(handler, **kwargs):
    return ApifyClient(
        token="tok",
        actor_id="apidojo/tweet-scraper",
        base_url="https://apify.test/v2",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def _with_client(client, coro_fn):
    async def go():
        try:
            return await coro_fn(client)
        finally:
            await client.close()

    return asyncio.run(go())


def test_actor_input_mapping():
    config = ScraperConfig(
        keywords=["cursor", "copilot"],
        tweet_language="en",
        max_items=50,
        since_date="2025-01-01",
        until_date="2025-01-05",
        minimum_engagement=MinimumEngagement(retweets=2, favorites=10),
    )
    actor_input = build_actor_input(config)
    assert actor_input == {
        "searchTerms": ["cursor", "copilot"],
        "sort": "Latest",
        "maxItems": 50,
        "includeSearchTerms": True,
        "tweetLanguage": "en",
        "start": "2025-01-01",
        "end": "2025-01-05",
        "minimumRetweets": 2,
        "minimumFavorites": 10,
    }


def test_scraper_run_starts_waits_and_fetches():
    seen = []

    def handler(request):
        seen.append((request.method, request.url.path, dict(request.url.params)))
        assert request.headers["authorization"] == "Bearer tok"
        if request.method == "POST":
            assert json.loads(request.content)["searchTerms"] == ["cursor"]
            return httpx.Response(201, json=_run_payload(status="RUNNING"))
        if request.url.path.startswith("/v2/actor-runs/"):
            return httpx.Response(200, json=_run_payload())
        return httpx.Response(200, json=[{"id": "1", "text": "a"}, {"id": "2", "text": "b"}])

    client = _client(handler)
    result = _with_client(
        client, lambda c: TwitterScraper(c).run(ScraperConfig(keywords=["cursor"], max_items=10))
    )

    assert [i["id"] for i in result.items] == ["1", "2"]
    assert result.run.dataset_id == "ds-1"
    assert seen[0][:2] == ("POST", "/v2/acts/apidojo~tweet-scraper/runs")
    assert seen[-1][2]["limit"] == "10"
    assert seen[-1][2]["clean"] == "true"


def test_failed_run_is_fatal():
    def handler(request):
        return httpx.Response(200, json=_run_payload(status="FAILED"))

    client = _client(handler)
    with pytest.raises(ApifyRunFailed) as exc:
        _with_client(client, lambda c: TwitterScraper(c).collect("run-1"))
    assert exc.value.status == "FAILED"


def test_api_error_carries_status():
    def handler(request):
        return httpx.Response(401, json={"error": {"message": "bad token"}})

    client = _client(handler)
    with pytest.raises(ApifyAPIError) as exc:
        _with_client(client, lambda c: c.start_run({"searchTerms": ["x"]}))
    assert exc.value.status_code == 401
    assert "bad token" in str(exc.value)


def test_wait_times_out():
    ticks = iter([0.0, 0.0, 100.0])

    def handler(request):
        return httpx.Response(200, json=_run_payload(status="RUNNING"))

    client = _client(handler, clock=lambda: next(ticks))
    with pytest.raises(ApifyRunTimeout):
        _with_client(client, lambda c: c.wait_for_run("run-1", timeout_secs=30))


def test_dataset_pagination_stops_at_short_page():
    pages = {0: [{"id": str(i)} for i in range(1000)], 1000: [{"id": "last"}]}

    def handler(request):
        offset = int(request.url.params["offset"])
        return httpx.Response(200, json=pages[offset])

    client = _client(handler)
    items = _with_client(client, lambda c: c.fetch_items("ds-1"))
    assert len(items) == 1001
    assert items[-1]["id"] == "last"

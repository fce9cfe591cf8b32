"""TweetPulse: Apify API Client.

Starts actor runs, waits on them with Apify's ``waitForFinish`` long-poll,
and pages through result datasets. Errors are raised, never retried: the
caller decides whether an attempt is worth repeating.
"""

import time
from typing import Any, Callable, Dict, List, Optional

import httpx

from tweetpulse.config import settings
from tweetpulse.core.errors import ApifyAPIError, ApifyRunTimeout
from tweetpulse.core.logging import get_logger
from tweetpulse.models.schemas import ApifyRun

logger = get_logger("apify.client")

TERMINAL_STATUSES = {"SUCCEEDED", "FAILED", "ABORTED", "TIMED-OUT"}
MAX_WAIT_FOR_FINISH = 60  # Apify caps the long-poll at 60 seconds
DATASET_PAGE_SIZE = 1000


def _parse_run(data: Dict[str, Any]) -> ApifyRun:
    stats = data.get("stats") or {}
    return ApifyRun(
        run_id=data["id"],
        status=data.get("status", ""),
        actor_id=data.get("actId", ""),
        dataset_id=data.get("defaultDatasetId"),
        item_count=stats.get("itemCount") if isinstance(stats, dict) else None,
        started_at=data.get("startedAt"),
        finished_at=data.get("finishedAt"),
    )


class ApifyClient:
    """Async HTTP client for the Apify REST API (v2)."""

    def __init__(
        self,
        token: str | None = None,
        actor_id: str | None = None,
        actor_build: str | None = None,
        base_url: str | None = None,
        http_timeout: float | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.token = token if token is not None else settings.apify_token
        self.actor_id = actor_id or settings.apify_actor_id
        self.actor_build = actor_build or settings.apify_actor_build
        self.base_url = (base_url or settings.apify_base_url).rstrip("/")
        self.http_timeout = http_timeout or settings.apify_http_timeout_secs
        self._transport = transport
        self._clock = clock
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.http_timeout,
                transport=self._transport,
                headers={"Authorization": f"Bearer {self.token}"},
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    # ── Core Request Method ──

    async def _request(
        self,
        method: str,
        path: str,
        params: Dict[str, Any] | None = None,
        json_body: Any = None,
    ) -> Any:
        client = await self._get_client()
        url = f"{self.base_url}{path}"
        try:
            resp = await client.request(method, url, params=params, json=json_body)
        except httpx.RequestError as e:
            raise ApifyAPIError(f"Apify request to {path} failed: {e}") from e

        if resp.is_error:
            try:
                detail = resp.json().get("error", {}).get("message", resp.text)
            except ValueError:
                detail = resp.text
            raise ApifyAPIError(
                f"Apify {method} {path} returned {resp.status_code}: {detail}",
                resp.status_code,
            )
        return resp.json()

    @property
    def _actor_path(self) -> str:
        return self.actor_id.replace("/", "~")

    # ── Runs ──

    async def start_run(self, actor_input: Dict[str, Any]) -> ApifyRun:
        """Start an actor run with ``actor_input`` at the payload root."""
        params = {"build": self.actor_build} if self.actor_build else None
        payload = await self._request(
            "POST", f"/acts/{self._actor_path}/runs", params=params, json_body=actor_input
        )
        run = _parse_run(payload["data"])
        logger.info(
            f"Started Apify run {run.run_id} ({run.status})",
            extra={"apify_run_id": run.run_id},
        )
        return run

    async def get_run(self, run_id: str, wait_for_finish: int = 0) -> ApifyRun:
        params = {"waitForFinish": wait_for_finish} if wait_for_finish else None
        payload = await self._request("GET", f"/actor-runs/{run_id}", params=params)
        return _parse_run(payload["data"])

    async def wait_for_run(self, run_id: str, timeout_secs: int | None = None) -> ApifyRun:
        """Long-poll until the run is terminal or ``timeout_secs`` elapses."""
        timeout_secs = timeout_secs or settings.apify_wait_timeout_secs
        deadline = self._clock() + timeout_secs

        while True:
            remaining = deadline - self._clock()
            wait = int(min(MAX_WAIT_FOR_FINISH, max(1, remaining)))
            run = await self.get_run(run_id, wait_for_finish=wait)
            if run.status in TERMINAL_STATUSES:
                logger.info(
                    f"Apify run {run_id} finished: {run.status}",
                    extra={"apify_run_id": run_id},
                )
                return run
            if self._clock() >= deadline:
                raise ApifyRunTimeout(
                    f"Apify run {run_id} still {run.status} after {timeout_secs}s"
                )

    # ── Datasets ──

    async def fetch_items(
        self, dataset_id: str, limit: int | None = None
    ) -> List[Dict[str, Any]]:
        """Page through a dataset, stopping at ``limit`` items."""
        items: List[Dict[str, Any]] = []
        offset = 0

        while limit is None or len(items) < limit:
            page_size = DATASET_PAGE_SIZE
            if limit is not None:
                page_size = min(page_size, limit - len(items))
            page = await self._request(
                "GET",
                f"/datasets/{dataset_id}/items",
                params={"clean": "true", "format": "json", "offset": offset, "limit": page_size},
            )
            if not isinstance(page, list):
                raise ApifyAPIError(f"Unexpected dataset payload for {dataset_id}")
            items.extend(page)
            if len(page) < page_size:
                break
            offset += len(page)

        logger.info(f"Fetched {len(items)} items from dataset {dataset_id}")
        return items

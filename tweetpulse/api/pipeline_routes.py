"""TweetPulse: Pipeline Trigger Routes.

Thin HTTP surface over the collection, backfill and sentiment pipelines.
Every external client is built per request and closed afterwards.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel, Field
from sqlmodel import Session

from tweetpulse.ai.factory import build_provider
from tweetpulse.config import settings
from tweetpulse.connectors.apify.client import ApifyClient
from tweetpulse.connectors.apify.scraper import TwitterScraper
from tweetpulse.core.errors import (
    ApifyAPIError,
    ApifyRunFailed,
    ApifyRunTimeout,
    BackfillBatchNotFound,
    BackfillGuardError,
    BackfillStateError,
)
from tweetpulse.core.logging import get_logger
from tweetpulse.database import get_session
from tweetpulse.pipeline.backfill import BackfillScheduler, plan_batches
from tweetpulse.pipeline.collector import run_collection
from tweetpulse.pipeline.retention import run_retention
from tweetpulse.pipeline.sentiment_processor import SentimentProcessor

logger = get_logger("api.pipeline")

router = APIRouter(tags=["Pipeline"])

SCRAPER_ERRORS = (ApifyAPIError, ApifyRunFailed, ApifyRunTimeout)


# ── Dependencies ──


def require_internal_auth(
    x_api_key: Optional[str] = Header(default=None),
    x_vercel_cron: Optional[str] = Header(default=None),
) -> None:
    """Allow platform cron calls, or callers presenting INTERNAL_API_KEY."""
    if x_vercel_cron:
        return
    if not settings.internal_api_key:
        return
    if x_api_key != settings.internal_api_key:
        logger.warning("Rejected pipeline call with missing or wrong x-api-key")
        raise HTTPException(status_code=401, detail="Unauthorized")


async def get_scraper():
    client = ApifyClient()
    try:
        yield TwitterScraper(client)
    finally:
        await client.close()


async def get_sentiment_provider():
    try:
        provider = build_provider()
    except (ValueError, RuntimeError) as e:
        logger.error(f"Sentiment provider unavailable: {e}")
        raise HTTPException(status_code=503, detail=str(e))
    try:
        yield provider
    finally:
        await provider.close()


def _trigger_source(request: Request, provided: Optional[str]) -> str:
    if provided:
        return provided
    if request.headers.get("x-vercel-cron"):
        return "vercel-cron"
    return "manual"


# ── Request Models ──


class CollectRequest(BaseModel):
    keywords: Optional[List[str]] = None
    trigger_source: Optional[str] = None


class EnqueueRequest(BaseModel):
    """Either an explicit window, or a lookback split into batches."""

    keywords: List[str]
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    priority: int = 0
    total_days: Optional[int] = Field(default=None, ge=1)
    batch_days: int = Field(default=5, ge=1)


class ProcessBatchRequest(BaseModel):
    batch_id: Optional[int] = None
    force_new_run: bool = False


class ReplayRequest(BaseModel):
    min_retry_count: int = Field(default=0, ge=0)
    limit: int = Field(default=10, ge=1)


class CompactRequest(BaseModel):
    retention_days: Optional[int] = Field(default=None, ge=0)


# ── Collection ──


@router.post("/collect", status_code=202, dependencies=[Depends(require_internal_auth)])
async def collect(
    request: Request,
    body: Optional[CollectRequest] = None,
    session: Session = Depends(get_session),
    scraper: TwitterScraper = Depends(get_scraper),
):
    """Run one live collection attempt against the scraper."""
    body = body or CollectRequest()
    try:
        result = await run_collection(
            session,
            scraper,
            trigger_source=_trigger_source(request, body.trigger_source),
            keywords=body.keywords,
        )
    except SCRAPER_ERRORS as e:
        logger.error(f"Collection failed: {e}")
        raise HTTPException(status_code=502, detail=f"Collection failed: {e}")

    if result is None:
        return {"status": "skipped", "reason": "no_keywords"}
    return {"status": result.status, "data": result.model_dump()}


# ── Backfill ──


@router.post("/backfill/enqueue", dependencies=[Depends(require_internal_auth)])
async def enqueue_backfill(
    body: EnqueueRequest,
    session: Session = Depends(get_session),
):
    scheduler = BackfillScheduler(session, scraper=None)
    try:
        if body.start_date and body.end_date:
            batch_ids = [
                scheduler.enqueue_batch(
                    body.keywords, body.start_date, body.end_date, body.priority
                )
            ]
        elif body.total_days:
            batch_ids = [
                scheduler.enqueue_batch(**plan)
                for plan in plan_batches(body.keywords, body.total_days, body.batch_days)
            ]
        else:
            raise HTTPException(
                status_code=422,
                detail="Provide start_date and end_date, or total_days",
            )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return {"status": "success", "batch_ids": batch_ids}


@router.post("/backfill/process", dependencies=[Depends(require_internal_auth)])
async def process_backfill(
    body: Optional[ProcessBatchRequest] = None,
    session: Session = Depends(get_session),
    scraper: TwitterScraper = Depends(get_scraper),
):
    """Process one batch: by id, or the highest-priority pending one."""
    body = body or ProcessBatchRequest()
    scheduler = BackfillScheduler(session, scraper)
    try:
        if body.batch_id is not None:
            result = await scheduler.process_batch(body.batch_id, body.force_new_run)
        else:
            result = await scheduler.process_next(force_new_run=True)
    except BackfillBatchNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (BackfillStateError, BackfillGuardError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SCRAPER_ERRORS as e:
        logger.error(f"Backfill failed: {e}")
        raise HTTPException(status_code=502, detail=f"Backfill failed: {e}")

    if result is None:
        return {"status": "idle", "message": "No pending backfill batches"}
    return {"status": result.status, "data": result.model_dump()}


@router.get("/backfill/batches")
async def list_backfill_batches(
    status: Optional[str] = None,
    limit: int = 50,
    session: Session = Depends(get_session),
):
    scheduler = BackfillScheduler(session, scraper=None)
    batches = scheduler.list_batches(status=status, limit=limit)
    return {
        "status": "success",
        "count": len(batches),
        "batches": [
            {
                "id": b.id,
                "keywords": b.keywords,
                "start_date": b.start_date,
                "end_date": b.end_date,
                "status": b.status,
                "priority": b.priority,
                "metadata": b.batch_metadata,
                "created_at": b.created_at.isoformat(),
                "updated_at": b.updated_at.isoformat(),
            }
            for b in batches
        ],
    }


# ── Sentiment ──


@router.post("/sentiment/process", dependencies=[Depends(require_internal_auth)])
async def process_sentiment(
    session: Session = Depends(get_session),
    provider=Depends(get_sentiment_provider),
):
    stats = await SentimentProcessor(session, provider).process_pending()
    return {"status": "success", "stats": stats.model_dump()}


@router.post("/sentiment/replay", dependencies=[Depends(require_internal_auth)])
async def replay_sentiment(
    body: Optional[ReplayRequest] = None,
    session: Session = Depends(get_session),
    provider=Depends(get_sentiment_provider),
):
    body = body or ReplayRequest()
    stats = await SentimentProcessor(session, provider).replay_failed(
        min_retry_count=body.min_retry_count, limit=body.limit
    )
    return {"status": "success", "stats": stats.model_dump()}


# ── Maintenance ──


@router.post("/maintenance/compact", dependencies=[Depends(require_internal_auth)])
async def compact(
    body: Optional[CompactRequest] = None,
    session: Session = Depends(get_session),
):
    body = body or CompactRequest()
    removed = run_retention(session, body.retention_days)
    return {"status": "success", "removed_revisions": removed}


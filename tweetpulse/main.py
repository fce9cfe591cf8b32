"""TweetPulse: FastAPI Application Entry Point.

Tweet ingestion and sentiment annotation service.
"""

import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from sqlmodel import Session

from tweetpulse.api.pipeline_routes import router as pipeline_router
from tweetpulse.core.logging import get_logger
from tweetpulse.database import _mask_url, db_url, get_session, init_db, test_connection
from tweetpulse.pipeline.health import run_health_checks
from tweetpulse.scheduler.jobs import start_scheduler, stop_scheduler

logger = get_logger("main")

IS_SERVERLESS = bool(
    os.environ.get("VERCEL") or os.environ.get("AWS_LAMBDA_FUNCTION_NAME")
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info("🚀 TweetPulse starting up...")
    logger.info(f"🌍 Environment: {'SERVERLESS' if IS_SERVERLESS else 'LOCAL'}")
    if test_connection():
        try:
            init_db()
        except Exception as e:
            logger.error(f"❌ Table creation failed: {e}")
    else:
        logger.error("❌ Database NOT connected: endpoints will fail")
    if not IS_SERVERLESS:
        start_scheduler()
    yield
    if not IS_SERVERLESS:
        stop_scheduler()
    logger.info("TweetPulse shut down")


app = FastAPI(
    title="TweetPulse",
    description="Collect tweets via Apify, keep an append-only revision log, and annotate sentiment.",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(pipeline_router)


@app.get("/health", tags=["System"])
async def health_check(session: Session = Depends(get_session)):
    """Pipeline health: backlog, failures, recent runs and backfills."""
    report = run_health_checks(session)
    return {
        "service": "tweetpulse",
        "version": "1.0.0",
        **report.model_dump(),
    }


@app.get("/debug/db", tags=["System"])
async def debug_db():
    """Check database connectivity."""
    backend = "postgresql" if db_url.startswith("postgresql") else "sqlite"
    return {
        "connected": test_connection(),
        "backend": backend,
        "url": _mask_url(db_url),
        "environment": "serverless" if IS_SERVERLESS else "local",
    }

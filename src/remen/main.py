"""
Remen Backend Application

FastAPI application entrypoint with async lifespan management.
Checks the database, builds the service container, recovers interrupted
enrichment jobs and loads the models in the background.

Start locally:
    uvicorn remen.main:app --host 0.0.0.0 --port 8000 --reload
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from sqlalchemy import text

from remen.api.v1.notes import router as notes_router
from remen.api.v1.queue import router as queue_router
from remen.core.config import settings
from remen.core.container import ServiceContainer, build_services
from remen.core.database import dispose_engine, get_engine
from remen.core.logging import setup_logging

# Initialize logging before any log statements
setup_logging()
logger = logging.getLogger(__name__)


async def wait_for_db(retries: int = 10, delay: int = 1) -> bool:
    """
    Wait for PostgreSQL to become available.

    Useful in containerized environments where the database may start
    after the application.

    Args:
        retries: Maximum connection attempts.
        delay: Seconds between attempts.

    Returns:
        True if connection established, False if all retries exhausted.
    """
    engine = get_engine()
    for i in range(retries):
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("Postgres connection established")
            return True
        except Exception as e:  # noqa: BLE001
            logger.warning("Waiting for Postgres (%d/%d)... Error: %s", i + 1, retries, e)
            await asyncio.sleep(delay)
    return False


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
        1. Validate database connectivity (blocks startup on failure).
        2. Build services, re-queue unfinished notes, start model loading.

    Shutdown:
        1. Stop the queue worker and model loader.
        2. Dispose the database engine.
    """
    logger.info("Starting %s...", settings.PROJECT_NAME)
    logger.info("Log Level: %s", settings.LOG_LEVEL)

    if not await wait_for_db():
        logger.critical("Could not connect to Postgres. Shutting down.")
        raise RuntimeError("Database connection failed")

    services = build_services()
    app.state.services = services
    await services.start()

    yield  # Application runs here

    logger.info("Shutting down %s...", settings.PROJECT_NAME)
    await services.stop()
    await dispose_engine()


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="AI note enrichment queue with hybrid semantic and temporal search.",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(notes_router, prefix="/api/v1/notes", tags=["Notes"])
app.include_router(queue_router, prefix="/api/v1/queue", tags=["Queue"])


@app.get("/health")
async def health_check(request: Request) -> dict[str, Any]:
    """Health check with model readiness and queue depth."""
    services: ServiceContainer = request.app.state.services
    return {
        "status": "ok",
        "service": "remen",
        "environment": os.getenv("ENVIRONMENT", "local"),
        "models": {
            "llm": {"ready": services.llm.is_ready, "error": services.llm.error},
            "embeddings": {
                "ready": services.embeddings.is_ready,
                "error": services.embeddings.error,
            },
        },
        "queue": services.queue.get_status().model_dump(),
    }

"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI

if TYPE_CHECKING:
    from gmail_archiver.service import ArchiverService

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Service components are started and stopped by :class:`ArchiverService`."""
    logger.info("api_started")
    yield
    logger.info("api_stopped")


def create_app(service: ArchiverService) -> FastAPI:
    """Build the HTTP API over an already-constructed service."""
    app = FastAPI(
        title="Gmail Archiver",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.service = service

    from gmail_archiver.routers.attachments import router as attachments_router
    from gmail_archiver.routers.emails import router as emails_router
    from gmail_archiver.routers.stats import router as stats_router
    from gmail_archiver.routers.sync import router as sync_router
    from gmail_archiver.routers.webhook import router as webhook_router

    app.include_router(emails_router)
    app.include_router(attachments_router)
    app.include_router(stats_router)
    app.include_router(sync_router)
    app.include_router(webhook_router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "gmail-archiver"}

    return app

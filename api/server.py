"""FastAPI server for the sync engine.

Thin adapter over SyncService and WebhookDispatcher. The worker builds
both and passes them in:

    app = create_app(sync_service=service, dispatcher=dispatcher)
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import calendar, health, sync
from core import __version__
from core.observability.logging import get_logger
from sync.service import SyncService
from watch_channels.webhook import WebhookDispatcher

logger = get_logger(__name__)


def create_app(
    sync_service: Optional[SyncService] = None,
    dispatcher: Optional[WebhookDispatcher] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("sync_api_starting")
        yield
        if dispatcher is not None:
            dispatcher.close()
        logger.info("sync_api_stopping")

    app = FastAPI(
        title="DTE Sync API",
        description="Manual trigger, run history and calendar webhook for the external sync engine",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.sync_service = sync_service
    app.state.dispatcher = dispatcher

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(sync.router, prefix="/api/sync", tags=["Sync"])
    app.include_router(calendar.router, prefix="/api/calendar", tags=["Calendar"])

    return app

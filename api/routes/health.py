"""Health check endpoints."""

from datetime import datetime, timezone
from typing import Dict

from fastapi import APIRouter, Request
from pydantic import BaseModel

from core import __version__


router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str
    version: str
    services: Dict[str, str]


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Health check endpoint."""
    state = request.app.state
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        services={
            "api": "up",
            "sync": "up" if getattr(state, "sync_service", None) is not None else "disabled",
            "calendar_webhook": "up" if getattr(state, "dispatcher", None) is not None else "disabled",
        },
    )


@router.get("/ready")
async def readiness_check() -> Dict[str, str]:
    """Readiness probe."""
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> Dict[str, str]:
    """Liveness probe."""
    return {"status": "alive"}

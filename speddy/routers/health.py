"""
Health check router.

Liveness reports the process is up; readiness also pings the database.
"""

from datetime import datetime, timezone

import asyncpg
import structlog
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..config import settings
from ..database import ping

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    service: str
    version: str
    timestamp: str


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health check",
)
async def health_check(request: Request):
    """
    Basic health check.

    Returns 200 while the process runs, reporting ``shutting_down`` during
    graceful shutdown.
    """
    shutting_down = getattr(request.app.state, "is_shutting_down", False)
    return HealthResponse(
        status="shutting_down" if shutting_down else "healthy",
        service=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@router.get("/ready", summary="Readiness check")
async def readiness_check():
    """Ready when a database round trip succeeds."""
    try:
        database_ok = await ping()
    except (OSError, asyncpg.PostgresError) as e:
        logger.warning("Readiness check failed", error=str(e))
        database_ok = False

    if not database_ok:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"ready": False, "checks": {"database": "unavailable"}},
        )
    return {"ready": True, "checks": {"database": "ok"}}

"""Health check endpoints for monitoring."""

from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.orm import Session

from api.config.settings import settings
from api.config.database import get_db

logger = structlog.get_logger()
router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    timestamp: str
    database: str
    dispatch_mode: str


def check_database(db: Session) -> str:
    """Check database connectivity."""
    try:
        db.execute(text("SELECT 1")).fetchone()
        return "connected"
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        return "disconnected"


def dispatch_mode(request: Request) -> str:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    return dispatcher.mode if dispatcher is not None else "unavailable"


@router.get("", response_model=HealthResponse)
@router.get("/", response_model=HealthResponse)
async def health_check(
    request: Request,
    db: Session = Depends(get_db),
) -> HealthResponse:
    """
    Basic health check endpoint.

    Returns overall status, database connectivity and the dispatch mode.
    """
    db_status = check_database(db)

    return HealthResponse(
        status="healthy" if db_status == "connected" else "unhealthy",
        version=settings.APP_VERSION,
        timestamp=datetime.now(timezone.utc).isoformat(),
        database=db_status,
        dispatch_mode=dispatch_mode(request),
    )

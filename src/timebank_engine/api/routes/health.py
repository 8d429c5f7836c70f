"""Liveness, readiness and health probes."""

import logging
from datetime import datetime

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from timebank_engine import __version__
from timebank_engine.api.dependencies import DbSession
from timebank_engine.timeutils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    timestamp: datetime
    database: str
    auto_sync: str


async def _database_ok(db) -> bool:
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("Database probe failed", exc_info=True)
        return False
    return True


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request, db: DbSession) -> HealthResponse:
    """Report database reachability and whether the auto-sync loop is running."""
    database_ok = await _database_ok(db)
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        auto_sync = "disabled"
    elif scheduler.running:
        auto_sync = "running"
    else:
        auto_sync = "stopped"

    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        version=__version__,
        timestamp=utcnow(),
        database="healthy" if database_ok else "unhealthy",
        auto_sync=auto_sync,
    )


@router.get("/ready")
async def readiness_check(db: DbSession):
    """Ready once the database answers; 503 otherwise."""
    if not await _database_ok(db):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unavailable"},
        )
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    return {"status": "alive"}

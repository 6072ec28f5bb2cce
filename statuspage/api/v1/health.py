import time

import structlog
from fastapi import APIRouter, Request
from sqlalchemy import text

import statuspage.core.database as db_module
from statuspage.schemas.health import HealthResponse

router = APIRouter()

logger = structlog.get_logger()

_start_time = time.monotonic()


@router.get("/health")
async def health_check(request: Request) -> HealthResponse:
    """Service health check. No auth required."""
    try:
        async with db_module.async_session() as session:
            await session.execute(text("SELECT 1"))
        database = "connected"
    except Exception as e:
        logger.warning("health_database_unavailable", error=str(e))
        database = "unavailable"

    scheduler = getattr(request.app.state, "scheduler", None)
    return HealthResponse(
        status="ok" if database == "connected" else "degraded",
        database=database,
        scheduler_running=bool(scheduler and scheduler.running),
        uptime_seconds=round(time.monotonic() - _start_time, 1),
    )

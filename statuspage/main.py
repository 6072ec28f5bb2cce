from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from statuspage.api.v1.router import v1_router
from statuspage.config import settings
from statuspage.core.database import close_db, init_db
from statuspage.core.exceptions import StatusPageError, persistence_error_handler, status_error_handler
from statuspage.core.middleware import AuthMiddleware, RequestLoggingMiddleware
from statuspage.services.health.aggregator import StatusAggregator
from statuspage.services.health.probe import ProbeExecutor
from statuspage.services.health.scheduler import HealthCheckScheduler
from statuspage.services.incidents import AutomatedIncidentNotifier
from statuspage.services.uptime_recorder import DailyUptimeJob, UptimeRecorder

_NAME_TO_LEVEL = {
    "debug": 10,
    "info": 20,
    "warning": 30,
    "warn": 30,
    "error": 40,
    "critical": 50,
}

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        _NAME_TO_LEVEL.get(settings.status_log_level.lower(), 20)
    ),
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    await init_db()

    executor = ProbeExecutor()
    notifier = AutomatedIncidentNotifier() if settings.status_automated_incidents else None
    scheduler = HealthCheckScheduler(executor=executor, aggregator=StatusAggregator(notifier=notifier))
    recorder = UptimeRecorder()
    daily_job = DailyUptimeJob(recorder)
    app.state.scheduler = scheduler
    app.state.uptime_recorder = recorder

    if settings.status_scheduler_autostart:
        await scheduler.start()
        await daily_job.start()

    logger.info(
        "statuspage_starting",
        db_url=settings.status_db_url.split("@")[-1],
        scheduler=settings.status_scheduler_autostart,
        automated_incidents=settings.status_automated_incidents,
        maintenance_policy=settings.status_uptime_maintenance_policy,
    )
    yield

    await daily_job.stop()
    await scheduler.stop()
    await executor.close()
    await close_db()
    logger.info("statuspage_stopping")


app = FastAPI(
    title="Status Page Engine",
    description="Health checks, status rollup and uptime history for status pages",
    version="0.1.0",
    lifespan=lifespan,
)

# Exception handlers
app.add_exception_handler(StatusPageError, status_error_handler)
app.add_exception_handler(SQLAlchemyError, persistence_error_handler)

# Middleware (Starlette: last-added = outermost. Execution order top to bottom.)
# 1. RequestLogging (outermost), logs all requests including auth rejections
# 2. CORS, handles preflight before auth
# 3. Auth, Bearer API key validation (innermost)
app.add_middleware(AuthMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.status_cors_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

# Routes
app.include_router(v1_router)


@app.get("/")
async def root():
    return {"service": "statuspage", "version": "0.1.0"}

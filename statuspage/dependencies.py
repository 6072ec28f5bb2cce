from fastapi import Request

from statuspage.core.exceptions import AuthorizationError
from statuspage.services.entities import EntityService
from statuspage.services.health.scheduler import HealthCheckScheduler
from statuspage.services.uptime_recorder import UptimeRecorder


def get_scheduler(request: Request) -> HealthCheckScheduler:
    """Return the health check scheduler stored on app state during lifespan."""
    return request.app.state.scheduler


def get_uptime_recorder(request: Request) -> UptimeRecorder:
    return request.app.state.uptime_recorder


def get_entity_service(request: Request) -> EntityService:
    """Entity service sharing the scheduler's aggregator, so rollups use the same locks."""
    return EntityService(aggregator=request.app.state.scheduler.aggregator)


def require_admin(request: Request) -> None:
    """Dependency that enforces an admin-scoped API key."""
    scope = getattr(request.state, "api_key_scope", None)
    if scope == "admin":
        return
    raise AuthorizationError("This endpoint requires an admin-scoped API key.")

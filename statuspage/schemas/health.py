from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str  # "ok" or "degraded"
    database: str  # "connected" or "unavailable"
    scheduler_running: bool = False
    uptime_seconds: float = 0.0
    version: str = "0.1.0"


class PublicStatusResponse(BaseModel):
    entity_type: str
    id: str
    name: str
    status: str  # display status, MAINTENANCE while a window is active
    last_check_at: str | None = None

from datetime import datetime

from pydantic import BaseModel


class HealthCheckSettingsResponse(BaseModel):
    enabled: bool
    scheduler_interval_ms: int
    thread_pool_size: int
    default_interval_seconds: int
    default_timeout_seconds: int
    raw: dict[str, str]  # stored key → value, defaults merged in


class EntityCheckState(BaseModel):
    entity_type: str  # "platform", "app" or "component"
    id: str
    name: str
    parent_id: str | None = None
    status: str
    display_status: str | None = None
    check_status: str
    check_enabled: bool
    check_type: str
    check_url: str | None = None
    check_interval_seconds: int
    check_timeout_seconds: int
    check_expected_status: int
    check_failure_threshold: int
    check_inherit_from_app: bool | None = None
    last_check_at: datetime | None = None
    last_check_success: bool | None = None
    last_check_message: str | None = None
    consecutive_failures: int = 0


class HealthCheckOverview(BaseModel):
    total: int
    enabled: int
    healthy: int
    failing: int
    entities: list[EntityCheckState]


class TriggerCheckResponse(BaseModel):
    entity_type: str
    entity_id: str
    success: bool
    message: str
    duration_ms: int
    timestamp: datetime
    status: str | None = None  # stored status after the result was applied


class TriggerAllResponse(BaseModel):
    submitted: int

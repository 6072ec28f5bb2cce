from fastapi import APIRouter, Body, Depends

from statuspage.dependencies import get_entity_service, get_scheduler, require_admin
from statuspage.schemas.health_checks import (
    EntityCheckState,
    HealthCheckOverview,
    HealthCheckSettingsResponse,
    TriggerAllResponse,
    TriggerCheckResponse,
)
from statuspage.services.entities import EntityService, parse_entity_type
from statuspage.services.health.scheduler import HealthCheckScheduler
from statuspage.services.health.settings import HealthCheckSettingsService

router = APIRouter()

_settings_service = HealthCheckSettingsService()


async def _settings_response() -> HealthCheckSettingsResponse:
    current = await _settings_service.get_settings()
    return HealthCheckSettingsResponse(
        enabled=current.enabled,
        scheduler_interval_ms=current.scheduler_interval_ms,
        thread_pool_size=current.thread_pool_size,
        default_interval_seconds=current.default_interval_seconds,
        default_timeout_seconds=current.default_timeout_seconds,
        raw=await _settings_service.get_raw(),
    )


@router.get("/api/health-checks/settings")
async def get_health_check_settings() -> HealthCheckSettingsResponse:
    """Global scheduler settings (stored values over environment defaults)."""
    return await _settings_response()


@router.put("/api/health-checks/settings", dependencies=[Depends(require_admin)])
async def update_health_check_settings(
    body: dict[str, str | int | bool] = Body(
        ..., examples=[{"health_check.enabled": "true", "health_check.thread_pool_size": "20"}]
    ),
) -> HealthCheckSettingsResponse:
    """Update settings by key. Changes apply from the scheduler's next tick."""
    updates = {key: str(value).lower() if isinstance(value, bool) else str(value) for key, value in body.items()}
    await _settings_service.update_settings(updates)
    return await _settings_response()


@router.get("/api/health-checks/status")
async def list_health_check_status(
    entity_type: str | None = None,
    service: EntityService = Depends(get_entity_service),
) -> HealthCheckOverview:
    """Stored status and last probe metadata of every entity."""
    kind = parse_entity_type(entity_type) if entity_type else None
    return await service.list_check_states(kind)


@router.get("/api/health-checks/status/{entity_type}/{entity_id}")
async def get_health_check_status(
    entity_type: str,
    entity_id: str,
    service: EntityService = Depends(get_entity_service),
) -> EntityCheckState:
    """Stored status, check configuration and last probe metadata of one entity."""
    return await service.get_check_state(parse_entity_type(entity_type), entity_id)


@router.post("/api/health-checks/trigger/all", dependencies=[Depends(require_admin)])
async def trigger_all_checks(
    scheduler: HealthCheckScheduler = Depends(get_scheduler),
) -> TriggerAllResponse:
    """Queue a check of every enabled entity now, regardless of interval."""
    return TriggerAllResponse(submitted=await scheduler.trigger_all())


@router.post("/api/health-checks/trigger/{entity_type}/{entity_id}", dependencies=[Depends(require_admin)])
async def trigger_check(
    entity_type: str,
    entity_id: str,
    scheduler: HealthCheckScheduler = Depends(get_scheduler),
) -> TriggerCheckResponse:
    """Run one check now and return its result.

    A failed check is reported with ``success: false`` and HTTP 200.
    """
    outcome = await scheduler.trigger_check(parse_entity_type(entity_type), entity_id)
    return TriggerCheckResponse(
        entity_type=outcome.ref.type.value,
        entity_id=outcome.ref.id,
        success=outcome.success,
        message=outcome.message,
        duration_ms=outcome.duration_ms,
        timestamp=outcome.timestamp,
        status=outcome.status,
    )

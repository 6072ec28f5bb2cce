from fastapi import APIRouter, Depends, Query

import statuspage.core.database as db_module
from statuspage.core.clock import as_utc
from statuspage.core.exceptions import NotFoundError
from statuspage.dependencies import get_scheduler
from statuspage.schemas.health import PublicStatusResponse
from statuspage.schemas.uptime import UptimeHistoryResponse
from statuspage.services.entities import parse_entity_type
from statuspage.services.health import EntityRef, EntityType
from statuspage.services.health.scheduler import HealthCheckScheduler
from statuspage.services.overlay import ENTITY_MODELS
from statuspage.services.uptime_history import MAX_HISTORY_DAYS, UptimeHistoryService

router = APIRouter()

_history_service = UptimeHistoryService()


async def _public_entity(ref: EntityRef):
    """Load an entity visible on public pages. Private apps and platforms are hidden."""
    async with db_module.async_session() as session:
        entity = await session.get(ENTITY_MODELS[ref.type], ref.id)
        if entity is not None and ref.type == EntityType.COMPONENT:
            app = await session.get(ENTITY_MODELS[EntityType.APP], entity.app_id)
            visible = app is not None and app.is_public
        else:
            visible = entity is not None and entity.is_public
    if not visible:
        raise NotFoundError(f"{ref.type.value.capitalize()} '{ref.id}' not found.")
    return entity


@router.get("/api/public/status/{entity_type}/{entity_id}")
async def public_status(
    entity_type: str,
    entity_id: str,
    scheduler: HealthCheckScheduler = Depends(get_scheduler),
) -> PublicStatusResponse:
    """Display status: MAINTENANCE during an active window, otherwise the stored status."""
    ref = EntityRef(parse_entity_type(entity_type), entity_id)
    entity = await _public_entity(ref)
    status = await scheduler.aggregator.get_display_status(ref)
    last_check_at = as_utc(entity.last_check_at)
    return PublicStatusResponse(
        entity_type=ref.type.value,
        id=entity.id,
        name=entity.name,
        status=status.value,
        last_check_at=last_check_at.isoformat() if last_check_at else None,
    )


@router.get("/api/public/uptime-history/{entity_type}/{entity_id}")
async def public_uptime_history(
    entity_type: str,
    entity_id: str,
    days: int = Query(90, ge=1, le=MAX_HISTORY_DAYS),
) -> UptimeHistoryResponse:
    """Daily uptime for the last ``days`` days (default 90), oldest first."""
    ref = EntityRef(parse_entity_type(entity_type), entity_id)
    await _public_entity(ref)
    return await _history_service.get_uptime_history(ref, days)


@router.get("/api/public/apps/{app_id}/components/uptime-history")
async def public_components_uptime_history(
    app_id: str,
    days: int = Query(90, ge=1, le=MAX_HISTORY_DAYS),
) -> list[UptimeHistoryResponse]:
    """Daily uptime of every component of a public app, in display order."""
    await _public_entity(EntityRef(EntityType.APP, app_id))
    return await _history_service.get_app_components_history(app_id, days)

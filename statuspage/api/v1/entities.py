from fastapi import APIRouter, Depends

from statuspage.core.exceptions import NotFoundError
from statuspage.dependencies import get_entity_service, require_admin
from statuspage.schemas.entities import AppCreate, CheckConfigUpdate, ComponentCreate, PlatformCreate
from statuspage.schemas.health_checks import EntityCheckState
from statuspage.services.entities import EntityService
from statuspage.services.health import EntityType

router = APIRouter(dependencies=[Depends(require_admin)])

_KINDS = {
    "platforms": EntityType.PLATFORM,
    "apps": EntityType.APP,
    "components": EntityType.COMPONENT,
}


def _kind(kind: str) -> EntityType:
    if kind not in _KINDS:
        raise NotFoundError(f"Unknown resource '{kind}'.")
    return _KINDS[kind]


@router.post("/api/platforms", status_code=201)
async def create_platform(
    body: PlatformCreate, service: EntityService = Depends(get_entity_service)
) -> EntityCheckState:
    return await service.create_platform(body)


@router.post("/api/apps", status_code=201)
async def create_app(body: AppCreate, service: EntityService = Depends(get_entity_service)) -> EntityCheckState:
    return await service.create_app(body)


@router.post("/api/components", status_code=201)
async def create_component(
    body: ComponentCreate, service: EntityService = Depends(get_entity_service)
) -> EntityCheckState:
    return await service.create_component(body)


@router.patch("/api/{kind}/{entity_id}/check")
async def update_check_config(
    kind: str,
    entity_id: str,
    body: CheckConfigUpdate,
    service: EntityService = Depends(get_entity_service),
) -> EntityCheckState:
    """Change an entity's check configuration. Takes effect on the next tick."""
    return await service.update_check_config(_kind(kind), entity_id, body)


@router.delete("/api/{kind}/{entity_id}", status_code=204)
async def delete_entity(
    kind: str, entity_id: str, service: EntityService = Depends(get_entity_service)
) -> None:
    await service.delete_entity(_kind(kind), entity_id)

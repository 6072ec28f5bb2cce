import uuid

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

import statuspage.core.database as db_module
from statuspage.core.clock import as_utc
from statuspage.core.database import (
    StatusApp,
    StatusComponent,
    StatusIncident,
    StatusIncidentComponent,
    StatusIncidentUpdate,
    StatusMaintenance,
    StatusMaintenanceComponent,
    StatusPlatform,
    StatusUptimeHistory,
)
from statuspage.core.exceptions import NotFoundError, ValidationError
from statuspage.schemas.entities import AppCreate, CheckConfigUpdate, ComponentCreate, PlatformCreate
from statuspage.schemas.health_checks import EntityCheckState, HealthCheckOverview
from statuspage.services.health import CheckType, EntityRef, EntityType, Status
from statuspage.services.health.aggregator import StatusAggregator
from statuspage.services.health.settings import HealthCheckSettingsService
from statuspage.services.overlay import ENTITY_MODELS

logger = structlog.get_logger()

_CHECK_FIELDS = (
    "check_enabled",
    "check_url",
    "check_interval_seconds",
    "check_timeout_seconds",
    "check_expected_status",
    "check_failure_threshold",
)


def parse_entity_type(value: str) -> EntityType:
    try:
        return EntityType(value.lower())
    except ValueError as e:
        raise ValidationError(
            f"Unknown entity type '{value}'. Expected platform, app or component."
        ) from e


def _parent_id(entity_type: EntityType, entity) -> str | None:
    if entity_type == EntityType.APP:
        return entity.platform_id
    if entity_type == EntityType.COMPONENT:
        return entity.app_id
    return None


def to_check_state(entity_type: EntityType, entity, display_status: Status | None = None) -> EntityCheckState:
    return EntityCheckState(
        entity_type=entity_type.value,
        id=entity.id,
        name=entity.name,
        parent_id=_parent_id(entity_type, entity),
        status=Status.parse(entity.status).value,
        display_status=display_status.value if display_status else None,
        check_status=Status.parse(entity.check_status).value,
        check_enabled=bool(entity.check_enabled),
        check_type=CheckType.parse(entity.check_type).value,
        check_url=entity.check_url,
        check_interval_seconds=entity.check_interval_seconds,
        check_timeout_seconds=entity.check_timeout_seconds,
        check_expected_status=entity.check_expected_status,
        check_failure_threshold=entity.check_failure_threshold,
        check_inherit_from_app=getattr(entity, "check_inherit_from_app", None),
        last_check_at=as_utc(entity.last_check_at),
        last_check_success=entity.last_check_success,
        last_check_message=entity.last_check_message,
        consecutive_failures=entity.consecutive_failures or 0,
    )


def _apply_check_config(entity, data: CheckConfigUpdate, entity_type: EntityType) -> None:
    updates = data.model_dump(exclude_unset=True)
    if "check_type" in updates and updates["check_type"] is not None:
        check_type = updates["check_type"].strip().upper()
        if check_type not in CheckType.__members__:
            raise ValidationError(f"Unknown check type '{updates['check_type']}'.")
        entity.check_type = check_type
    for field in _CHECK_FIELDS:
        if updates.get(field) is not None:
            setattr(entity, field, updates[field])
    if updates.get("check_inherit_from_app") is not None:
        if entity_type != EntityType.COMPONENT:
            raise ValidationError("Only components can inherit check configuration.")
        entity.check_inherit_from_app = updates["check_inherit_from_app"]


def _reset_check_state(entity, entity_type: EntityType) -> None:
    entity.consecutive_failures = 0
    entity.check_status = Status.OPERATIONAL.value
    if entity_type == EntityType.COMPONENT:
        entity.status = Status.OPERATIONAL.value


class EntityService:
    """Manages checkable entities. Every change that can move a status is rolled up."""

    def __init__(
        self,
        session_factory: async_sessionmaker | None = None,
        aggregator: StatusAggregator | None = None,
        settings_service: HealthCheckSettingsService | None = None,
    ):
        self._session_factory_override = session_factory
        self._aggregator = aggregator or StatusAggregator(session_factory)
        self._settings_service = settings_service or HealthCheckSettingsService(session_factory)

    @property
    def _session_factory(self) -> async_sessionmaker:
        return self._session_factory_override or db_module.async_session

    async def _new_entity(self, model, **fields):
        defaults = await self._settings_service.get_settings()
        return model(
            id=str(uuid.uuid4()),
            status=Status.OPERATIONAL.value,
            check_status=Status.OPERATIONAL.value,
            check_enabled=False,
            check_type=CheckType.NONE.value,
            check_interval_seconds=defaults.default_interval_seconds,
            check_timeout_seconds=defaults.default_timeout_seconds,
            check_expected_status=200,
            check_failure_threshold=3,
            consecutive_failures=0,
            **fields,
        )

    async def create_platform(self, data: PlatformCreate) -> EntityCheckState:
        platform = await self._new_entity(
            StatusPlatform,
            name=data.name,
            slug=data.slug,
            organization_id=data.organization_id,
            is_public=data.is_public,
        )
        _apply_check_config(platform, data, EntityType.PLATFORM)
        async with self._session_factory() as session:
            session.add(platform)
            await session.commit()
        logger.info("platform_created", platform_id=platform.id, name=platform.name)
        return to_check_state(EntityType.PLATFORM, platform)

    async def create_app(self, data: AppCreate) -> EntityCheckState:
        app = await self._new_entity(
            StatusApp,
            name=data.name,
            platform_id=data.platform_id,
            slug=data.slug,
            organization_id=data.organization_id,
            is_public=data.is_public,
        )
        _apply_check_config(app, data, EntityType.APP)
        async with self._session_factory() as session:
            if data.platform_id and await session.get(StatusPlatform, data.platform_id) is None:
                raise NotFoundError(f"Platform '{data.platform_id}' not found.")
            session.add(app)
            await session.commit()
        logger.info("app_created", app_id=app.id, platform_id=app.platform_id, name=app.name)
        if app.platform_id:
            await self._aggregator.recompute_platform(app.platform_id)
        return to_check_state(EntityType.APP, app)

    async def create_component(self, data: ComponentCreate) -> EntityCheckState:
        component = await self._new_entity(
            StatusComponent,
            app_id=data.app_id,
            name=data.name,
            position=data.position,
            group_name=data.group_name,
            check_inherit_from_app=True,
        )
        _apply_check_config(component, data, EntityType.COMPONENT)
        async with self._session_factory() as session:
            if await session.get(StatusApp, data.app_id) is None:
                raise NotFoundError(f"App '{data.app_id}' not found.")
            session.add(component)
            await session.commit()
        logger.info("component_created", component_id=component.id, app_id=component.app_id, name=component.name)
        await self._aggregator.recompute_app(component.app_id)
        return to_check_state(EntityType.COMPONENT, component)

    async def update_check_config(
        self, entity_type: EntityType, entity_id: str, data: CheckConfigUpdate
    ) -> EntityCheckState:
        """Change an entity's check configuration.

        Disabling a check clears its failure counter and probe status so a
        stale outage does not linger in the rollup.
        """
        async with self._session_factory() as session:
            entity = await session.get(ENTITY_MODELS[entity_type], entity_id)
            if entity is None:
                raise NotFoundError(f"{entity_type.value.capitalize()} '{entity_id}' not found.")
            was_enabled = bool(entity.check_enabled)
            _apply_check_config(entity, data, entity_type)
            if was_enabled and not entity.check_enabled:
                _reset_check_state(entity, entity_type)
            await session.commit()

        logger.info(
            "check_config_updated",
            entity=str(EntityRef(entity_type, entity_id)),
            check_enabled=entity.check_enabled,
            check_type=entity.check_type,
        )
        await self._rollup(entity_type, entity)
        return await self.get_check_state(entity_type, entity_id)

    async def delete_entity(self, entity_type: EntityType, entity_id: str) -> None:
        """Delete an entity and every row that references it, in one transaction.

        Deleting a platform detaches its apps rather than removing them.
        """
        async with self._session_factory() as session:
            entity = await session.get(ENTITY_MODELS[entity_type], entity_id)
            if entity is None:
                raise NotFoundError(f"{entity_type.value.capitalize()} '{entity_id}' not found.")
            parent_id = _parent_id(entity_type, entity)
            if entity_type == EntityType.COMPONENT:
                await _delete_component_rows(
                    session, select(StatusComponent.id).where(StatusComponent.id == entity_id)
                )
            elif entity_type == EntityType.APP:
                await _delete_app_rows(session, entity_id)
            else:
                await session.execute(
                    update(StatusApp).where(StatusApp.platform_id == entity_id).values(platform_id=None)
                )
            scope_column = getattr(StatusUptimeHistory, f"{entity_type.value}_id")
            await session.execute(delete(StatusUptimeHistory).where(scope_column == entity_id))
            await session.delete(entity)
            await session.commit()

        logger.info("entity_deleted", entity=str(EntityRef(entity_type, entity_id)))
        self._aggregator.forget(EntityRef(entity_type, entity_id))
        if entity_type == EntityType.COMPONENT:
            await self._aggregator.recompute_app(parent_id)
        elif entity_type == EntityType.APP and parent_id:
            await self._aggregator.recompute_platform(parent_id)

    async def _rollup(self, entity_type: EntityType, entity) -> None:
        if entity_type == EntityType.COMPONENT:
            await self._aggregator.recompute_app(entity.app_id)
        elif entity_type == EntityType.APP:
            await self._aggregator.recompute_app(entity.id)
        else:
            await self._aggregator.recompute_platform(entity.id)

    async def get_check_state(self, entity_type: EntityType, entity_id: str) -> EntityCheckState:
        """Stored status, check configuration and last probe metadata of one entity."""
        async with self._session_factory() as session:
            entity = await session.get(ENTITY_MODELS[entity_type], entity_id)
            if entity is None:
                raise NotFoundError(f"{entity_type.value.capitalize()} '{entity_id}' not found.")
        display = await self._aggregator.get_display_status(EntityRef(entity_type, entity_id))
        return to_check_state(entity_type, entity, display)

    async def list_check_states(self, entity_type: EntityType | None = None) -> HealthCheckOverview:
        types = [entity_type] if entity_type else list(EntityType)
        states: list[EntityCheckState] = []
        async with self._session_factory() as session:
            for kind in types:
                model = ENTITY_MODELS[kind]
                result = await session.execute(select(model).order_by(model.name))
                states.extend(to_check_state(kind, e) for e in result.scalars().all())

        enabled = [s for s in states if s.check_enabled]
        return HealthCheckOverview(
            total=len(states),
            enabled=len(enabled),
            healthy=sum(1 for s in enabled if s.last_check_success),
            failing=sum(1 for s in enabled if s.last_check_success is False),
            entities=states,
        )


# ON DELETE CASCADE is not enforced on SQLite connections.


async def _delete_component_rows(session, component_ids) -> None:
    """Links and uptime rows of the components selected by ``component_ids``."""
    await session.execute(
        delete(StatusIncidentComponent).where(StatusIncidentComponent.component_id.in_(component_ids))
    )
    await session.execute(
        delete(StatusMaintenanceComponent).where(StatusMaintenanceComponent.component_id.in_(component_ids))
    )
    await session.execute(delete(StatusUptimeHistory).where(StatusUptimeHistory.component_id.in_(component_ids)))


async def _delete_app_rows(session, app_id: str) -> None:
    await _delete_component_rows(session, select(StatusComponent.id).where(StatusComponent.app_id == app_id))

    incident_ids = select(StatusIncident.id).where(StatusIncident.app_id == app_id)
    await session.execute(delete(StatusIncidentComponent).where(StatusIncidentComponent.incident_id.in_(incident_ids)))
    await session.execute(delete(StatusIncidentUpdate).where(StatusIncidentUpdate.incident_id.in_(incident_ids)))
    await session.execute(delete(StatusIncident).where(StatusIncident.app_id == app_id))

    maintenance_ids = select(StatusMaintenance.id).where(StatusMaintenance.app_id == app_id)
    await session.execute(
        delete(StatusMaintenanceComponent).where(StatusMaintenanceComponent.maintenance_id.in_(maintenance_ids))
    )
    await session.execute(delete(StatusMaintenance).where(StatusMaintenance.app_id == app_id))

    await session.execute(delete(StatusComponent).where(StatusComponent.app_id == app_id))

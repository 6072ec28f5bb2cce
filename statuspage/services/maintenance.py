import uuid
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import statuspage.core.database as db_module
from statuspage.core.clock import Clock, as_utc, utc_now
from statuspage.core.database import (
    StatusApp,
    StatusComponent,
    StatusMaintenance,
    StatusMaintenanceComponent,
)
from statuspage.core.exceptions import ConflictError, NotFoundError, ValidationError
from statuspage.schemas.incidents import MaintenanceCreate, MaintenanceResponse

logger = structlog.get_logger()

SCHEDULED = "SCHEDULED"
IN_PROGRESS = "IN_PROGRESS"
COMPLETED = "COMPLETED"
CANCELLED = "CANCELLED"


def maintenance_phase(status: str, starts_at: datetime, ends_at: datetime, now: datetime) -> str:
    """Status a maintenance window should have at ``now``. CANCELLED is terminal."""
    if status == CANCELLED:
        return CANCELLED
    if now >= as_utc(ends_at):
        return COMPLETED
    if now >= as_utc(starts_at):
        return IN_PROGRESS
    return SCHEDULED


async def sync_maintenance_statuses(session: AsyncSession, now: datetime) -> int:
    """Persist SCHEDULED → IN_PROGRESS → COMPLETED transitions. Returns the number changed."""
    result = await session.execute(
        select(StatusMaintenance).where(StatusMaintenance.status.in_((SCHEDULED, IN_PROGRESS)))
    )
    changed = 0
    for maintenance in result.scalars().all():
        phase = maintenance_phase(maintenance.status, maintenance.starts_at, maintenance.ends_at, now)
        if phase != maintenance.status:
            logger.info(
                "maintenance_status_changed",
                maintenance_id=maintenance.id,
                previous=maintenance.status,
                current=phase,
            )
            maintenance.status = phase
            changed += 1
    if changed:
        await session.commit()
    return changed


async def _component_ids(session: AsyncSession, maintenance_id: str) -> list[str]:
    result = await session.execute(
        select(StatusMaintenanceComponent.component_id).where(
            StatusMaintenanceComponent.maintenance_id == maintenance_id
        )
    )
    return list(result.scalars().all())


def _to_response(maintenance: StatusMaintenance, component_ids: list[str]) -> MaintenanceResponse:
    return MaintenanceResponse(
        id=maintenance.id,
        app_id=maintenance.app_id,
        title=maintenance.title,
        description=maintenance.description,
        status=maintenance.status,
        starts_at=as_utc(maintenance.starts_at),
        ends_at=as_utc(maintenance.ends_at),
        is_public=maintenance.is_public,
        component_ids=component_ids,
    )


class MaintenanceService:
    def __init__(self, session_factory: async_sessionmaker | None = None, clock: Clock = utc_now):
        self._session_factory_override = session_factory
        self._clock = clock

    @property
    def _session_factory(self) -> async_sessionmaker:
        return self._session_factory_override or db_module.async_session

    async def create_maintenance(self, data: MaintenanceCreate) -> MaintenanceResponse:
        starts_at, ends_at = as_utc(data.starts_at), as_utc(data.ends_at)
        if ends_at <= starts_at:
            raise ValidationError("Maintenance must end after it starts.")

        async with self._session_factory() as session:
            if await session.get(StatusApp, data.app_id) is None:
                raise NotFoundError(f"App '{data.app_id}' not found.")
            component_ids = list(dict.fromkeys(data.component_ids))
            if component_ids:
                result = await session.execute(
                    select(StatusComponent.id).where(
                        StatusComponent.id.in_(component_ids), StatusComponent.app_id == data.app_id
                    )
                )
                unknown = set(component_ids) - set(result.scalars().all())
                if unknown:
                    raise ValidationError(
                        "Components do not belong to this app.", details={"component_ids": sorted(unknown)}
                    )

            maintenance = StatusMaintenance(
                id=str(uuid.uuid4()),
                app_id=data.app_id,
                title=data.title,
                description=data.description,
                status=maintenance_phase(SCHEDULED, starts_at, ends_at, self._clock()),
                starts_at=starts_at,
                ends_at=ends_at,
                is_public=data.is_public,
            )
            session.add(maintenance)
            for component_id in component_ids:
                session.add(
                    StatusMaintenanceComponent(
                        id=str(uuid.uuid4()), maintenance_id=maintenance.id, component_id=component_id
                    )
                )
            await session.commit()

        logger.info("maintenance_created", maintenance_id=maintenance.id, app_id=data.app_id, status=maintenance.status)
        return _to_response(maintenance, component_ids)

    async def get_maintenance(self, maintenance_id: str) -> MaintenanceResponse:
        async with self._session_factory() as session:
            maintenance = await session.get(StatusMaintenance, maintenance_id)
            if maintenance is None:
                raise NotFoundError(f"Maintenance '{maintenance_id}' not found.")
            return _to_response(maintenance, await _component_ids(session, maintenance_id))

    async def cancel_maintenance(self, maintenance_id: str) -> MaintenanceResponse:
        async with self._session_factory() as session:
            maintenance = await session.get(StatusMaintenance, maintenance_id)
            if maintenance is None:
                raise NotFoundError(f"Maintenance '{maintenance_id}' not found.")
            if maintenance.status in (COMPLETED, CANCELLED):
                raise ConflictError(f"Maintenance is already {maintenance.status}.")
            maintenance.status = CANCELLED
            await session.commit()
            component_ids = await _component_ids(session, maintenance_id)

        logger.info("maintenance_cancelled", maintenance_id=maintenance_id)
        return _to_response(maintenance, component_ids)

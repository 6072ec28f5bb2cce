"""Incident and maintenance overlay: which windows touch an entity on a given day."""

from dataclasses import dataclass, field
from datetime import date, datetime

from sqlalchemy import and_, exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from statuspage.core.clock import as_utc, day_bounds
from statuspage.core.database import (
    StatusApp,
    StatusComponent,
    StatusIncident,
    StatusIncidentComponent,
    StatusMaintenance,
    StatusMaintenanceComponent,
    StatusPlatform,
)
from statuspage.core.exceptions import NotFoundError
from statuspage.services.health import EntityRef, EntityType

SEVERE_INCIDENT_SEVERITIES = {"MAJOR", "CRITICAL"}

ENTITY_MODELS = {
    EntityType.PLATFORM: StatusPlatform,
    EntityType.APP: StatusApp,
    EntityType.COMPONENT: StatusComponent,
}


@dataclass(frozen=True)
class IncidentWindow:
    """An incident clipped to one day."""

    id: str
    severity: str
    start: datetime
    end: datetime

    @property
    def is_outage(self) -> bool:
        return self.severity.upper() in SEVERE_INCIDENT_SEVERITIES


@dataclass(frozen=True)
class MaintenanceWindow:
    """A non-cancelled maintenance window clipped to one day."""

    id: str
    start: datetime
    end: datetime


@dataclass
class Overlay:
    ref: EntityRef
    day: date
    day_start: datetime
    day_end: datetime
    incidents: list[IncidentWindow] = field(default_factory=list)
    maintenances: list[MaintenanceWindow] = field(default_factory=list)


def _intersects(start: datetime, end: datetime, day_start: datetime, day_end: datetime) -> bool:
    if end > start:
        return start < day_end and end > day_start
    # Zero-length window still touches the day it sits in
    return day_start <= start < day_end


def _clip(start: datetime, end: datetime, day_start: datetime, day_end: datetime) -> tuple[datetime, datetime]:
    clipped_start = max(start, day_start)
    return clipped_start, max(clipped_start, min(end, day_end))


async def _app_ids_for(session: AsyncSession, ref: EntityRef) -> list[str]:
    if ref.type == EntityType.APP:
        return [ref.id]
    result = await session.execute(select(StatusApp.id).where(StatusApp.platform_id == ref.id))
    return list(result.scalars().all())


async def _get_entity(session: AsyncSession, ref: EntityRef):
    entity = await session.get(ENTITY_MODELS[ref.type], ref.id)
    if entity is None:
        raise NotFoundError(f"{ref.type.value.capitalize()} '{ref.id}' not found.")
    return entity


def _maintenance_targets_component(component: StatusComponent):
    """Maintenance listing the component, or app-wide maintenance of its app."""
    linked = exists().where(StatusMaintenanceComponent.maintenance_id == StatusMaintenance.id)
    targets = exists().where(
        StatusMaintenanceComponent.maintenance_id == StatusMaintenance.id,
        StatusMaintenanceComponent.component_id == component.id,
    )
    return or_(targets, and_(StatusMaintenance.app_id == component.app_id, ~linked))


async def load_overlay(
    session: AsyncSession,
    ref: EntityRef,
    day: date,
    now: datetime,
    public_only: bool = True,
) -> Overlay:
    """Incidents and maintenance windows touching ``ref`` on ``day`` (UTC).

    Ongoing incidents run until ``now``. Cancelled maintenance is never
    included. Raises NotFoundError if the entity does not exist.
    """
    day_start, day_end = day_bounds(day)
    entity = await _get_entity(session, ref)

    incident_query = select(StatusIncident).where(StatusIncident.started_at < day_end)
    maintenance_query = select(StatusMaintenance).where(
        StatusMaintenance.status != "CANCELLED",
        StatusMaintenance.starts_at < day_end,
        StatusMaintenance.ends_at >= day_start,
    )

    if ref.type == EntityType.COMPONENT:
        incident_query = incident_query.join(
            StatusIncidentComponent, StatusIncidentComponent.incident_id == StatusIncident.id
        ).where(StatusIncidentComponent.component_id == entity.id)
        maintenance_query = maintenance_query.where(_maintenance_targets_component(entity))
    else:
        app_ids = await _app_ids_for(session, ref)
        incident_query = incident_query.where(StatusIncident.app_id.in_(app_ids))
        maintenance_query = maintenance_query.where(StatusMaintenance.app_id.in_(app_ids))

    if public_only:
        incident_query = incident_query.where(StatusIncident.is_public == True)  # noqa: E712
        maintenance_query = maintenance_query.where(StatusMaintenance.is_public == True)  # noqa: E712

    incidents = (await session.execute(incident_query.order_by(StatusIncident.started_at))).scalars().unique().all()
    maintenances = (await session.execute(maintenance_query.order_by(StatusMaintenance.starts_at))).scalars().all()

    overlay = Overlay(ref=ref, day=day, day_start=day_start, day_end=day_end)

    for incident in incidents:
        start = as_utc(incident.started_at)
        end = as_utc(incident.resolved_at) or now
        if not _intersects(start, end, day_start, day_end):
            continue
        clipped_start, clipped_end = _clip(start, end, day_start, day_end)
        overlay.incidents.append(
            IncidentWindow(id=incident.id, severity=incident.severity or "MINOR", start=clipped_start, end=clipped_end)
        )

    for maintenance in maintenances:
        start, end = as_utc(maintenance.starts_at), as_utc(maintenance.ends_at)
        if not _intersects(start, end, day_start, day_end):
            continue
        clipped_start, clipped_end = _clip(start, end, day_start, day_end)
        overlay.maintenances.append(MaintenanceWindow(id=maintenance.id, start=clipped_start, end=clipped_end))

    return overlay


async def has_active_maintenance(session: AsyncSession, ref: EntityRef, now: datetime) -> bool:
    """True if a non-cancelled maintenance window covers ``ref`` at ``now``.

    Coverage is direct, through the component's app, or through any app or
    component below the entity.
    """
    query = select(StatusMaintenance.id).where(
        StatusMaintenance.status != "CANCELLED",
        StatusMaintenance.starts_at <= now,
        StatusMaintenance.ends_at > now,
    )

    if ref.type == EntityType.COMPONENT:
        component = await _get_entity(session, ref)
        query = query.where(_maintenance_targets_component(component))
    else:
        query = query.where(StatusMaintenance.app_id.in_(await _app_ids_for(session, ref)))

    return (await session.execute(query.limit(1))).first() is not None

import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import statuspage.core.database as db_module
from statuspage.core.clock import Clock, as_utc, utc_now
from statuspage.core.database import (
    StatusApp,
    StatusComponent,
    StatusIncident,
    StatusIncidentComponent,
    StatusIncidentUpdate,
)
from statuspage.core.exceptions import ConflictError, NotFoundError, ValidationError
from statuspage.schemas.incidents import (
    IncidentComponentResponse,
    IncidentCreate,
    IncidentResolve,
    IncidentResponse,
    IncidentUpdateCreate,
    IncidentUpdateResponse,
)
from statuspage.services.health import EntityRef, EntityType, Status

logger = structlog.get_logger()

RESOLVED = "RESOLVED"

# Incidents opened by health checks
SYSTEM_AUTHOR = "system"
AUTOMATED_SEVERITY = "MAJOR"
AUTOMATED_RESOLVE_MESSAGE = "Health checks are passing again. This incident was resolved automatically."


async def _load(session: AsyncSession, incident_id: str) -> StatusIncident:
    incident = await session.get(StatusIncident, incident_id)
    if incident is None:
        raise NotFoundError(f"Incident '{incident_id}' not found.")
    return incident


async def _to_response(session: AsyncSession, incident: StatusIncident) -> IncidentResponse:
    links = await session.execute(
        select(StatusIncidentComponent.component_id, StatusIncidentComponent.component_status).where(
            StatusIncidentComponent.incident_id == incident.id
        )
    )
    components = [
        IncidentComponentResponse(component_id=component_id, component_status=component_status)
        for component_id, component_status in links.all()
    ]
    updates = await session.execute(
        select(StatusIncidentUpdate)
        .where(StatusIncidentUpdate.incident_id == incident.id)
        .order_by(StatusIncidentUpdate.update_time.asc())
    )
    return IncidentResponse(
        id=incident.id,
        app_id=incident.app_id,
        title=incident.title,
        description=incident.description,
        status=incident.status,
        severity=incident.severity,
        impact=incident.impact,
        started_at=as_utc(incident.started_at),
        resolved_at=as_utc(incident.resolved_at),
        is_public=incident.is_public,
        created_by=incident.created_by,
        component_ids=[c.component_id for c in components],
        components=components,
        updates=[
            IncidentUpdateResponse(id=u.id, status=u.status, message=u.message, update_time=as_utc(u.update_time))
            for u in updates.scalars().all()
        ],
    )


class IncidentService:
    def __init__(self, session_factory: async_sessionmaker | None = None, clock: Clock = utc_now):
        self._session_factory_override = session_factory
        self._clock = clock

    @property
    def _session_factory(self) -> async_sessionmaker:
        return self._session_factory_override or db_module.async_session

    async def create_incident(self, data: IncidentCreate) -> IncidentResponse:
        """Open an incident in INVESTIGATING with its first timeline entry."""
        now = self._clock()
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

            incident = StatusIncident(
                id=str(uuid.uuid4()),
                app_id=data.app_id,
                title=data.title,
                description=data.description,
                status="INVESTIGATING",
                severity=data.severity,
                impact=data.impact,
                started_at=as_utc(data.started_at) or now,
                is_public=data.is_public,
            )
            session.add(incident)
            session.add(
                StatusIncidentUpdate(
                    id=str(uuid.uuid4()),
                    incident_id=incident.id,
                    status="INVESTIGATING",
                    message=data.message or data.description or data.title,
                    update_time=now,
                )
            )
            for component_id in component_ids:
                session.add(
                    StatusIncidentComponent(
                        id=str(uuid.uuid4()),
                        incident_id=incident.id,
                        component_id=component_id,
                        component_status=data.component_status,
                    )
                )
            await session.commit()

            logger.info("incident_created", incident_id=incident.id, app_id=data.app_id, severity=data.severity)
            return await _to_response(session, incident)

    async def get_incident(self, incident_id: str) -> IncidentResponse:
        async with self._session_factory() as session:
            return await _to_response(session, await _load(session, incident_id))

    async def add_update(self, incident_id: str, data: IncidentUpdateCreate) -> IncidentResponse:
        """Append a timeline entry. Moving to RESOLVED also sets ``resolved_at``."""
        now = self._clock()
        async with self._session_factory() as session:
            incident = await _load(session, incident_id)
            if incident.status == RESOLVED:
                raise ConflictError("Incident is already resolved.")

            session.add(
                StatusIncidentUpdate(
                    id=str(uuid.uuid4()),
                    incident_id=incident.id,
                    status=data.status,
                    message=data.message,
                    update_time=now,
                )
            )
            incident.status = data.status
            if data.status == RESOLVED:
                incident.resolved_at = now
            await session.commit()

            logger.info("incident_updated", incident_id=incident_id, status=data.status)
            return await _to_response(session, incident)

    async def resolve_incident(self, incident_id: str, data: IncidentResolve | None = None) -> IncidentResponse:
        data = data or IncidentResolve()
        now = self._clock()
        async with self._session_factory() as session:
            incident = await _load(session, incident_id)
            if incident.status == RESOLVED:
                raise ConflictError("Incident is already resolved.")

            resolved_at = as_utc(data.resolved_at) or now
            if resolved_at < as_utc(incident.started_at):
                raise ValidationError("Incident cannot be resolved before it started.")

            incident.status = RESOLVED
            incident.resolved_at = resolved_at
            session.add(
                StatusIncidentUpdate(
                    id=str(uuid.uuid4()),
                    incident_id=incident.id,
                    status=RESOLVED,
                    message=data.message or "This incident has been resolved.",
                    update_time=now,
                )
            )
            await session.commit()

            logger.info("incident_resolved", incident_id=incident_id)
            return await _to_response(session, incident)

    # ── Health-check incidents ───────────────────────────────────────────────

    async def _open_automated(self, session: AsyncSession, app_id: str) -> StatusIncident | None:
        result = await session.execute(
            select(StatusIncident)
            .where(
                StatusIncident.app_id == app_id,
                StatusIncident.created_by == SYSTEM_AUTHOR,
                StatusIncident.status != RESOLVED,
            )
            .order_by(StatusIncident.started_at.asc())
        )
        return result.scalars().first()

    async def open_automated_incident(self, ref: EntityRef, reason: str | None = None) -> IncidentResponse | None:
        """Open the health-check incident of the app ``ref`` belongs to, or extend the open one.

        At most one such incident is open per app; a failing component is
        linked to it once. Returns None if the entity no longer exists.
        """
        now = self._clock()
        async with self._session_factory() as session:
            app_id, component_id = ref.id, None
            if ref.type == EntityType.COMPONENT:
                component = await session.get(StatusComponent, ref.id)
                if component is None:
                    return None
                app_id, component_id = component.app_id, component.id
            app = await session.get(StatusApp, app_id)
            if app is None:
                return None

            incident = await self._open_automated(session, app_id)
            opened = incident is None
            if opened:
                incident = StatusIncident(
                    id=str(uuid.uuid4()),
                    app_id=app_id,
                    title=f"{app.name} is experiencing an outage",
                    description=reason,
                    status="INVESTIGATING",
                    severity=AUTOMATED_SEVERITY,
                    started_at=now,
                    is_public=True,
                    created_by=SYSTEM_AUTHOR,
                )
                session.add(incident)
                session.add(
                    StatusIncidentUpdate(
                        id=str(uuid.uuid4()),
                        incident_id=incident.id,
                        status="INVESTIGATING",
                        message=f"Health checks are failing: {reason}" if reason else "Health checks are failing.",
                        update_time=now,
                    )
                )

            if component_id is not None:
                linked = await session.execute(
                    select(StatusIncidentComponent.id).where(
                        StatusIncidentComponent.incident_id == incident.id,
                        StatusIncidentComponent.component_id == component_id,
                    )
                )
                if linked.first() is None:
                    session.add(
                        StatusIncidentComponent(
                            id=str(uuid.uuid4()),
                            incident_id=incident.id,
                            component_id=component_id,
                            component_status=Status.MAJOR_OUTAGE.value,
                        )
                    )
            await session.commit()

            if opened:
                logger.warning("automated_incident_opened", incident_id=incident.id, app_id=app_id)
            return await _to_response(session, incident)

    async def resolve_automated_incidents(self, app_id: str) -> int:
        """Resolve every open health-check incident of an app. Returns how many were resolved."""
        now = self._clock()
        async with self._session_factory() as session:
            result = await session.execute(
                select(StatusIncident).where(
                    StatusIncident.app_id == app_id,
                    StatusIncident.created_by == SYSTEM_AUTHOR,
                    StatusIncident.status != RESOLVED,
                )
            )
            open_incidents = list(result.scalars().all())
            for incident in open_incidents:
                incident.status = RESOLVED
                incident.resolved_at = now
                session.add(
                    StatusIncidentUpdate(
                        id=str(uuid.uuid4()),
                        incident_id=incident.id,
                        status=RESOLVED,
                        message=AUTOMATED_RESOLVE_MESSAGE,
                        update_time=now,
                    )
                )
            await session.commit()

        for incident in open_incidents:
            logger.info("automated_incident_resolved", incident_id=incident.id, app_id=app_id)
        return len(open_incidents)


class AutomatedIncidentNotifier:
    """Status notifier that mirrors health-check outages as incidents.

    A component or app going down opens (or extends) the app's incident.
    The incident is resolved when the app itself recovers, so it stays open
    while any of its components is still failing. Platform transitions are
    ignored.
    """

    def __init__(self, incidents: IncidentService | None = None):
        self._incidents = incidents or IncidentService()

    async def __call__(self, transition) -> None:
        ref = transition.ref
        if ref.type == EntityType.PLATFORM:
            return
        if transition.current.is_operational:
            if ref.type == EntityType.APP:
                await self._incidents.resolve_automated_incidents(ref.id)
            return

        await self._incidents.open_automated_incident(ref, reason=transition.message)

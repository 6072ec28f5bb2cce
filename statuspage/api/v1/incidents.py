from fastapi import APIRouter, Depends

from statuspage.dependencies import require_admin
from statuspage.schemas.incidents import (
    IncidentCreate,
    IncidentResolve,
    IncidentResponse,
    IncidentUpdateCreate,
    MaintenanceCreate,
    MaintenanceResponse,
)
from statuspage.services.incidents import IncidentService
from statuspage.services.maintenance import MaintenanceService

router = APIRouter()

_incidents = IncidentService()
_maintenance = MaintenanceService()


@router.post("/api/incidents", status_code=201, dependencies=[Depends(require_admin)])
async def create_incident(body: IncidentCreate) -> IncidentResponse:
    """Open an incident (INVESTIGATING) with its first timeline update."""
    return await _incidents.create_incident(body)


@router.get("/api/incidents/{incident_id}")
async def get_incident(incident_id: str) -> IncidentResponse:
    return await _incidents.get_incident(incident_id)


@router.post("/api/incidents/{incident_id}/updates", dependencies=[Depends(require_admin)])
async def add_incident_update(incident_id: str, body: IncidentUpdateCreate) -> IncidentResponse:
    """Append a timeline update. Resolved incidents are closed (409)."""
    return await _incidents.add_update(incident_id, body)


@router.post("/api/incidents/{incident_id}/resolve", dependencies=[Depends(require_admin)])
async def resolve_incident(incident_id: str, body: IncidentResolve | None = None) -> IncidentResponse:
    return await _incidents.resolve_incident(incident_id, body)


@router.post("/api/maintenance", status_code=201, dependencies=[Depends(require_admin)])
async def create_maintenance(body: MaintenanceCreate) -> MaintenanceResponse:
    """Schedule a maintenance window. No component ids means the whole app."""
    return await _maintenance.create_maintenance(body)


@router.get("/api/maintenance/{maintenance_id}")
async def get_maintenance(maintenance_id: str) -> MaintenanceResponse:
    return await _maintenance.get_maintenance(maintenance_id)


@router.post("/api/maintenance/{maintenance_id}/cancel", dependencies=[Depends(require_admin)])
async def cancel_maintenance(maintenance_id: str) -> MaintenanceResponse:
    return await _maintenance.cancel_maintenance(maintenance_id)

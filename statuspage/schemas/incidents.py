from datetime import datetime

from pydantic import BaseModel, Field


class IncidentCreate(BaseModel):
    app_id: str
    title: str = Field(min_length=1, max_length=500)
    description: str | None = None
    severity: str = Field("MINOR", pattern="^(MINOR|MAJOR|CRITICAL)$")
    impact: str | None = None
    started_at: datetime | None = None  # defaults to now
    is_public: bool = True
    message: str | None = None  # first update entry, defaults to the description
    component_ids: list[str] = []
    component_status: str = "DEGRADED"


class IncidentUpdateCreate(BaseModel):
    status: str = Field(pattern="^(INVESTIGATING|IDENTIFIED|MONITORING|RESOLVED)$")
    message: str = Field(min_length=1)


class IncidentResolve(BaseModel):
    message: str | None = None
    resolved_at: datetime | None = None


class IncidentUpdateResponse(BaseModel):
    id: str
    status: str
    message: str
    update_time: datetime


class IncidentComponentResponse(BaseModel):
    component_id: str
    component_status: str


class IncidentResponse(BaseModel):
    id: str
    app_id: str
    title: str
    description: str | None = None
    status: str
    severity: str
    impact: str | None = None
    started_at: datetime
    resolved_at: datetime | None = None
    is_public: bool
    created_by: str | None = None  # "system" when opened by a failing health check
    component_ids: list[str] = []
    components: list[IncidentComponentResponse] = []
    updates: list[IncidentUpdateResponse] = []


class MaintenanceCreate(BaseModel):
    app_id: str
    title: str = Field(min_length=1, max_length=500)
    description: str | None = None
    starts_at: datetime
    ends_at: datetime
    is_public: bool = True
    component_ids: list[str] = []  # empty = whole app


class MaintenanceResponse(BaseModel):
    id: str
    app_id: str
    title: str
    description: str | None = None
    status: str
    starts_at: datetime
    ends_at: datetime
    is_public: bool
    component_ids: list[str] = []

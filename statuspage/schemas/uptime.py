import datetime

from pydantic import BaseModel


class UptimeDay(BaseModel):
    date: datetime.date
    status: str
    uptime_percentage: float
    operational_minutes: int = 1440
    degraded_minutes: int = 0
    outage_minutes: int = 0
    maintenance_minutes: int = 0
    incident_count: int = 0
    maintenance_count: int = 0
    recorded: bool = False  # False for gap-filled days


class UptimeHistoryResponse(BaseModel):
    entity_type: str
    entity_id: str
    entity_name: str | None = None
    days: int
    start_date: datetime.date
    end_date: datetime.date
    overall_uptime: float
    total_incidents: int
    history: list[UptimeDay]


class UptimeCalculationResponse(BaseModel):
    date: datetime.date
    recorded: int
    skipped: int


class UptimeBackfillResponse(BaseModel):
    days: int
    start_date: datetime.date
    end_date: datetime.date
    recorded: int
    skipped: int

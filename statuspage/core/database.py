import datetime
from decimal import Decimal
from pathlib import Path

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from statuspage.config import settings


class Base(DeclarativeBase):
    pass


# ── Access ───────────────────────────────────────────────────────────────────


class ApiKey(Base):
    __tablename__ = "api_keys"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    key_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    key_prefix: Mapped[str] = mapped_column(String(20))
    label: Mapped[str] = mapped_column(String(255))
    scope: Mapped[str] = mapped_column(String(20), default="user")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    last_used_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


# ── System Config ────────────────────────────────────────────────────────────


class SystemConfig(Base):
    __tablename__ = "system_config"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


# ── Checkable entities ───────────────────────────────────────────────────────


class HealthCheckColumns:
    """Check configuration and last-probe state shared by platforms, apps and components."""

    status: Mapped[str] = mapped_column(String(50), default="OPERATIONAL")
    check_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    check_type: Mapped[str] = mapped_column(String(50), default="NONE")  # NONE/PING/HTTP_GET/HEALTH_ENDPOINT/TCP_PORT
    check_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    check_interval_seconds: Mapped[int] = mapped_column(Integer, default=60)
    check_timeout_seconds: Mapped[int] = mapped_column(Integer, default=10)
    check_expected_status: Mapped[int] = mapped_column(Integer, default=200)
    check_failure_threshold: Mapped[int] = mapped_column(Integer, default=3)
    check_status: Mapped[str] = mapped_column(String(50), default="OPERATIONAL")
    last_check_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_check_success: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    last_check_message: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    consecutive_failures: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class StatusPlatform(HealthCheckColumns, Base):
    __tablename__ = "status_platforms"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    slug: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    organization_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True)


class StatusApp(HealthCheckColumns, Base):
    __tablename__ = "status_apps"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    platform_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("status_platforms.id", ondelete="SET NULL"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(String(255))
    slug: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    organization_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True)


class StatusComponent(HealthCheckColumns, Base):
    __tablename__ = "status_components"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    app_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("status_apps.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(255))
    position: Mapped[int] = mapped_column(Integer, default=0)
    group_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    check_inherit_from_app: Mapped[bool] = mapped_column(Boolean, default=True)


# ── Incidents ────────────────────────────────────────────────────────────────


class StatusIncident(Base):
    __tablename__ = "status_incidents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    app_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("status_apps.id", ondelete="CASCADE"), index=True
    )
    title: Mapped[str] = mapped_column(String(500))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="INVESTIGATING")
    # INVESTIGATING → IDENTIFIED → MONITORING → RESOLVED
    severity: Mapped[str] = mapped_column(String(20), default="MINOR")  # MINOR/MAJOR/CRITICAL
    impact: Mapped[str | None] = mapped_column(String(50), nullable=True)
    started_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), index=True)
    resolved_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True)
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)  # "system" for health checks
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class StatusIncidentUpdate(Base):
    __tablename__ = "status_incident_updates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    incident_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("status_incidents.id", ondelete="CASCADE"), index=True
    )
    status: Mapped[str] = mapped_column(String(20))
    message: Mapped[str] = mapped_column(Text)
    update_time: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True))


class StatusIncidentComponent(Base):
    __tablename__ = "status_incident_components"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    incident_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("status_incidents.id", ondelete="CASCADE"), index=True
    )
    component_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("status_components.id", ondelete="CASCADE"), index=True
    )
    component_status: Mapped[str] = mapped_column(String(50), default="DEGRADED")


# ── Maintenance ──────────────────────────────────────────────────────────────


class StatusMaintenance(Base):
    __tablename__ = "status_maintenance"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    app_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("status_apps.id", ondelete="CASCADE"), index=True
    )
    title: Mapped[str] = mapped_column(String(500))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="SCHEDULED")
    # SCHEDULED → IN_PROGRESS → COMPLETED | CANCELLED
    starts_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), index=True)
    ends_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True))
    is_public: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class StatusMaintenanceComponent(Base):
    __tablename__ = "status_maintenance_components"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    maintenance_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("status_maintenance.id", ondelete="CASCADE"), index=True
    )
    component_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("status_components.id", ondelete="CASCADE"), index=True
    )


# ── Uptime History ───────────────────────────────────────────────────────────


class StatusUptimeHistory(Base):
    __tablename__ = "status_uptime_history"
    __table_args__ = (
        CheckConstraint(
            "(CASE WHEN app_id IS NOT NULL THEN 1 ELSE 0 END"
            " + CASE WHEN component_id IS NOT NULL THEN 1 ELSE 0 END"
            " + CASE WHEN platform_id IS NOT NULL THEN 1 ELSE 0 END) = 1",
            name="ck_uptime_history_single_scope",
        ),
        Index(
            "uq_uptime_history_app_date", "app_id", "record_date", unique=True,
            sqlite_where=text("app_id IS NOT NULL"), postgresql_where=text("app_id IS NOT NULL"),
        ),
        Index(
            "uq_uptime_history_component_date", "component_id", "record_date", unique=True,
            sqlite_where=text("component_id IS NOT NULL"), postgresql_where=text("component_id IS NOT NULL"),
        ),
        Index(
            "uq_uptime_history_platform_date", "platform_id", "record_date", unique=True,
            sqlite_where=text("platform_id IS NOT NULL"), postgresql_where=text("platform_id IS NOT NULL"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    app_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("status_apps.id", ondelete="CASCADE"), nullable=True
    )
    component_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("status_components.id", ondelete="CASCADE"), nullable=True
    )
    platform_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("status_platforms.id", ondelete="CASCADE"), nullable=True
    )
    record_date: Mapped[datetime.date] = mapped_column(Date, index=True)
    status: Mapped[str] = mapped_column(String(50), default="OPERATIONAL")
    uptime_percentage: Mapped[Decimal] = mapped_column(Numeric(6, 3), default=Decimal("100.000"))
    total_minutes: Mapped[int] = mapped_column(Integer, default=1440)
    operational_minutes: Mapped[int] = mapped_column(Integer, default=1440)
    degraded_minutes: Mapped[int] = mapped_column(Integer, default=0)
    outage_minutes: Mapped[int] = mapped_column(Integer, default=0)
    maintenance_minutes: Mapped[int] = mapped_column(Integer, default=0)
    incident_count: Mapped[int] = mapped_column(Integer, default=0)
    maintenance_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


# ── Engine & Session ──────────────────────────────────────────────────────────

engine = create_async_engine(settings.status_db_url, echo=False)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db() -> None:
    """Ensure database schema is up to date via Alembic migrations."""
    from statuspage.core.migrations import ensure_db_migrated

    url = make_url(settings.status_db_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    await ensure_db_migrated()


async def close_db() -> None:
    """Dispose of the engine."""
    await engine.dispose()

"""Daily uptime recorder: classifies the 1440 minutes of a day and upserts one row per entity."""

import asyncio
import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import statuspage.core.database as db_module
from statuspage.config import settings
from statuspage.core.clock import Clock, utc_now
from statuspage.core.database import StatusApp, StatusComponent, StatusPlatform, StatusUptimeHistory
from statuspage.services.health import EntityRef, EntityType, Status
from statuspage.services.overlay import Overlay, load_overlay

logger = structlog.get_logger()

MINUTES_PER_DAY = 1440
PERCENT_QUANTUM = Decimal("0.001")

POLICY_FIXED = "fixed"
POLICY_EXCLUDE = "exclude"

# Per-minute classes, highest precedence wins
_OPERATIONAL, _DEGRADED, _OUTAGE, _MAINTENANCE = 0, 1, 2, 3


@dataclass(frozen=True)
class DailyUptime:
    """Minute classification of one entity-day."""

    status: str
    uptime_percentage: Decimal
    operational_minutes: int
    degraded_minutes: int
    outage_minutes: int
    maintenance_minutes: int
    incident_count: int
    maintenance_count: int
    total_minutes: int = MINUTES_PER_DAY


@dataclass
class RecordSummary:
    recorded: int = 0
    skipped: int = 0

    def __iadd__(self, other: "RecordSummary") -> "RecordSummary":
        self.recorded += other.recorded
        self.skipped += other.skipped
        return self


def round_percentage(value: Decimal) -> Decimal:
    return value.quantize(PERCENT_QUANTUM, rounding=ROUND_HALF_UP)


def _minute_span(start: datetime, end: datetime, day_start: datetime) -> range:
    """Minutes m with ``start <= day_start + m < end``."""
    first = max(0, math.ceil((start - day_start).total_seconds() / 60))
    last = min(MINUTES_PER_DAY, math.ceil((end - day_start).total_seconds() / 60))
    return range(first, max(first, last))


def classify_day(overlay: Overlay, policy: str = POLICY_FIXED) -> DailyUptime:
    """Partition the day into operational, degraded, outage and maintenance minutes.

    Maintenance beats outage, outage (MAJOR/CRITICAL) beats degraded (MINOR).
    Under the ``fixed`` policy maintenance minutes stay in the 1440-minute
    denominator; under ``exclude`` they are removed from it.
    """
    grid = [_OPERATIONAL] * MINUTES_PER_DAY

    for incident in overlay.incidents:
        cls = _OUTAGE if incident.is_outage else _DEGRADED
        for m in _minute_span(incident.start, incident.end, overlay.day_start):
            if grid[m] < cls:
                grid[m] = cls

    for window in overlay.maintenances:
        for m in _minute_span(window.start, window.end, overlay.day_start):
            grid[m] = _MAINTENANCE

    operational = grid.count(_OPERATIONAL)
    degraded = grid.count(_DEGRADED)
    outage = grid.count(_OUTAGE)
    maintenance = grid.count(_MAINTENANCE)

    denominator = MINUTES_PER_DAY
    if policy == POLICY_EXCLUDE:
        denominator = MINUTES_PER_DAY - maintenance
    if denominator == 0:
        percentage = Decimal("100.000")
    else:
        percentage = round_percentage(Decimal(100 * operational) / Decimal(denominator))

    if outage:
        status = Status.MAJOR_OUTAGE
    elif degraded:
        status = Status.DEGRADED
    elif maintenance:
        status = Status.MAINTENANCE
    else:
        status = Status.OPERATIONAL

    return DailyUptime(
        status=status.value,
        uptime_percentage=percentage,
        operational_minutes=operational,
        degraded_minutes=degraded,
        outage_minutes=outage,
        maintenance_minutes=maintenance,
        incident_count=len({i.id for i in overlay.incidents}),
        maintenance_count=len({w.id for w in overlay.maintenances}),
    )


def scope_column(ref: EntityRef):
    return {
        EntityType.APP: StatusUptimeHistory.app_id,
        EntityType.COMPONENT: StatusUptimeHistory.component_id,
        EntityType.PLATFORM: StatusUptimeHistory.platform_id,
    }[ref.type]


async def _upsert(session: AsyncSession, ref: EntityRef, day: date, uptime: DailyUptime) -> None:
    result = await session.execute(
        select(StatusUptimeHistory).where(scope_column(ref) == ref.id, StatusUptimeHistory.record_date == day)
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = StatusUptimeHistory(id=str(uuid.uuid4()), record_date=day)
        setattr(row, f"{ref.type.value}_id", ref.id)
        session.add(row)

    # Assigning equal values leaves the row clean, so a re-run issues no UPDATE
    row.status = uptime.status
    row.uptime_percentage = uptime.uptime_percentage
    row.total_minutes = uptime.total_minutes
    row.operational_minutes = uptime.operational_minutes
    row.degraded_minutes = uptime.degraded_minutes
    row.outage_minutes = uptime.outage_minutes
    row.maintenance_minutes = uptime.maintenance_minutes
    row.incident_count = uptime.incident_count
    row.maintenance_count = uptime.maintenance_count


class UptimeRecorder:
    """Computes and stores daily uptime rows for platforms, apps and components."""

    def __init__(
        self,
        session_factory: async_sessionmaker | None = None,
        clock: Clock = utc_now,
        policy: str | None = None,
        public_only: bool | None = None,
    ):
        self._session_factory_override = session_factory
        self._clock = clock
        self._policy = policy or settings.status_uptime_maintenance_policy
        self._public_only = settings.status_uptime_public_only if public_only is None else public_only

    @property
    def _session_factory(self) -> async_sessionmaker:
        return self._session_factory_override or db_module.async_session

    def today(self) -> date:
        return self._clock().astimezone(timezone.utc).date()

    async def record_entity(self, ref: EntityRef, day: date) -> DailyUptime | None:
        """Compute and upsert the row for one entity-day.

        Any failure rolls the transaction back and skips the entity; no
        placeholder row is written. Returns None when skipped.
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    overlay = await load_overlay(session, ref, day, self._clock(), public_only=self._public_only)
                    uptime = classify_day(overlay, self._policy)
                    await _upsert(session, ref, day, uptime)
        except Exception as e:
            logger.error("uptime_record_skipped", entity=str(ref), date=day.isoformat(), error=str(e))
            return None

        logger.debug(
            "uptime_record_saved",
            entity=str(ref),
            date=day.isoformat(),
            uptime=str(uptime.uptime_percentage),
            status=uptime.status,
        )
        return uptime

    async def _all_refs(self) -> list[EntityRef]:
        async with self._session_factory() as session:
            refs = []
            for entity_type, model in (
                (EntityType.PLATFORM, StatusPlatform),
                (EntityType.APP, StatusApp),
                (EntityType.COMPONENT, StatusComponent),
            ):
                result = await session.execute(select(model.id).order_by(model.id))
                refs.extend(EntityRef(entity_type, entity_id) for entity_id in result.scalars().all())
        return refs

    async def record_day(self, day: date, refs: list[EntityRef] | None = None) -> RecordSummary:
        """Record ``day`` for every entity. One entity's failure never stops the rest."""
        summary = RecordSummary()
        for ref in refs if refs is not None else await self._all_refs():
            if await self.record_entity(ref, day) is None:
                summary.skipped += 1
            else:
                summary.recorded += 1
        logger.info("uptime_day_recorded", date=day.isoformat(), recorded=summary.recorded, skipped=summary.skipped)
        return summary

    def backfill_range(self, days: int) -> list[date]:
        """The ``days`` calendar days before today, oldest first."""
        today = self.today()
        return [today - timedelta(days=offset) for offset in range(days, 0, -1)]

    async def backfill(self, days: int) -> RecordSummary:
        """Recompute every day in the window, overwriting existing rows."""
        summary = RecordSummary()
        refs = await self._all_refs()
        for day in self.backfill_range(days):
            summary += await self.record_day(day, refs)
        return summary

    async def backfill_missing(self, days: int) -> RecordSummary:
        """Record only entity-days in the window that have no row yet."""
        summary = RecordSummary()
        window = self.backfill_range(days)
        if not window:
            return summary

        async with self._session_factory() as session:
            result = await session.execute(
                select(
                    StatusUptimeHistory.app_id,
                    StatusUptimeHistory.component_id,
                    StatusUptimeHistory.platform_id,
                    StatusUptimeHistory.record_date,
                ).where(StatusUptimeHistory.record_date >= window[0], StatusUptimeHistory.record_date <= window[-1])
            )
            existing = {
                (app_id or component_id or platform_id, record_date)
                for app_id, component_id, platform_id, record_date in result.all()
            }

        for ref in await self._all_refs():
            for day in window:
                if (ref.id, day) in existing:
                    continue
                if await self.record_entity(ref, day) is None:
                    summary.skipped += 1
                else:
                    summary.recorded += 1

        logger.info("uptime_backfill_missing", days=days, recorded=summary.recorded, skipped=summary.skipped)
        return summary


class DailyUptimeJob:
    """Records yesterday's uptime once per day at a fixed UTC time."""

    def __init__(
        self,
        recorder: UptimeRecorder,
        clock: Clock = utc_now,
        hour: int | None = None,
        minute: int | None = None,
        backfill_days: int | None = None,
    ):
        self._recorder = recorder
        self._clock = clock
        self._run_at = time(
            hour=settings.status_uptime_daily_hour if hour is None else hour,
            minute=settings.status_uptime_daily_minute if minute is None else minute,
            tzinfo=timezone.utc,
        )
        self._backfill_days = settings.status_uptime_backfill_days if backfill_days is None else backfill_days
        self._task: asyncio.Task | None = None
        self._running = False

    def seconds_until_next_run(self) -> float:
        now = self._clock().astimezone(timezone.utc)
        next_run = datetime.combine(now.date(), self._run_at)
        if next_run <= now:
            next_run += timedelta(days=1)
        return (next_run - now).total_seconds()

    async def run_once(self) -> RecordSummary:
        """Record yesterday for all entities."""
        yesterday = self._recorder.today() - timedelta(days=1)
        return await self._recorder.record_day(yesterday)

    async def start(self) -> None:
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("uptime_job_started", run_at=self._run_at.isoformat(), backfill_days=self._backfill_days)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("uptime_job_stopped")

    async def _loop(self) -> None:
        if self._backfill_days > 0:
            try:
                await self._recorder.backfill_missing(self._backfill_days)
            except asyncio.CancelledError:
                return
            except Exception:
                logger.exception("uptime_backfill_failed")

        while self._running:
            try:
                await asyncio.sleep(self.seconds_until_next_run())
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("uptime_job_error")

"""Uptime history reader: contiguous, gap-filled daily series for one entity or an app's components."""

from collections import defaultdict
from datetime import date, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

import statuspage.core.database as db_module
from statuspage.core.clock import Clock, utc_now
from statuspage.core.database import StatusApp, StatusComponent, StatusUptimeHistory
from statuspage.core.exceptions import NotFoundError, ValidationError
from statuspage.schemas.uptime import UptimeDay, UptimeHistoryResponse
from statuspage.services.health import EntityRef, EntityType, Status
from statuspage.services.overlay import ENTITY_MODELS
from statuspage.services.uptime_recorder import round_percentage, scope_column

MAX_HISTORY_DAYS = 365


def _gap_day(day: date) -> UptimeDay:
    return UptimeDay(date=day, status=Status.OPERATIONAL.value, uptime_percentage=100.0)


def _to_day(row: StatusUptimeHistory) -> UptimeDay:
    return UptimeDay(
        date=row.record_date,
        status=row.status,
        uptime_percentage=float(row.uptime_percentage),
        operational_minutes=row.operational_minutes,
        degraded_minutes=row.degraded_minutes,
        outage_minutes=row.outage_minutes,
        maintenance_minutes=row.maintenance_minutes,
        incident_count=row.incident_count,
        maintenance_count=row.maintenance_count,
        recorded=True,
    )


def _series(
    ref: EntityRef,
    start_date: date,
    days: int,
    rows: list[StatusUptimeHistory],
    name: str | None = None,
) -> UptimeHistoryResponse:
    stored = {row.record_date: _to_day(row) for row in rows}
    history = []
    for offset in range(days):
        day = start_date + timedelta(days=offset)
        history.append(stored.get(day) or _gap_day(day))

    total = sum((Decimal(str(d.uptime_percentage)) for d in history), Decimal(0))
    return UptimeHistoryResponse(
        entity_type=ref.type.value,
        entity_id=ref.id,
        entity_name=name,
        days=days,
        start_date=start_date,
        end_date=start_date + timedelta(days=days - 1),
        overall_uptime=float(round_percentage(total / days)),
        total_incidents=sum(d.incident_count for d in history),
        history=history,
    )


class UptimeHistoryService:
    def __init__(self, session_factory: async_sessionmaker | None = None, clock: Clock = utc_now):
        self._session_factory_override = session_factory
        self._clock = clock

    @property
    def _session_factory(self) -> async_sessionmaker:
        return self._session_factory_override or db_module.async_session

    def _window(self, days: int) -> tuple[date, date]:
        if not 1 <= days <= MAX_HISTORY_DAYS:
            raise ValidationError(f"days must be between 1 and {MAX_HISTORY_DAYS}.")
        end_date = self._clock().astimezone(timezone.utc).date()
        return end_date - timedelta(days=days - 1), end_date

    async def get_uptime_history(self, ref: EntityRef, days: int = 90) -> UptimeHistoryResponse:
        """Exactly ``days`` entries ending today, oldest first.

        Dates without a stored row count as fully operational. The overall
        figure is the mean of the daily percentages, rounded half-up to three
        decimals.
        """
        start_date, end_date = self._window(days)

        async with self._session_factory() as session:
            entity = await session.get(ENTITY_MODELS[ref.type], ref.id)
            if entity is None:
                raise NotFoundError(f"{ref.type.value.capitalize()} '{ref.id}' not found.")
            result = await session.execute(
                select(StatusUptimeHistory).where(
                    scope_column(ref) == ref.id,
                    StatusUptimeHistory.record_date >= start_date,
                    StatusUptimeHistory.record_date <= end_date,
                )
            )
            rows = list(result.scalars().all())

        return _series(ref, start_date, days, rows, name=entity.name)

    async def get_app_components_history(self, app_id: str, days: int = 90) -> list[UptimeHistoryResponse]:
        """One series per component of the app, in display order (position, then name)."""
        start_date, end_date = self._window(days)

        async with self._session_factory() as session:
            if await session.get(StatusApp, app_id) is None:
                raise NotFoundError(f"App '{app_id}' not found.")
            result = await session.execute(
                select(StatusComponent.id, StatusComponent.name)
                .where(StatusComponent.app_id == app_id)
                .order_by(StatusComponent.position.asc(), StatusComponent.name.asc())
            )
            components = result.all()

            rows_by_component: dict[str, list[StatusUptimeHistory]] = defaultdict(list)
            if components:
                result = await session.execute(
                    select(StatusUptimeHistory).where(
                        StatusUptimeHistory.component_id.in_([c.id for c in components]),
                        StatusUptimeHistory.record_date >= start_date,
                        StatusUptimeHistory.record_date <= end_date,
                    )
                )
                for row in result.scalars().all():
                    rows_by_component[row.component_id].append(row)

        return [
            _series(EntityRef(EntityType.COMPONENT, c.id), start_date, days, rows_by_component[c.id], name=c.name)
            for c in components
        ]

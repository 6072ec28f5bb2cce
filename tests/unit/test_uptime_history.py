import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.exc import IntegrityError

from statuspage.core.database import StatusApp, StatusComponent, StatusUptimeHistory
from statuspage.core.exceptions import NotFoundError, ValidationError
from statuspage.services.health import EntityRef, EntityType
from statuspage.services.uptime_history import UptimeHistoryService

TODAY = date(2026, 3, 15)
APP = EntityRef(EntityType.APP, "a1")


@pytest_asyncio.fixture
async def history_service(session_factory, clock):
    return UptimeHistoryService(session_factory=session_factory, clock=clock)


@pytest_asyncio.fixture
async def add_day(db_session):
    async def _add(day: date, percentage: str, incidents: int = 0, scope: str = "app_id", entity_id: str = "a1"):
        row = StatusUptimeHistory(
            id=str(uuid.uuid4()),
            record_date=day,
            status="DEGRADED" if Decimal(percentage) < 100 else "OPERATIONAL",
            uptime_percentage=Decimal(percentage),
            operational_minutes=1440,
            incident_count=incidents,
        )
        setattr(row, scope, entity_id)
        db_session.add(row)
        await db_session.commit()

    return _add


class TestUptimeHistory:
    @pytest.mark.asyncio
    async def test_gap_filled_series(self, history_service, add_day, sample_tree):
        for offset in range(10):
            await add_day(TODAY - timedelta(days=offset), "99.000", incidents=1)

        result = await history_service.get_uptime_history(APP, days=90)

        assert len(result.history) == 90
        assert result.start_date == TODAY - timedelta(days=89)
        assert result.end_date == TODAY
        assert [d.date for d in result.history] == [result.start_date + timedelta(days=i) for i in range(90)]

        gaps = [d for d in result.history if not d.recorded]
        assert len(gaps) == 80
        assert all(d.uptime_percentage == 100.0 and d.incident_count == 0 for d in gaps)
        assert all(d.status == "OPERATIONAL" for d in gaps)
        assert result.total_incidents == 10

    @pytest.mark.asyncio
    async def test_overall_is_mean_of_days(self, history_service, add_day, sample_tree):
        await add_day(TODAY, "95.833")
        await add_day(TODAY - timedelta(days=1), "91.667")
        result = await history_service.get_uptime_history(APP, days=3)
        # (95.833 + 91.667 + 100) / 3 = 95.8333...
        assert result.overall_uptime == 95.833

    @pytest.mark.asyncio
    async def test_rows_outside_window_ignored(self, history_service, add_day, sample_tree):
        await add_day(TODAY - timedelta(days=7), "50.000", incidents=4)
        await add_day(TODAY + timedelta(days=1), "50.000")
        result = await history_service.get_uptime_history(APP, days=7)
        assert result.overall_uptime == 100.0
        assert result.total_incidents == 0

    @pytest.mark.asyncio
    async def test_scoped_to_entity(self, history_service, add_day, sample_tree):
        await add_day(TODAY, "10.000", scope="component_id", entity_id="c1")
        app_history = await history_service.get_uptime_history(APP, days=1)
        assert app_history.history[0].uptime_percentage == 100.0

        component = await history_service.get_uptime_history(EntityRef(EntityType.COMPONENT, "c1"), days=1)
        assert component.entity_name == "API"
        assert component.history[0].uptime_percentage == 10.0
        assert component.history[0].recorded is True

    @pytest.mark.parametrize("days", [0, -1, 366])
    @pytest.mark.asyncio
    async def test_days_out_of_range(self, history_service, sample_tree, days):
        with pytest.raises(ValidationError):
            await history_service.get_uptime_history(APP, days=days)

    @pytest.mark.asyncio
    async def test_single_day(self, history_service, sample_tree):
        result = await history_service.get_uptime_history(APP, days=1)
        assert result.start_date == result.end_date == TODAY
        assert len(result.history) == 1

    @pytest.mark.asyncio
    async def test_unknown_entity(self, history_service, sample_tree):
        with pytest.raises(NotFoundError):
            await history_service.get_uptime_history(EntityRef(EntityType.PLATFORM, "nope"))


class TestAppComponentHistories:
    @pytest.mark.asyncio
    async def test_one_series_per_component(self, history_service, add_day, sample_tree):
        await add_day(TODAY, "90.000", incidents=2, scope="component_id", entity_id="c2")
        await add_day(TODAY, "50.000", scope="app_id", entity_id="a1")

        series = await history_service.get_app_components_history("a1", days=7)

        assert [(s.entity_id, s.entity_name) for s in series] == [("c1", "API"), ("c2", "Worker")]
        api, worker = series
        assert api.overall_uptime == 100.0
        assert worker.history[-1].uptime_percentage == 90.0
        assert worker.total_incidents == 2
        assert all(len(s.history) == 7 and s.end_date == TODAY for s in series)

    @pytest.mark.asyncio
    async def test_ordered_by_position(self, history_service, make_entity, sample_tree):
        await make_entity(StatusComponent, id="c0", name="Zeta", app_id="a1", position=-1)
        series = await history_service.get_app_components_history("a1", days=1)
        assert [s.entity_id for s in series] == ["c0", "c1", "c2"]

    @pytest.mark.asyncio
    async def test_app_without_components(self, history_service, make_entity):
        await make_entity(StatusApp, id="empty", name="Empty")
        assert await history_service.get_app_components_history("empty") == []

    @pytest.mark.asyncio
    async def test_unknown_app(self, history_service):
        with pytest.raises(NotFoundError):
            await history_service.get_app_components_history("nope")

    @pytest.mark.asyncio
    async def test_days_validated(self, history_service, sample_tree):
        with pytest.raises(ValidationError):
            await history_service.get_app_components_history("a1", days=0)


@pytest.mark.asyncio
async def test_row_must_have_exactly_one_scope(db_session, sample_tree):
    db_session.add(
        StatusUptimeHistory(id=str(uuid.uuid4()), app_id="a1", component_id="c1", record_date=TODAY)
    )
    with pytest.raises(IntegrityError):
        await db_session.commit()

from datetime import date, datetime, timedelta, timezone

import pytest
import pytest_asyncio

from statuspage.core.database import (
    StatusApp,
    StatusIncident,
    StatusIncidentComponent,
    StatusMaintenance,
    StatusMaintenanceComponent,
)
from statuspage.core.exceptions import NotFoundError
from statuspage.services.health import EntityRef, EntityType
from statuspage.services.overlay import has_active_maintenance, load_overlay

DAY = date(2026, 3, 14)
DAY_START = datetime(2026, 3, 14, tzinfo=timezone.utc)

APP = EntityRef(EntityType.APP, "a1")
C1 = EntityRef(EntityType.COMPONENT, "c1")
C2 = EntityRef(EntityType.COMPONENT, "c2")
PLATFORM = EntityRef(EntityType.PLATFORM, "p1")


def _at(hours: float) -> datetime:
    return DAY_START + timedelta(hours=hours)


@pytest_asyncio.fixture
async def add(db_session, sample_tree):
    async def _add(*rows):
        db_session.add_all(rows)
        await db_session.commit()

    return _add


def _incident(incident_id, start, end=None, severity="MAJOR", app_id="a1", **fields):
    return StatusIncident(
        id=incident_id,
        app_id=app_id,
        title=incident_id,
        status="RESOLVED" if end else "INVESTIGATING",
        severity=severity,
        started_at=start,
        resolved_at=end,
        **fields,
    )


def _maintenance(maintenance_id, start, end, status="COMPLETED", **fields):
    return StatusMaintenance(
        id=maintenance_id, app_id="a1", title=maintenance_id, status=status, starts_at=start, ends_at=end, **fields
    )


class TestLoadOverlay:
    @pytest.mark.asyncio
    async def test_windows_clipped_to_day(self, db_session, add):
        await add(_incident("i1", _at(-3), _at(2)), _incident("i2", _at(23), _at(26)))
        overlay = await load_overlay(db_session, APP, DAY, now=_at(48))

        windows = {w.id: (w.start, w.end) for w in overlay.incidents}
        assert windows["i1"] == (DAY_START, _at(2))
        assert windows["i2"] == (_at(23), _at(24))

    @pytest.mark.asyncio
    async def test_windows_outside_day_excluded(self, db_session, add):
        await add(
            _incident("before", _at(-5), _at(-1)),
            _incident("after", _at(25), _at(26)),
            _incident("ends-at-midnight", _at(-2), _at(0)),
        )
        overlay = await load_overlay(db_session, APP, DAY, now=_at(48))
        assert overlay.incidents == []

    @pytest.mark.asyncio
    async def test_ongoing_incident_runs_until_now(self, db_session, add):
        await add(_incident("open", _at(20)))
        overlay = await load_overlay(db_session, APP, DAY, now=_at(22))
        assert overlay.incidents[0].end == _at(22)

        overlay = await load_overlay(db_session, APP, DAY, now=_at(30))
        assert overlay.incidents[0].end == _at(24)

    @pytest.mark.asyncio
    async def test_zero_length_incident_counted(self, db_session, add):
        await add(_incident("blip", _at(5), _at(5)))
        overlay = await load_overlay(db_session, APP, DAY, now=_at(48))
        assert [w.id for w in overlay.incidents] == ["blip"]
        assert overlay.incidents[0].start == overlay.incidents[0].end

    @pytest.mark.asyncio
    async def test_private_entries_respect_public_only(self, db_session, add):
        await add(
            _incident("private", _at(1), _at(2), is_public=False),
            _maintenance("private-m", _at(3), _at(4), is_public=False),
        )
        hidden = await load_overlay(db_session, APP, DAY, now=_at(48))
        assert hidden.incidents == [] and hidden.maintenances == []

        shown = await load_overlay(db_session, APP, DAY, now=_at(48), public_only=False)
        assert [w.id for w in shown.incidents] == ["private"]
        assert [w.id for w in shown.maintenances] == ["private-m"]

    @pytest.mark.asyncio
    async def test_component_sees_only_linked_incidents(self, db_session, add):
        await add(
            _incident("app-wide", _at(1), _at(2)),
            _incident("linked", _at(3), _at(4)),
            StatusIncidentComponent(id="ic1", incident_id="linked", component_id="c1"),
        )
        overlay = await load_overlay(db_session, C1, DAY, now=_at(48))
        assert [w.id for w in overlay.incidents] == ["linked"]

        overlay = await load_overlay(db_session, C2, DAY, now=_at(48))
        assert overlay.incidents == []

    @pytest.mark.asyncio
    async def test_component_maintenance_targeting(self, db_session, add):
        await add(
            _maintenance("whole-app", _at(1), _at(2)),
            _maintenance("c1-only", _at(3), _at(4)),
            StatusMaintenanceComponent(id="mc1", maintenance_id="c1-only", component_id="c1"),
        )
        c1 = await load_overlay(db_session, C1, DAY, now=_at(48))
        c2 = await load_overlay(db_session, C2, DAY, now=_at(48))
        assert sorted(w.id for w in c1.maintenances) == ["c1-only", "whole-app"]
        assert [w.id for w in c2.maintenances] == ["whole-app"]

    @pytest.mark.asyncio
    async def test_cancelled_maintenance_excluded(self, db_session, add):
        await add(_maintenance("cancelled", _at(1), _at(2), status="CANCELLED"))
        overlay = await load_overlay(db_session, APP, DAY, now=_at(48))
        assert overlay.maintenances == []

    @pytest.mark.asyncio
    async def test_platform_collects_its_apps(self, db_session, add):
        await add(
            StatusApp(id="other", name="Unrelated"),
            _incident("mine", _at(1), _at(2)),
            _incident("theirs", _at(1), _at(2), app_id="other"),
        )
        overlay = await load_overlay(db_session, PLATFORM, DAY, now=_at(48))
        assert [w.id for w in overlay.incidents] == ["mine"]

    @pytest.mark.asyncio
    async def test_unknown_entity(self, db_session, sample_tree):
        with pytest.raises(NotFoundError):
            await load_overlay(db_session, EntityRef(EntityType.APP, "missing"), DAY, now=_at(48))


class TestActiveMaintenance:
    @pytest.mark.asyncio
    async def test_covers_window_half_open(self, db_session, add):
        await add(_maintenance("m", _at(1), _at(2), status="IN_PROGRESS"))
        assert await has_active_maintenance(db_session, APP, _at(1)) is True
        assert await has_active_maintenance(db_session, APP, _at(1.5)) is True
        assert await has_active_maintenance(db_session, APP, _at(2)) is False
        assert await has_active_maintenance(db_session, APP, _at(0.5)) is False

    @pytest.mark.asyncio
    async def test_component_specific_window(self, db_session, add):
        await add(
            _maintenance("m", _at(1), _at(2), status="IN_PROGRESS"),
            StatusMaintenanceComponent(id="mc", maintenance_id="m", component_id="c2"),
        )
        assert await has_active_maintenance(db_session, C1, _at(1.5)) is False
        assert await has_active_maintenance(db_session, C2, _at(1.5)) is True
        assert await has_active_maintenance(db_session, PLATFORM, _at(1.5)) is True

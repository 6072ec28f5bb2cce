"""Integration tests for health check settings, status and manual triggers."""

import pytest
from sqlalchemy import select

from statuspage.core.database import StatusIncident
from tests.mocks.fake_upstream import state


async def _component(client, url, threshold=3, enabled=True, check_type="HTTP_GET"):
    app = (await client.post("/api/apps", json={"name": "Checkout"})).json()
    component = (
        await client.post(
            "/api/components",
            json={
                "app_id": app["id"],
                "name": "API",
                "check_enabled": enabled,
                "check_type": check_type,
                "check_url": url,
                "check_failure_threshold": threshold,
                "check_inherit_from_app": False,
            },
        )
    ).json()
    return app, component


class TestSettings:
    @pytest.mark.asyncio
    async def test_get_settings(self, user_client):
        response = await user_client.get("/api/health-checks/settings")
        assert response.status_code == 200
        data = response.json()
        assert "thread_pool_size" in data
        assert "health_check.enabled" in data["raw"]

    @pytest.mark.asyncio
    async def test_update_settings(self, auth_client):
        response = await auth_client.put(
            "/api/health-checks/settings",
            json={"health_check.enabled": False, "health_check.thread_pool_size": 4},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["enabled"] is False
        assert data["thread_pool_size"] == 4
        assert data["raw"]["health_check.enabled"] == "false"

    @pytest.mark.asyncio
    async def test_update_unknown_key(self, auth_client):
        response = await auth_client.put("/api/health-checks/settings", json={"health_check.colour": "red"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_update_requires_admin(self, user_client):
        response = await user_client.put("/api/health-checks/settings", json={"health_check.enabled": "false"})
        assert response.status_code == 403


class TestTrigger:
    @pytest.mark.asyncio
    async def test_trigger_success(self, auth_client):
        _, component = await _component(auth_client, "http://upstream/ok")
        response = await auth_client.post(f"/api/health-checks/trigger/component/{component['id']}")
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["message"].startswith("HTTP 200")
        assert data["status"] == "OPERATIONAL"

    @pytest.mark.asyncio
    async def test_failure_is_reported_with_200(self, auth_client):
        app, component = await _component(auth_client, "http://upstream/code/500", threshold=1)
        response = await auth_client.post(f"/api/health-checks/trigger/component/{component['id']}")
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["message"] == "HTTP 500 (expected 200)"
        assert data["status"] == "MAJOR_OUTAGE"

        app_state = (await auth_client.get(f"/api/health-checks/status/app/{app['id']}")).json()
        assert app_state["status"] == "MAJOR_OUTAGE"

    @pytest.mark.asyncio
    async def test_threshold_and_recovery(self, auth_client):
        _, component = await _component(auth_client, "http://upstream/flaky", threshold=2)
        url = f"/api/health-checks/trigger/component/{component['id']}"

        state["healthy"] = False
        assert (await auth_client.post(url)).json()["status"] == "OPERATIONAL"
        assert (await auth_client.post(url)).json()["status"] == "MAJOR_OUTAGE"

        state["healthy"] = True
        assert (await auth_client.post(url)).json()["status"] == "OPERATIONAL"

        detail = (await auth_client.get(f"/api/health-checks/status/component/{component['id']}")).json()
        assert detail["consecutive_failures"] == 0
        assert detail["last_check_success"] is True

    @pytest.mark.asyncio
    async def test_disabled_check(self, auth_client):
        _, component = await _component(auth_client, "http://upstream/ok", enabled=False)
        data = (await auth_client.post(f"/api/health-checks/trigger/component/{component['id']}")).json()
        assert data["success"] is False
        assert data["message"] == "Health check is disabled for this component"

    @pytest.mark.asyncio
    async def test_unknown_entity(self, auth_client):
        response = await auth_client.post("/api/health-checks/trigger/app/missing")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_entity_type(self, auth_client):
        response = await auth_client.post("/api/health-checks/trigger/service/x")
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_trigger_all(self, auth_client, app_with_db):
        _, component = await _component(auth_client, "http://upstream/actuator/health", check_type="HEALTH_ENDPOINT")
        response = await auth_client.post("/api/health-checks/trigger/all")
        assert response.status_code == 200
        assert response.json()["submitted"] == 1

        await app_with_db.state.scheduler.wait_idle()
        detail = (await auth_client.get(f"/api/health-checks/status/component/{component['id']}")).json()
        assert detail["last_check_success"] is True
        assert detail["last_check_message"].startswith("Health: UP")


class TestStatusList:
    @pytest.mark.asyncio
    async def test_overview(self, auth_client):
        _, component = await _component(auth_client, "http://upstream/code/503", threshold=3)
        await auth_client.post(f"/api/health-checks/trigger/component/{component['id']}")

        data = (await auth_client.get("/api/health-checks/status")).json()
        assert data["total"] == 2
        assert data["enabled"] == 1
        assert data["failing"] == 1

        apps = (await auth_client.get("/api/health-checks/status", params={"entity_type": "app"})).json()
        assert [e["entity_type"] for e in apps["entities"]] == ["app"]


class TestAutomatedIncidents:
    @pytest.mark.asyncio
    async def test_outage_opens_incident_and_recovery_resolves_it(self, auth_client, session_factory):
        app, component = await _component(auth_client, "http://upstream/flaky", threshold=1)
        url = f"/api/health-checks/trigger/component/{component['id']}"

        state["healthy"] = False
        assert (await auth_client.post(url)).json()["status"] == "MAJOR_OUTAGE"

        async with session_factory() as session:
            result = await session.execute(select(StatusIncident.id).where(StatusIncident.app_id == app["id"]))
            incident_id = result.scalar_one()
        incident = (await auth_client.get(f"/api/incidents/{incident_id}")).json()
        assert incident["created_by"] == "system"
        assert incident["status"] == "INVESTIGATING"
        assert incident["components"] == [{"component_id": component["id"], "component_status": "MAJOR_OUTAGE"}]

        state["healthy"] = True
        assert (await auth_client.post(url)).json()["status"] == "OPERATIONAL"
        incident = (await auth_client.get(f"/api/incidents/{incident_id}")).json()
        assert incident["status"] == "RESOLVED"
        assert incident["resolved_at"] is not None

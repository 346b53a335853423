"""
HTTP-level tests for the availability router.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import httpx
import pytest

from app.database import get_db
from app.main import app
from app.services.inventory_client import InventoryClient
from app.services.polling import PollingScheduler

from conftest import T0, add_events


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.polling_scheduler = PollingScheduler(
        session_factory=session_factory, inventory=AsyncMock(spec=InventoryClient)
    )
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


def _window(hours=1):
    return {"start": T0.isoformat(), "end": (T0 + timedelta(hours=hours)).isoformat()}


async def test_health(client):
    resp = await client.get("/api/health")

    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


async def test_device_report(client, db):
    await add_events(db, ["up", "down"], start=T0, step_seconds=1800)

    resp = await client.get("/api/availability/1/devices/dev-1/report", params=_window())

    assert resp.status_code == 200
    body = resp.json()
    assert body["uptime_percentage"] == 50.0
    assert body["current_status"] == "down"
    assert len(body["outages"]) == 1


async def test_inverted_window_is_bad_request(client):
    params = {"start": T0.isoformat(), "end": (T0 - timedelta(hours=1)).isoformat()}

    resp = await client.get("/api/availability/1/devices/dev-1/report", params=params)

    assert resp.status_code == 400


async def test_unknown_period_is_rejected(client):
    resp = await client.get("/api/availability/1/devices/dev-1/report/90d")

    assert resp.status_code == 422


async def test_planned_downtime_lifecycle(client):
    payload = {
        "device_id": "dev-1",
        "title": "Firmware upgrade",
        "start_time": (T0 + timedelta(minutes=30)).isoformat(),
        "end_time": (T0 + timedelta(minutes=90)).isoformat(),
    }

    created = await client.post("/api/availability/1/planned-downtime", json=payload)
    excluded = await client.get(
        "/api/availability/1/devices/dev-1/excluded-time", params=_window(hours=2)
    )

    assert created.status_code == 201
    assert created.json()["recurring"] == "none"
    assert excluded.json()["excluded_seconds"] == 3600

    window_id = created.json()["id"]
    deleted = await client.delete(f"/api/availability/1/planned-downtime/{window_id}")
    missing = await client.delete(f"/api/availability/1/planned-downtime/{window_id}")
    assert deleted.status_code == 200
    assert missing.status_code == 404


async def test_create_inverted_planned_downtime_is_bad_request(client):
    payload = {
        "device_id": "dev-1",
        "title": "Backwards",
        "start_time": T0.isoformat(),
        "end_time": (T0 - timedelta(hours=1)).isoformat(),
    }

    resp = await client.post("/api/availability/1/planned-downtime", json=payload)
    listed = await client.get("/api/availability/1/planned-downtime")

    assert resp.status_code == 400
    assert listed.json() == []


async def test_acknowledge_unknown_incident_is_not_found(client):
    resp = await client.post("/api/availability/1/flapping/999/acknowledge")

    assert resp.status_code == 404


async def test_sla(client, db):
    await add_events(db, ["up"], start=T0)

    resp = await client.get("/api/availability/1/devices/dev-1/sla", params=_window(hours=24))

    assert resp.status_code == 200
    assert resp.json()["compliant"] is True
    assert resp.json()["target"] == 99.5


async def test_polling_config_validation(client):
    resp = await client.put("/api/availability/1/polling/config", json={"polling_interval_seconds": 5})

    assert resp.status_code == 422


async def test_polling_config_update(client):
    resp = await client.put(
        "/api/availability/1/polling/config", json={"fast_polling_retries": 5}
    )

    assert resp.status_code == 200
    assert resp.json()["fast_polling_retries"] == 5
    assert resp.json()["polling_interval_seconds"] == 300


async def test_fast_poll_without_credential(client):
    resp = await client.post("/api/availability/1/devices/dev-1/fast-poll", json={})

    assert resp.status_code == 200
    assert resp.json() == {"device_id": "dev-1", "status": "unknown", "recorded": False}


async def test_devices_stats(client, db):
    await add_events(db, ["up"], start=datetime.now(timezone.utc) - timedelta(hours=1), device_id="a")

    resp = await client.get("/api/availability/1/devices/stats", params={"period": "24h"})

    assert resp.status_code == 200
    assert resp.json() == [{"device_id": "a", "uptime_percentage": 100.0, "last_status": "up"}]

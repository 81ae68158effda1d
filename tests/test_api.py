import pytest
import requests
from fastapi.testclient import TestClient

from app import app
from core.espgrow.context import ControllerContext
from core.espgrow.controller_client import ControllerClient
from core.espgrow.models import (
    AutomationRule,
    ControlMethod,
    Device,
    DeviceType,
    RuleAction,
    RuleKind,
    Sensor,
    SensorType,
)
from core.espgrow.settings import ClientSettings

from helpers import URL, FakeTransport


@pytest.fixture
def context():
    settings = ClientSettings(controller_url=URL, history_timeout_seconds=0.05)
    context = ControllerContext(settings, transport=FakeTransport())
    context.devices.devices = [
        Device(
            id="fan1",
            name="Exhaust Fan",
            type=DeviceType.FAN,
            control_method=ControlMethod.SHELLY_GEN2,
            ip_address="192.168.1.60",
        )
    ]
    context.sensors.sensors = [
        Sensor(id="t1", name="Canopy Temp", type=SensorType.TEMPERATURE, unit="°C", hardware_type="sht31")
    ]
    context.rules.rules = [
        AutomationRule(
            id="r1",
            name="Lights on",
            enabled=True,
            kind=RuleKind.SCHEDULE,
            device_id="light1",
            action=RuleAction.TURN_ON,
            on_time="06:00",
            off_time="00:00",
        )
    ]

    app.state.context = context
    app.state.controller_client = ControllerClient(settings.http_base_url)
    yield context
    del app.state.context
    del app.state.controller_client


@pytest.fixture
def client(context):
    return TestClient(app)


def queued_types(context):
    return [c.type for c in context.channel.queued]


def test_health_without_controller():
    response = TestClient(app).get("/api/health")
    assert response.status_code == 200
    assert response.json()["controller_configured"] is False


def test_devices_require_controller():
    assert TestClient(app).get("/api/devices").status_code == 503


def test_status(client):
    data = client.get("/api/status").json()
    assert data["connection"] == "disconnected"
    assert data["controller_url"] == URL


def test_list_devices(client):
    data = client.get("/api/devices").json()
    assert data["devices"][0]["id"] == "fan1"
    assert data["devices"][0]["target"] == "192.168.1.60"
    assert data["devices"][0]["pending"] is False
    assert data["devices"][0]["override_until"] is None


def test_toggle_device(client, context):
    response = client.post("/api/devices/fan1/toggle")
    assert response.status_code == 202
    assert queued_types(context) == ["device_control"]
    assert context.devices.get("fan1").is_on is False

    assert client.post("/api/devices/fan1/toggle").status_code == 409
    assert client.post("/api/devices/nope/toggle").status_code == 404
    assert queued_types(context) == ["device_control"]


def test_device_crud_is_forwarded(client, context):
    body = {
        "id": "pump1",
        "name": "Pump",
        "type": "pump",
        "control_method": "tasmota",
        "ip_address": "192.168.1.70",
    }
    assert client.post("/api/devices", json=body).status_code == 202
    assert client.patch("/api/devices/fan1", json={"name": "Inline"}).status_code == 202
    assert client.patch("/api/devices/nope", json={"name": "x"}).status_code == 404
    assert client.delete("/api/devices/fan1").status_code == 202

    assert queued_types(context) == ["add_device", "update_device", "remove_device"]


def test_sensors_with_readings(client, context):
    data = client.get("/api/sensors").json()
    assert data["sensors"][0]["id"] == "t1"
    assert data["sensors"][0]["value"] is None


def test_history_timeout(client, context):
    response = client.get("/api/sensors/t1/history", params={"range": "12h"})
    assert response.status_code == 504
    assert client.get("/api/sensors/nope/history").status_code == 404
    assert client.get("/api/sensors/t1/history", params={"range": "3d"}).status_code == 422


def test_rules(client, context):
    assert client.get("/api/rules").json()["rules"][0]["on_time"] == "06:00"

    body = {
        "id": "r2",
        "name": "Veg lights",
        "kind": "schedule",
        "device_id": "light1",
        "on_time": "09:30",
        "off_time": "21:00",
    }
    assert client.post("/api/rules", json=body).status_code == 202
    assert client.post("/api/rules", json={**body, "on_time": "25:00"}).status_code == 400
    assert client.post("/api/rules/r1/toggle").status_code == 202
    assert client.post("/api/rules/nope/toggle").status_code == 404

    assert queued_types(context) == ["add_rule", "toggle_rule"]


def test_timezone_and_calibration(client, context):
    assert client.put("/api/settings/timezone", json={"offset_minutes": 120}).status_code == 202
    assert client.post("/api/calibration/ppfd", json={"known_ppfd": 750}).status_code == 202
    assert client.get("/api/calibration/ppfd").json() == {"factor": None, "error": None}

    assert queued_types(context) == ["set_timezone", "calibrate_ppfd", "get_ppfd_calibration"]


def test_backup_unreachable(client, monkeypatch):
    def fake_get(url, timeout):
        raise requests.exceptions.ConnectionError("unreachable")

    monkeypatch.setattr(app.state.controller_client.session, "get", fake_get)

    assert client.get("/api/config/backup").status_code == 502


def test_restore_rejects_incomplete_bundle(client):
    assert client.post("/api/config/restore", json={"devices": []}).status_code == 400

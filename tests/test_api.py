import json

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from core.config import settings
from main import app


ECG = {"userId": "u1", "dataType": "ecg_analysis", "deviceId": "D1", "bpm": 72, "rmssd": 41.3, "hrTrend": -2}


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def test_routes_registered():
    routes = {r.path for r in app.routes}
    assert {"/api/status", "/ws", "/health"} <= routes


def test_health(client: TestClient):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "healthy"


def test_status_reports_broker_and_viewers(client: TestClient):
    resp = client.get("/api/status")
    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID")
    data = resp.json()["data"]
    assert data["status"] == "running"
    assert data["mqtt_connected"] is True
    assert data["broker_state"] == "connected"
    assert data["clients_connected"] == 0
    assert data["timestamp"].endswith("Z")


def test_unknown_route_uses_unified_error(client: TestClient):
    resp = client.get("/nope")
    assert resp.status_code == 404
    assert resp.json()["error"]["type"] == "HTTPError"


def test_viewer_receives_status_then_scoped_telemetry(client: TestClient):
    relay = app.state.relay
    with client.websocket_connect("/ws") as ws:
        first = ws.receive_json()
        assert first["type"] == "connection_status"
        assert first["data"]["status"] == "connected"
        assert first["data"]["session_id"]

        assert client.get("/api/status").json()["data"]["clients_connected"] == 1

        ws.send_json({"type": "subscribe_device", "deviceId": "D1"})
        ack = ws.receive_json()
        assert ack["type"] == "subscribed"
        assert ack["room"] == "D1"

        client.portal.call(relay.source.publish, json.dumps({**ECG, "deviceId": "D2"}))
        client.portal.call(relay.source.publish, json.dumps(ECG))
        frame = ws.receive_json()
        assert frame["type"] == "ecg_data"
        assert frame["room"] == "D1"
        assert frame["data"]["deviceId"] == "D1"
        assert frame["data"]["bpm"] == 72


def test_viewer_protocol_errors_and_ping(client: TestClient):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()

        ws.send_json({"type": "subscribe_device"})
        assert ws.receive_json()["data"]["message_key"] == "ws.error.device_required"

        ws.send_text("not json")
        assert ws.receive_json()["data"]["message_key"] == "ws.error.invalid_json"

        ws.send_json({"type": "dance"})
        assert ws.receive_json()["data"]["message_key"] == "ws.error.unknown_type"

        ws.send_json({"type": "ping"})
        assert ws.receive_json()["type"] == "pong"


def test_idle_viewer_closed_once_missed_ping_limit_reached(client: TestClient, monkeypatch):
    monkeypatch.setattr(settings, "REALTIME_WS_IDLE_PING_INTERVAL_S", 0.05)
    monkeypatch.setattr(settings, "REALTIME_WS_PONG_GRACE_S", 0.05)
    monkeypatch.setattr(settings, "REALTIME_WS_MISSED_PING_LIMIT", 2)
    pings = 0
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        with pytest.raises(WebSocketDisconnect) as exc:
            while True:
                if ws.receive_json()["type"] == "ping":
                    pings += 1
        assert exc.value.code == 1001
    assert pings == 2

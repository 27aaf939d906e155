"""Tests for the bridge server (HTTP + WebSocket)."""

import pytest
from fastapi.testclient import TestClient

from server import create_app
from topicbus.config import BridgeSettings
from topicbus.diagnostics import DIAGNOSTICS_MESSAGE_TYPE


def _settings(**overrides):
    values = {"heartbeat_interval_sec": 0}
    values.update(overrides)
    return BridgeSettings(**values)


@pytest.fixture
def client():
    with TestClient(create_app(_settings(namespace="robot"))) as test_client:
        yield test_client


@pytest.fixture
def diagnostics_body(diagnostics_array):
    return {
        "topic": "/robot/diagnostics_agg",
        "type": DIAGNOSTICS_MESSAGE_TYPE,
        "msg": diagnostics_array,
    }


class TestHttp:
    def test_health(self, client):
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        data = response.json()
        assert data["connected"] is True
        # the diagnostics monitor holds one subscription
        assert data["subscriptions"] == 1
        assert data["sessions"] == 0

    def test_publish_feeds_diagnostics_monitor(self, client, diagnostics_body):
        response = client.post("/api/v1/publish", json=diagnostics_body)
        assert response.status_code == 200
        assert response.json() == {"status": "published", "topic": "/robot/diagnostics_agg"}

        data = client.get("/api/v1/diagnostics").json()
        assert data["namespace"] == "robot"
        assert data["received"] == 1
        assert [s["name"] for s in data["summary"]["errors"]] == ["/robot/estop"]
        assert data["tree"][0]["name"] == "robot"

    def test_topics_and_stats(self, client, diagnostics_body):
        client.post("/api/v1/publish", json=diagnostics_body)
        channels = client.get("/api/v1/topics").json()["channels"]
        assert channels == [{
            "name": "/robot/diagnostics_agg",
            "type": DIAGNOSTICS_MESSAGE_TYPE,
            "publishers": 1,
            "subscriptions": 1,
        }]
        stats = client.get("/api/v1/stats").json()
        assert stats["counters"]["published"] == 1

    def test_publish_type_conflict(self, client):
        body = {"topic": "/chatter", "type": "std_msgs/String", "msg": {"data": "x"}}
        assert client.post("/api/v1/publish", json=body).status_code == 200
        body["type"] = "std_msgs/Int32"
        response = client.post("/api/v1/publish", json=body)
        assert response.status_code == 409
        assert response.json()["error"] == "TYPE_MISMATCH"

    def test_delete_topic_releases_channel_and_type(self, client):
        body = {"topic": "/chatter", "type": "std_msgs/String", "msg": {"data": "x"}}
        assert client.post("/api/v1/publish", json=body).status_code == 200

        response = client.delete("/api/v1/topics/chatter")
        assert response.status_code == 200
        assert response.json() == {"status": "deleted", "topic": "/chatter"}
        channels = client.get("/api/v1/topics").json()["channels"]
        assert "/chatter" not in [c["name"] for c in channels]

        body["type"] = "std_msgs/Int32"
        assert client.post("/api/v1/publish", json=body).status_code == 200

    def test_delete_unknown_topic(self, client):
        response = client.delete("/api/v1/topics/nowhere")
        assert response.status_code == 404
        assert response.json()["topic"] == "nowhere"

    def test_publish_requires_topic_and_type(self, client):
        response = client.post("/api/v1/publish", json={"topic": " ", "type": "t", "msg": {}})
        assert response.status_code == 400

    def test_diagnostics_not_configured(self):
        with TestClient(create_app(_settings())) as plain:
            assert plain.get("/api/v1/diagnostics").status_code == 404


class TestApiKey:
    def test_http_requires_key_when_configured(self):
        with TestClient(create_app(_settings(api_key="secret"))) as client:
            assert client.get("/api/v1/health").status_code == 401
            response = client.get("/api/v1/health", headers={"X-API-Key": "secret"})
            assert response.status_code == 200

    def test_websocket_rejects_missing_key(self):
        with TestClient(create_app(_settings(api_key="secret"))) as client:
            with client.websocket_connect("/api/v1/ws") as ws:
                frame = ws.receive_json()
                assert frame["op"] == "status"
                assert frame["code"] == "UNAUTHORIZED"


class TestWebSocket:
    def test_ping(self, client):
        with client.websocket_connect("/api/v1/ws") as ws:
            ws.send_json({"op": "ping", "id": "p1"})
            frame = ws.receive_json()
            assert frame["op"] == "pong"
            assert frame["id"] == "p1"

    def test_invalid_json(self, client):
        with client.websocket_connect("/api/v1/ws") as ws:
            ws.send_text("{not json")
            frame = ws.receive_json()
            assert frame["code"] == "BAD_REQUEST"

    def test_subscriber_receives_http_publish(self, client):
        with client.websocket_connect("/api/v1/ws") as ws:
            ws.send_json({"op": "subscribe", "topic": "/chatter", "type": "std_msgs/String", "id": "s1"})
            ack = ws.receive_json()
            assert ack["op"] == "ack"
            assert ack["id"] == "s1"

            body = {"topic": "/chatter", "type": "std_msgs/String", "msg": {"data": "hello"}}
            assert client.post("/api/v1/publish", json=body).status_code == 200
            frame = ws.receive_json()
            assert frame == {"op": "publish", "topic": "/chatter", "msg": {"data": "hello"}}

    def test_websocket_publish_reaches_monitor(self, client, diagnostics_array):
        with client.websocket_connect("/api/v1/ws") as ws:
            ws.send_json({
                "op": "publish",
                "topic": "/robot/diagnostics_agg",
                "type": DIAGNOSTICS_MESSAGE_TYPE,
                "msg": diagnostics_array,
                "id": "m1",
            })
            ack = ws.receive_json()
            assert ack["op"] == "ack"
            assert ack["for"] == "publish"
            assert client.get("/api/v1/health").json()["sessions"] == 1

        data = client.get("/api/v1/diagnostics").json()
        assert data["received"] == 1

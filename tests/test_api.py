"""
Tests for the HTTP API and the companion WebSocket
"""
import random
import uuid

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conftest import FakeGenerator, FakeSecurity, RecordingSpeaker
from aurakai.application.container import build_container
from aurakai.application.websocket.ws_server import create_app
from aurakai.infrastructure.scheduling.scheduler import VirtualClockScheduler


@pytest.fixture
def container(settings):
    return build_container(
        settings,
        generator=FakeGenerator("Here is what I found."),
        security=FakeSecurity(),
        scheduler=VirtualClockScheduler(),
        speaker=RecordingSpeaker(),
        rng=random.Random(3)
    )


@pytest.fixture
def client(container):
    with TestClient(create_app(container)) as test_client:
        yield test_client


def test_health(client):
    response = client.get("/api/v1/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["orchestrator"] == "idle"
    assert body["pipeline"] == "idle"
    assert body["companion"] == "idle"
    assert body["active_connections"] == 0


def test_agent_request_updates_context(client):
    response = client.post("/api/v1/agent/request", json={"query": "hello"})

    assert response.status_code == 200
    assert response.json() == {"response": "Here is what I found.", "status": "idle", "last_error": None}

    context = client.get("/api/v1/context").json()
    assert context["record"]["user_text"] == "hello"
    assert "User context: hello" in context["summary"]

    cleared = client.delete("/api/v1/context").json()
    assert cleared["record"]["user_text"] == ""


def test_agent_request_rejects_empty_query(client):
    assert client.post("/api/v1/agent/request", json={"query": ""}).status_code == 422


def test_listen_runs_pipeline(client):
    first = client.post("/api/v1/conversation/listen").json()
    second = client.post("/api/v1/conversation/listen").json()

    assert first["started"] is True
    assert first["state"]["status"] == "ready"
    assert second["started"] is True

    conversation = client.get("/api/v1/conversation").json()
    assert len(conversation["history"]) == 2
    assert conversation["state"]["status"] == "ready"


def test_companion_gestures(client):
    tap = client.post("/api/v1/companion/tap").json()
    assert tap["accepted"] is True
    assert tap["companion"]["state"] == "alert"

    again = client.post("/api/v1/companion/long-press").json()
    assert again["accepted"] is False

    assert client.get("/api/v1/companion").json()["state"] == "alert"


def test_conference_room_lifecycle(client):
    joined = client.post("/api/v1/conference/standup/agents/Aura")
    assert joined.status_code == 200
    assert joined.json()["agent_count"] == 1

    context = client.put("/api/v1/conference/standup/context", json={"topic": "release"})
    assert context.json() == {"context": {"topic": "release"}}

    responses = client.post("/api/v1/conference/standup/conversation", json={"input": "ship it?"}).json()
    assert [r["agent_name"] for r in responses] == ["Aura"]
    assert responses[0]["content"] == "Here is what I found."

    details = client.get("/api/v1/conference/standup").json()
    assert details["history"] == ["Aura: Here is what I found."]
    assert details["metadata"]["request_count"] == 1
    assert details["errors"] == []

    assert client.post("/api/v1/conference/standup/tasks/next").json() == {"result": None, "remaining": 0}

    left = client.delete("/api/v1/conference/standup/agents/Aura").json()
    assert left["agent_count"] == 0


def test_conference_unknown_room_and_agent(client):
    assert client.get("/api/v1/conference/nowhere").status_code == 404
    assert client.post("/api/v1/conference/nowhere/tasks/next").status_code == 404
    assert client.post("/api/v1/conference/standup/agents/Nobody").status_code == 404


def test_metrics_endpoint(client):
    client.post("/api/v1/agent/request", json={"query": "hello"})

    summary = client.get("/api/v1/metrics").json()

    assert summary["orchestrator.success"] >= 1
    assert summary["latency.orchestrator.process_request"]["count"] >= 1


def test_websocket_user_message(client):
    session_id = str(uuid.uuid4())

    with client.websocket_connect(f"/ws/companion/{session_id}") as websocket:
        assert websocket.receive_json()["type"] == "connection"
        state = websocket.receive_json()
        assert state["type"] == "companion_state"
        assert state["state"] == "idle"

        websocket.send_json({"type": "user_message", "content": "hello"})
        reply = websocket.receive_json()

        assert reply["type"] == "markdown"
        assert reply["payload"] == "Here is what I found."


def test_websocket_gestures_and_unsupported_events(client):
    session_id = str(uuid.uuid4())

    with client.websocket_connect(f"/ws/companion/{session_id}") as websocket:
        websocket.receive_json()
        websocket.receive_json()

        websocket.send_json({"type": "gesture", "gesture": "tap"})
        streamed = websocket.receive_json()
        assert streamed["type"] == "companion_state"
        assert streamed["state"] == "alert"

        websocket.send_json({"type": "gesture", "gesture": "tap"})
        ignored = websocket.receive_json()
        assert ignored["type"] == "error"
        assert ignored["error_code"] == "gesture_ignored"

        websocket.send_json({"type": "markdown", "payload": "hi"})
        unsupported = websocket.receive_json()
        assert unsupported["error_code"] == "unsupported_event"


def test_websocket_rejects_invalid_session(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws/companion/not-a-uuid") as websocket:
            websocket.receive_json()

from __future__ import annotations

from fastapi.testclient import TestClient

from agentpilot.api import create_app
from agentpilot.config import Settings
from agentpilot.controller import AgentController
from agentpilot.factory import build_registry
from agentpilot.reasoning import RetryPolicy


def make_client(mode: str = "autonomous") -> TestClient:
    controller = AgentController(
        build_registry(),
        settings=Settings(operation_mode=mode, trace_enabled=False),
        retry_policy=RetryPolicy(sleep=lambda _: None),
    )
    return TestClient(create_app(controller))


def test_run_endpoint_completes():
    client = make_client()
    response = client.post("/run", json={"query": "weather in London", "config": {"maxIterations": 4}})
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "completed"
    assert body["tools_used"] == ["weather-service"]
    assert body["agent_mode"] is True


def test_checkpoint_resolution_flow():
    client = make_client("supervised")
    body = client.post("/run", json={"query": "weather in London"}).json()
    assert body["awaiting_human_input"] is True
    pending = client.get("/checkpoints", params={"session_id": body["session_id"]}).json()
    assert [item["reason"] for item in pending] == ["low_confidence"]
    checkpoint_id = pending[0]["checkpoint_id"]

    resolved = client.post(
        f"/checkpoints/{checkpoint_id}/resolve",
        json={"decision": "continue", "guidance": {"confidence": 0.8}},
    )
    assert resolved.status_code == 200
    assert resolved.json()["status"] == "completed"

    again = client.post(f"/checkpoints/{checkpoint_id}/resolve", json={"decision": "continue"})
    assert again.status_code == 409
    assert again.json()["error"] == "CheckpointError"

    missing = client.post("/checkpoints/checkpoint-missing/resolve", json={})
    assert missing.status_code == 404


def test_blockers_and_cancel():
    client = make_client()
    body = client.post("/run", json={"query": "delete admin password"}).json()
    assert body["pending_checkpoint"]["reason"] == "safety_concern"
    assert client.get("/blockers").json() == []
    cancelled = client.post(f"/sessions/{body['session_id']}/cancel").json()
    assert cancelled["stop_reason"] == "cancelled"
    assert client.post("/sessions/session-missing/cancel").status_code == 404


def test_progress_endpoint():
    client = make_client()
    assert client.get("/progress").status_code == 404
    body = client.post("/run", json={"query": "weather in London"}).json()
    progress = client.get("/progress", params={"session_id": body["session_id"]}).json()
    assert progress["session_id"] == body["session_id"]


def test_mode_and_autonomy_configuration():
    client = make_client()
    assert client.post("/mode", json={"mode": "reckless"}).status_code == 400
    assert client.post("/mode", json={"mode": "manual"}).json() == {"operation_mode": "manual"}
    configured = client.post("/autonomy", json={"thresholds": {"confidence_threshold": 0.4}})
    assert configured.status_code == 200
    assert configured.json()["config"]["confidence_threshold"] == 0.4
    assert client.post("/autonomy", json={"thresholds": {"bravery": 1}}).status_code == 400


def test_invalid_run_mode_is_rejected():
    client = make_client()
    response = client.post("/run", json={"query": "weather", "config": {"operation_mode": "reckless"}})
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidModeError"

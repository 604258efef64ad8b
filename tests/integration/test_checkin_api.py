from __future__ import annotations

from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

from agents.orchestrator import CheckInOrchestrator
from api.main import create_app
from memory.session_store import InMemoryStateStore
from models.errors import ConfigurationError
from settings import StagePromptConfig
from tools.checkin_tools import build_tool_gateway

from conftest import ScriptedChatModel


def _client(settings, chat_model=None):
    orchestrator = CheckInOrchestrator(
        settings=settings,
        store=InMemoryStateStore(path=""),
        gateway=build_tool_gateway(settings),
        chat_model=chat_model or ScriptedChatModel(),
    )
    return TestClient(create_app(settings=settings, orchestrator=orchestrator)), orchestrator


def test_first_turn_starts_a_session(test_settings):
    chat_model = ScriptedChatModel()
    client, _ = _client(test_settings, chat_model)
    resp = client.post("/main/run", json={"goal": "frequentFlyerCardNumber AB123 lastName Smith"})
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["stage"] == "BEGIN_CONVERSATION"
    assert data["status"] == "USER_INPUT_REQUIRED"
    assert data["continue"] is False
    assert data["sessionId"]
    assert data["userMessage"] == "Please provide your frequent flyer number or booking reference, plus your last name."
    assert chat_model.requests == []
    assert "X-Process-Time-Ms" in resp.headers

    session = client.get(f"/main/session/{data['sessionId']}")
    assert session.status_code == 200
    assert session.json()["currentStage"] == "BEGIN_CONVERSATION"


def test_second_turn_collects_identity(test_settings, script):
    chat_model = ScriptedChatModel()
    client, _ = _client(test_settings, chat_model)
    session_id = client.post("/main/run", json={"goal": "hi", "sessionId": None}).json()["sessionId"]

    # begin conversation, then trip identification for the frequent flyer number
    chat_model.queue(
        script.final({}),
        script.tool_call("trip_identification", {"frequentFlyerNumber": "EY1234567", "lastName": "Smith"}),
        script.final({}),
    )
    resp = client.post(
        "/main/run",
        json={"goal": "frequentFlyerCardNumber EY1234567 lastName Smith", "sessionId": session_id},
    )
    data = resp.json()
    assert data["stage"] == "TRIP_IDENTIFICATION"
    assert data["status"] == "USER_INPUT_REQUIRED"
    assert data["data"]["choices"] == ["7MHQTY", "8KLPQR"]

    state = client.get(f"/main/session/{session_id}").json()
    assert state["data"]["frequentFlyerNumber"] == "EY1234567"
    assert state["beginConversation"]["status"] == "SUCCESS"
    assert [b["id"] for b in state["data"]["pendingBookings"]] == ["7MHQTY", "8KLPQR"]


def test_health(test_settings):
    client, _ = _client(test_settings)
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["ok"] is True
    assert data["service"] == "smart-checkin-orchestrator"
    assert data["mock_backends"] is True
    assert data["mcp_servers"] == []


def test_missing_session_is_404_and_delete_is_idempotent(test_settings):
    client, _ = _client(test_settings)
    assert client.get("/main/session/does-not-exist").status_code == 404
    resp = client.delete("/main/session/does-not-exist")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "sessionId": "does-not-exist"}


def test_delete_session(test_settings):
    client, _ = _client(test_settings)
    session_id = client.post("/main/run", json={"goal": "hi"}).json()["sessionId"]
    client.delete(f"/main/session/{session_id}")
    assert client.get(f"/main/session/{session_id}").status_code == 404


def test_tool_catalogue(test_settings):
    client, _ = _client(test_settings)
    tools = client.get("/main/tools").json()["tools"]
    names = {tool["name"] for tool in tools}
    assert "ssci_boarding_pass" in names
    assert all(tool["type"] == "function" for tool in tools)


def test_unexpected_error_becomes_failed_envelope(test_settings, monkeypatch):
    client, orchestrator = _client(test_settings)

    async def boom(goal, session_id=None):
        raise RuntimeError("backend exploded")

    monkeypatch.setattr(orchestrator, "run", boom)
    resp = client.post("/main/run", json={"goal": "hi", "sessionId": "s-1"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "FAILED"
    assert data["stage"] == "BEGIN_CONVERSATION"
    assert data["error"]["code"] == "internal_error"


def test_rate_limit(settings_factory):
    client, _ = _client(settings_factory(rate_limit_per_minute=2))
    assert client.get("/main/tools").status_code == 200
    assert client.get("/main/tools").status_code == 200
    assert client.get("/main/tools").status_code == 429
    assert client.get("/health").status_code == 200


def test_app_refuses_incomplete_configuration(test_settings):
    prompts = dict(test_settings.stage_prompts)
    prompts["TRIP_IDENTIFICATION"] = StagePromptConfig(env_prefix="TRIP_IDENTIFICATION")
    with pytest.raises(ConfigurationError):
        create_app(settings=replace(test_settings, stage_prompts=prompts), orchestrator=object())

"""HTTP API tests against an app wired with a scripted model."""
from __future__ import annotations

from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from a2a.api.conversations import ExecuteRequest
from a2a.config import A2ASettings, Config
from a2a.core.models import CollaborationPattern
from a2a.main import create_app
from a2a.runtime import build_service
from a2a.service import A2AService
from fakes import ScriptedInvoker


@pytest.fixture
def service() -> A2AService:
    return build_service(Config(), invoker=ScriptedInvoker())


@pytest.fixture
def client(service: A2AService) -> Iterator[TestClient]:
    with TestClient(create_app(service=service)) as test_client:
        yield test_client


def execute(client: TestClient, goal: str = "Research the market", **payload):
    return client.post("/a2a/execute", json={"user_id": "user-1", "goal": goal, **payload})


def test_root_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_lists_default_agents(client: TestClient) -> None:
    response = client.get("/a2a/agents")
    assert response.status_code == 200
    agents = response.json()
    assert [agent["agent_id"] for agent in agents][0] == "coordinator-1"
    assert len(agents) == 6
    assert agents[0]["state"] == "idle"


def test_register_and_manage_agent(client: TestClient) -> None:
    payload = {
        "id": "writer-1",
        "name": "Tech Writer",
        "role": "writer",
        "capabilities": {"can_write": True},
    }
    created = client.post("/a2a/agents", json=payload)
    assert created.status_code == 201
    assert created.json()["role"] == "writer"

    duplicate = client.post("/a2a/agents", json=payload)
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"]["error"] == "DuplicateAgentError"

    disabled = client.post("/a2a/agents/writer-1/enable", json={"enabled": False})
    assert disabled.status_code == 200
    assert disabled.json()["state"] == "disabled"

    assert client.get("/a2a/agents/writer-1").json()["enabled"] is False
    assert client.delete("/a2a/agents/writer-1").status_code == 204
    assert client.get("/a2a/agents/writer-1").status_code == 404
    assert client.delete("/a2a/agents/writer-1").status_code == 404


def test_register_rejects_bad_payloads(client: TestClient) -> None:
    unknown_role = client.post("/a2a/agents", json={"id": "x-1", "name": "X", "role": "astronaut"})
    assert unknown_role.status_code == 400

    no_logic = client.post("/a2a/agents", json={"id": "x-2", "name": "X", "role": "custom"})
    assert no_logic.status_code == 400

    missing_name = client.post("/a2a/agents", json={"id": "x-3", "role": "writer"})
    assert missing_name.status_code == 422


def test_agents_by_role(client: TestClient) -> None:
    assert client.get("/a2a/agents/role/cost-estimator").json() == ["cost-estimator-1"]
    assert client.get("/a2a/agents/role/astronaut").status_code == 400


def test_execute_and_read_back_the_conversation(client: TestClient) -> None:
    response = execute(client)
    assert response.status_code == 200
    result = response.json()
    assert result["status"] == "completed"
    cid = result["conversation_id"]

    conversation = client.get(f"/a2a/conversations/{cid}").json()
    assert conversation["status"] == "completed"
    assert conversation["goal"] == "Research the market"
    assert len(conversation["tasks"]) == 1

    summary = client.get(f"/a2a/conversations/{cid}/summary").json()
    assert summary["outcome"] == "Successfully completed"

    events = client.get(f"/a2a/conversations/{cid}/events").json()
    assert events[0]["type"] == "conversation_started"
    assert events[-1]["type"] == "conversation_completed"

    assert [c["id"] for c in client.get("/a2a/conversations/recent", params={"limit": 5}).json()] == [cid]
    assert client.get("/a2a/conversations/active").json() == []
    assert len(client.get("/a2a/conversations/search", params={"q": "market"}).json()) == 1
    assert len(client.get("/a2a/conversations/user/user-1").json()) == 1

    cancel = client.post(f"/a2a/conversations/{cid}/cancel")
    assert cancel.status_code == 202
    assert cancel.json() == {"conversation_id": cid, "cancelled": False}

    assert client.delete(f"/a2a/conversations/{cid}").status_code == 204
    assert client.get(f"/a2a/conversations/{cid}").status_code == 404


def test_execute_errors_map_to_status_codes(client: TestClient) -> None:
    assert execute(client, strategy={"pattern": "telepathy"}).status_code == 422
    assert execute(client, strategy={"max_agents": "two"}).status_code == 422
    assert execute(client, strategy={"warp_speed": True}).status_code == 422
    assert execute(client, goal="").status_code == 422
    assert execute(client, max_agents=0).status_code == 422

    aborted = execute(client, goal="Fly to the moon", required_capabilities={"can_fly": True})
    assert aborted.status_code == 503
    detail = aborted.json()["detail"]
    assert detail["error"] == "NoAgentAvailableError"
    assert client.get(f"/a2a/conversations/{detail['conversation_id']}").json()["status"] == "failed"


def test_unknown_conversation_is_404(client: TestClient) -> None:
    assert client.get("/a2a/conversations/conv_missing").status_code == 404
    assert client.get("/a2a/conversations/conv_missing/summary").status_code == 404
    assert client.post("/a2a/conversations/conv_missing/cancel").status_code == 404


def test_strategy_round_trip(client: TestClient) -> None:
    assert client.get("/a2a/strategy").json()["pattern"] == "hierarchical"

    updated = client.put("/a2a/strategy", json={"pattern": "parallel", "max_agents": 4})
    assert updated.status_code == 200
    assert updated.json()["pattern"] == "parallel"
    assert updated.json()["max_agents"] == 4
    assert updated.json()["timeout_ms"] == 30000

    assert client.put("/a2a/strategy", json={"max_agents": 0}).status_code == 422
    assert client.put("/a2a/strategy", json={"pattern": "telepathy"}).status_code == 422


def test_metrics_stats_and_health(client: TestClient) -> None:
    execute(client)

    metrics = client.get("/a2a/metrics").json()
    assert {m["agent_id"] for m in metrics} >= {"coordinator-1", "researcher-1"}

    stats = client.get("/a2a/stats").json()
    assert stats["total_conversations"] == 1
    assert stats["orchestrator"]["completed"] == 1

    health = client.get("/a2a/health").json()
    assert health["initialized"] is True
    assert health["agents"]["researcher-1"] is True


def test_disabled_service_returns_503() -> None:
    service = build_service(Config(a2a=A2ASettings(enabled=False)), invoker=ScriptedInvoker())
    with TestClient(create_app(service=service)) as client:
        response = execute(client)
    assert response.status_code == 503
    assert response.json()["detail"]["error"] == "ServiceUnavailableError"


def test_execute_strategy_is_typed_before_merging(client: TestClient) -> None:
    parsed = ExecuteRequest(
        user_id="user-1",
        goal="Research the market",
        strategy={"pattern": "parallel", "retry_on_failure": "false", "max_agents": "2"},
    )
    assert parsed.to_request().strategy == {
        "pattern": CollaborationPattern.PARALLEL,
        "retry_on_failure": False,
        "max_agents": 2,
    }

    response = execute(client, strategy={"pattern": "parallel", "retry_on_failure": "false", "max_agents": "2"})
    assert response.status_code == 200
    assert response.json()["status"] == "completed"

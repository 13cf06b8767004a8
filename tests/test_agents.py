"""Tests for the agent type, its role logic and reply parsing."""
from __future__ import annotations

import asyncio

import pytest

from a2a.agents.base import Agent
from a2a.agents.parsing import parse_response
from a2a.agents.roles import CoordinatorLogic, default_role_catalog, quality_score, total_cost
from a2a.core.errors import InvalidStateError, InvocationError, ValidationError
from a2a.core.models import AgentMessage, AgentRole, AgentState, DelegationRequest
from fakes import ScriptedInvoker, agent_config, make_task


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def build_agent(invoker: ScriptedInvoker, role: AgentRole = AgentRole.RESEARCHER, **overrides) -> Agent:
    config = agent_config("researcher-1", role, "can_research", "can_write", **overrides)
    return Agent(config, default_role_catalog()[role], invoker)


@pytest.mark.anyio
async def test_execute_task_returns_parsed_output_and_updates_metrics() -> None:
    invoker = ScriptedInvoker({"researcher-1": "Findings:\n- Market is growing\n- Two competitors"})
    agent = build_agent(invoker)

    output = await agent.execute_task(make_task())

    assert output["content"].startswith("Findings")
    assert output["key_points"] == ["Market is growing", "Two competitors"]
    assert output["delegate_to"] is None
    metrics = agent.metrics
    assert metrics.tasks_completed == 1
    assert metrics.success_rate == 1.0
    assert metrics.tokens_used == 10
    assert agent.state is AgentState.IDLE


@pytest.mark.anyio
async def test_agent_is_busy_while_task_in_flight() -> None:
    invoker = ScriptedInvoker()
    invoker.gates["researcher-1"] = asyncio.Event()
    agent = build_agent(invoker)

    running = asyncio.create_task(agent.execute_task(make_task()))
    await invoker.started.wait()
    assert agent.state is AgentState.BUSY
    assert agent.current_load == 1
    assert not agent.is_available()

    invoker.gates["researcher-1"].set()
    await running
    assert agent.state is AgentState.IDLE
    assert agent.is_available()


@pytest.mark.anyio
async def test_invocation_failure_is_normalised_and_counted() -> None:
    agent = build_agent(ScriptedInvoker(fail_times={"researcher-1": 1}))

    with pytest.raises(InvocationError):
        await agent.execute_task(make_task())

    assert agent.metrics.tasks_failed == 1
    assert agent.state is AgentState.IDLE


@pytest.mark.anyio
async def test_logic_error_puts_agent_in_error_until_reset() -> None:
    class BrokenLogic(CoordinatorLogic):
        def parse(self, content: str) -> dict:
            raise KeyError("missing field")

    agent = Agent(agent_config("broken", AgentRole.CUSTOM), BrokenLogic(), ScriptedInvoker())

    with pytest.raises(KeyError):
        await agent.execute_task(make_task(agent_id="broken"))
    assert agent.state is AgentState.ERROR
    assert not agent.has_capacity()
    assert await agent.health_check() is False

    agent.reset()
    assert agent.state is AgentState.IDLE
    assert agent.metrics.total_tasks == 0


@pytest.mark.anyio
async def test_cannot_handle_task_without_required_capabilities() -> None:
    agent = build_agent(ScriptedInvoker())
    task = make_task(metadata={"required_capabilities": {"can_code": True}})

    assert not agent.can_handle_task(task)
    with pytest.raises(ValidationError):
        await agent.execute_task(task)


@pytest.mark.anyio
async def test_disabled_agent_rejects_work() -> None:
    agent = build_agent(ScriptedInvoker(), enabled=False)
    message = AgentMessage(id="m1", conversation_id="c1", from_agent_id="user", to_agent_id=agent.id, content="hi")

    assert agent.state is AgentState.DISABLED
    with pytest.raises(InvalidStateError):
        await agent.process_message(message)

    agent.set_enabled(True)
    assert agent.state is AgentState.IDLE


@pytest.mark.anyio
async def test_process_message_parses_hints_and_keeps_bounded_history() -> None:
    reply = (
        "Here is my take.\n"
        "REASONING: the data is thin\n"
        "NEXT ACTIONS:\n- gather more data\n- ask the analyst\n\n"
        "NEED INFO FROM: analyst-1 - what are the Q3 numbers?\n"
        "DELEGATE TO: analyst-1 - Analyze the Q3 numbers"
    )
    agent = build_agent(ScriptedInvoker({"researcher-1": reply}))

    for index in range(Agent.HISTORY_LIMIT + 5):
        message = AgentMessage(
            id=f"m{index}", conversation_id="c1", from_agent_id="user", to_agent_id=agent.id, content=f"msg {index}"
        )
        response = await agent.process_message(message)

    assert response.delegate_to == DelegationRequest(agent_id="analyst-1", task="Analyze the Q3 numbers")
    assert response.next_actions == ["gather more data", "ask the analyst"]
    assert response.requests_info[0].from_agent == "analyst-1"
    assert response.reasoning == "the data is thin"
    history = agent.conversation_history("c1")
    assert len(history) == Agent.HISTORY_LIMIT
    assert history[-1].content == f"msg {Agent.HISTORY_LIMIT + 4}"

    agent.clear_conversation_history("c1")
    assert agent.conversation_history("c1") == []


def test_abandon_task_forces_idle() -> None:
    agent = build_agent(ScriptedInvoker())
    agent._begin("stuck-task")
    assert agent.state is AgentState.BUSY

    agent.abandon_task("stuck-task")
    assert agent.state is AgentState.IDLE
    assert agent.current_load == 0


def test_update_config_keeps_id_immutable() -> None:
    agent = build_agent(ScriptedInvoker())
    agent.update_config(description="Senior researcher", max_concurrent_tasks=3)
    assert agent.config.description == "Senior researcher"
    assert agent.config.max_concurrent_tasks == 3

    with pytest.raises(ValidationError):
        agent.update_config(id="other")


def test_parse_response_without_hints() -> None:
    response = parse_response("a1", "Plain answer")
    assert response.delegate_to is None
    assert response.next_actions == []
    assert response.requests_info == []


def test_coordinator_logic_extracts_json_breakdown() -> None:
    content = 'Plan below\n```json\n{"tasks": [{"title": "Research"}]}\n```'
    parsed = CoordinatorLogic().parse(content)
    assert parsed["task_breakdown"] == {"tasks": [{"title": "Research"}]}

    fallback = CoordinatorLogic().parse("no json here")
    assert fallback["task_breakdown"] == {"raw_plan": "no json here"}


def test_role_extractors() -> None:
    assert total_cost("Design $1,200 and build $8,500.50; total $9,700.50") == 9700.50
    assert total_cost("no numbers") is None
    assert quality_score("Quality score: 8/10") == 0.8
    assert quality_score("Overall score 72") == 0.72

    catalog = default_role_catalog()
    developer = catalog[AgentRole.DEVELOPER].parse("```python\nprint('hi')\n```")
    assert developer["code_blocks"] == [{"language": "python", "code": "print('hi')"}]
    assert set(catalog) == set(AgentRole) - {AgentRole.CUSTOM}


@pytest.mark.anyio
async def test_free_form_prompts_do_not_count_as_tasks() -> None:
    invoker = ScriptedInvoker(fail_times={"researcher-1": 1})
    agent = build_agent(invoker)

    with pytest.raises(InvocationError):
        await agent.complete("Plan the work")
    reply = await agent.complete("Synthesize the results")
    await agent.execute_task(make_task())

    assert reply.content == "Done."
    metrics = agent.metrics
    assert metrics.total_tasks == 1
    assert metrics.tasks_failed == 0
    assert metrics.success_rate == 1.0
    assert metrics.tokens_used == 20
    assert metrics.last_active_at is not None
    assert agent.state is AgentState.IDLE

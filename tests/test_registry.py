"""Tests for agent registration, lookups and task routing."""
from __future__ import annotations

import itertools

import pytest

from a2a.agents.defaults import default_agent_configs
from a2a.core.errors import AgentNotFoundError, DuplicateAgentError, InvocationError, ValidationError
from a2a.core.models import AgentRole, AgentState, TaskRoutingRule
from a2a.orchestration.registry import AgentRegistry
from a2a.orchestration.routing import guess_role, resolve_role
from fakes import ScriptedInvoker, agent_config, coordinator, make_task


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def registry() -> AgentRegistry:
    registry = AgentRegistry(ScriptedInvoker())
    for config in default_agent_configs():
        registry.register(config)
    return registry


def test_register_rejects_duplicates_and_bad_configs() -> None:
    registry = AgentRegistry(ScriptedInvoker())
    registry.register(agent_config("dev-1", AgentRole.DEVELOPER, "can_code"))

    with pytest.raises(DuplicateAgentError):
        registry.register(agent_config("dev-1", AgentRole.DEVELOPER, "can_code"))
    with pytest.raises(ValidationError):
        registry.register(agent_config("", AgentRole.DEVELOPER))
    with pytest.raises(ValidationError):
        registry.register(agent_config("dev-2", AgentRole.DEVELOPER, max_concurrent_tasks=0))
    with pytest.raises(ValidationError):
        registry.register(agent_config("custom-1", AgentRole.CUSTOM))
    assert registry.count() == 1


def test_registry_owns_a_copy_of_the_config() -> None:
    registry = AgentRegistry(ScriptedInvoker())
    config = agent_config("dev-1", AgentRole.DEVELOPER, "can_code")
    registry.register(config)

    config.capabilities["can_design"] = True
    assert not registry.require("dev-1").has_capabilities({"can_design": True})


def test_unregister_unknown_agent_raises() -> None:
    registry = AgentRegistry(ScriptedInvoker())
    with pytest.raises(AgentNotFoundError):
        registry.unregister("ghost")
    assert registry.get("ghost") is None


def test_capability_lookup_is_exact(registry: AgentRegistry) -> None:
    for capability in ("can_research", "can_code", "can_design", "can_estimate"):
        expected = {
            agent.id for agent in registry.all_agents() if agent.config.capabilities.get(capability)
        }
        assert {agent.id for agent in registry.agents_with_capability(capability)} == expected
    assert registry.agents_with_capability("can_fly") == []


def test_all_agents_keeps_registration_order(registry: AgentRegistry) -> None:
    ids = [agent.id for agent in registry.all_agents()]
    assert ids == [config.id for config in default_agent_configs()]
    assert [agent.id for agent in registry.agents_by_role(AgentRole.DESIGNER)] == ["designer-1"]


@pytest.mark.parametrize(
    ("description", "expected"),
    [
        ("Research competitor pricing", "researcher-1"),
        ("Implement the booking API", "developer-1"),
        ("Design the onboarding mockup", "designer-1"),
        ("Estimate the budget for launch", "cost-estimator-1"),
        ("Evaluate churn metrics", "analyst-1"),
    ],
)
def test_routing_rules_pick_the_specialist(registry: AgentRegistry, description: str, expected: str) -> None:
    assert registry.best_agent_for_task(description).id == expected


def test_keywords_only_match_at_word_start(registry: AgentRegistry) -> None:
    # "build" contains "ui" but must not route to the designer.
    agent = registry.best_agent_for_task("Build a booking flow")
    assert agent is not None
    assert agent.id != "designer-1"


def test_required_capabilities_filter_candidates(registry: AgentRegistry) -> None:
    agent = registry.best_agent_for_task("Research the market", {"can_code": True})
    assert agent.id == "developer-1"
    assert registry.best_agent_for_task("Anything", {"can_fly": True}) is None


CAPABILITY_FLAGS = (
    "can_analyze",
    "can_code",
    "can_design",
    "can_estimate",
    "can_manage_projects",
    "can_research",
    "can_write",
)
DESCRIPTIONS = ("Research the market", "Build a booking flow", "Estimate the budget", "Something entirely unrelated")


@pytest.mark.parametrize("disabled", [None, "developer-1"])
def test_best_agent_always_satisfies_required_capabilities(registry: AgentRegistry, disabled) -> None:
    if disabled:
        registry.set_agent_enabled(disabled, False)
    for size in range(len(CAPABILITY_FLAGS) + 1):
        for flags in itertools.combinations(CAPABILITY_FLAGS, size):
            required = dict.fromkeys(flags, True)
            qualified = [a for a in registry.all_agents() if a.has_capacity() and a.has_capabilities(required)]
            for description in DESCRIPTIONS:
                agent = registry.best_agent_for_task(description, required)
                if agent is None:
                    assert qualified == [], (description, required)
                else:
                    assert agent.config.has_capabilities(required), (description, required, agent.id)
                    assert agent.has_capacity()


def test_role_named_in_description_is_used_when_no_rule_matches(registry: AgentRegistry) -> None:
    assert registry.best_agent_for_task("Ask the designer for feedback").id == "designer-1"
    assert guess_role("hand it to the cost estimator") is AgentRole.COST_ESTIMATOR
    assert resolve_role("cost-estimator") is AgentRole.COST_ESTIMATOR
    assert resolve_role("astronaut") is None


def test_unmatched_description_prefers_non_coordinators(registry: AgentRegistry) -> None:
    agent = registry.best_agent_for_task("Something entirely unrelated")
    assert agent.role is not AgentRole.COORDINATOR


def test_ties_break_on_load_then_success_then_registration() -> None:
    registry = AgentRegistry(ScriptedInvoker())
    for agent_id in ("dev-a", "dev-b"):
        registry.register(agent_config(agent_id, AgentRole.DEVELOPER, "can_code", max_concurrent_tasks=2))

    assert registry.best_agent_for_task("Implement login").id == "dev-a"
    assert registry.best_agent_for_task("Implement login", planned_load={"dev-a": 1}).id == "dev-b"

    registry.require("dev-a")._begin("busy")
    assert registry.best_agent_for_task("Implement login").id == "dev-b"


@pytest.mark.anyio
async def test_higher_success_rate_wins_at_equal_load() -> None:
    invoker = ScriptedInvoker(fail_times={"dev-a": 1})
    registry = AgentRegistry(invoker)
    for agent_id in ("dev-a", "dev-b"):
        registry.register(agent_config(agent_id, AgentRole.DEVELOPER, "can_code"))

    with pytest.raises(InvocationError):
        await registry.require("dev-a").execute_task(make_task(agent_id="dev-a"))
    await registry.require("dev-b").execute_task(make_task(agent_id="dev-b"))

    assert registry.best_agent_for_task("Implement login").id == "dev-b"
    assert registry.most_experienced_agent().id == "dev-b"
    assert registry.most_experienced_agent(AgentRole.DESIGNER) is None


def test_disabled_and_saturated_agents_are_skipped() -> None:
    registry = AgentRegistry(ScriptedInvoker())
    registry.register(agent_config("dev-a", AgentRole.DEVELOPER, "can_code"))
    registry.register(agent_config("dev-b", AgentRole.DEVELOPER, "can_code"))

    registry.set_agent_enabled("dev-a", False)
    assert registry.require("dev-a").state is AgentState.DISABLED
    assert [agent.id for agent in registry.available_agents()] == ["dev-b"]

    registry.require("dev-b")._begin("busy")
    assert registry.available_agents() == []
    assert registry.best_agent_for_task("Implement login") is None
    assert registry.least_loaded_agent() is None


def test_custom_rule_with_predicate() -> None:
    registry = AgentRegistry(ScriptedInvoker(), rules=[])
    registry.register(coordinator())
    registry.register(agent_config("writer-1", AgentRole.WRITER, "can_write"))
    registry.register(agent_config("writer-2", AgentRole.WRITER, "can_write"))
    registry.add_routing_rule(
        TaskRoutingRule(
            name="legal",
            preferred_agent_ids=("writer-2",),
            predicate=lambda description, required: "contract" in description.lower(),
        )
    )

    assert registry.best_agent_for_task("Draft the contract").id == "writer-2"
    assert registry.best_agent_for_task("Draft the blog post").id == "writer-1"
    assert [rule.name for rule in registry.routing_rules()] == ["legal"]


@pytest.mark.anyio
async def test_health_check_maps_failures_to_false(registry: AgentRegistry) -> None:
    async def broken() -> bool:
        raise RuntimeError("probe failed")

    registry.require("designer-1").health_check = broken
    registry.set_agent_enabled("analyst-1", False)

    health = await registry.health_check()

    assert health["designer-1"] is False
    assert health["analyst-1"] is False
    assert health["researcher-1"] is True
    assert len(health) == registry.count()


def test_stats_and_reset(registry: AgentRegistry) -> None:
    registry.require("developer-1")._begin("busy")
    stats = registry.stats()

    assert stats["total_agents"] == 6
    assert stats["busy_agents"] == 1
    assert stats["available_agents"] == 5
    assert stats["agents_by_role"]["coordinator"] == 1
    assert stats["average_success_rate"] == 0.0

    registry.reset_all()
    assert registry.stats()["busy_agents"] == 0
    assert len(registry.entries()) == 6
    assert set(registry.all_metrics()) == {agent.id for agent in registry.all_agents()}

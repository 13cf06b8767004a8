"""Tests for goal decomposition parsing."""
from __future__ import annotations

import json

from a2a.core.models import AgentConfig, AgentRole, MessagePriority
from a2a.orchestration.decomposition import StructuredDecomposer, build_decomposition_prompt
from fakes import plan


def test_json_breakdown_with_named_dependencies() -> None:
    reply = "Here is the plan:\n```json\n" + json.dumps(
        {
            "tasks": [
                {"id": "research", "title": "Research", "description": "Research the market", "role": "researcher"},
                {
                    "title": "Estimate",
                    "description": "Estimate the cost",
                    "dependencies": ["research"],
                    "role": "cost-estimator",
                    "priority": "high",
                    "required_capabilities": {"can_estimate": True},
                },
            ]
        }
    ) + "\n```"

    specs = StructuredDecomposer().decompose("Launch", reply)

    assert [spec.title for spec in specs] == ["Research", "Estimate"]
    assert specs[0].role is AgentRole.RESEARCHER
    assert specs[1].dependencies == (0,)
    assert specs[1].role is AgentRole.COST_ESTIMATOR
    assert specs[1].priority is MessagePriority.HIGH
    assert specs[1].required_capabilities == {"can_estimate": True}


def test_forward_and_self_dependencies_fall_back_to_the_previous_task() -> None:
    reply = plan("First task", "Second task", "Third task", dependencies=[[1], [1], [0, 5]])
    specs = StructuredDecomposer().decompose("Goal", reply)
    assert [spec.dependencies for spec in specs] == [(), (0,), (0, 1)]


def test_index_strings_resolve_to_earlier_tasks() -> None:
    reply = json.dumps(
        {
            "tasks": [
                {"title": "Research", "description": "Research the market"},
                {"title": "Outline", "description": "Outline the report"},
                {"title": "Report", "description": "Write the report", "dependencies": ["0", " 1 "]},
            ]
        }
    )
    specs = StructuredDecomposer().decompose("Goal", reply)
    assert specs[2].dependencies == (0, 1)


def test_unknown_reference_keeps_the_task_sequential() -> None:
    reply = json.dumps(
        {
            "tasks": [
                {"title": "Research", "description": "Research the market"},
                {"title": "Outline", "description": "Outline the report"},
                {"title": "Report", "description": "Write the report", "dependencies": ["the-survey"]},
                {"title": "Review", "description": "Review the report", "dependencies": "Research"},
            ]
        }
    )
    specs = StructuredDecomposer().decompose("Goal", reply)
    assert [spec.dependencies for spec in specs] == [(), (), (1,), (0,)]


def test_string_items_and_subtasks_key() -> None:
    reply = json.dumps({"subtasks": ["Collect requirements", {"title": "Draft the spec sheet"}, 42, {"title": ""}]})
    specs = StructuredDecomposer().decompose("Goal", reply)
    assert [spec.description for spec in specs] == ["Collect requirements", "Draft the spec sheet"]


def test_numbered_list_is_chained_in_order() -> None:
    reply = "Plan:\n1. Research the competitors\n2. Design the landing page\n3. Short\n- Write the launch post"
    specs = StructuredDecomposer().decompose("Goal", reply)

    assert [spec.description for spec in specs] == [
        "Research the competitors",
        "Design the landing page",
        "Write the launch post",
    ]
    assert [spec.dependencies for spec in specs] == [(), (0,), (1,)]


def test_parallel_marker_makes_list_items_independent() -> None:
    reply = "These can run in parallel:\n- Research the competitors\n- Design the landing page"
    specs = StructuredDecomposer().decompose("Goal", reply)
    assert [spec.dependencies for spec in specs] == [(), ()]


def test_free_text_yields_no_subtasks() -> None:
    assert StructuredDecomposer().decompose("Goal", "I will just do it myself.") == []


def test_prompt_lists_goal_context_and_agents() -> None:
    developer = AgentConfig(id="dev-1", name="Dev", role=AgentRole.DEVELOPER, description="Writes code")
    prompt = build_decomposition_prompt("Launch the app", {"budget": "10k"}, [developer])
    assert "Goal: Launch the app" in prompt
    assert "- budget: 10k" in prompt
    assert "- dev-1 (developer): Writes code" in prompt

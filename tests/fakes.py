"""Test doubles shared by the test modules."""
from __future__ import annotations

import asyncio
import json
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from a2a.core.models import AgentConfig, AgentRole, AgentTask, InvocationResult

Reply = Union[str, List[str], Callable[[str], str]]


class ScriptedInvoker:
    """``AgentInvoker`` with canned replies per agent id.

    Records every call and the start/end timeline so tests can assert on
    ordering and concurrency.
    """

    def __init__(
        self,
        replies: Optional[Dict[str, Reply]] = None,
        *,
        default: str = "Done.",
        delays: Optional[Dict[str, float]] = None,
        fail_times: Optional[Dict[str, int]] = None,
    ) -> None:
        self.replies: Dict[str, Reply] = dict(replies or {})
        self.default = default
        self.delays: Dict[str, float] = dict(delays or {})
        self.fail_times: Dict[str, int] = dict(fail_times or {})
        self.gates: Dict[str, asyncio.Event] = {}
        self.calls: List[Tuple[str, str]] = []
        self.timeline: List[Tuple[str, str]] = []
        self.active = 0
        self.max_active = 0
        self.started = asyncio.Event()

    async def invoke(self, agent: AgentConfig, prompt: str) -> InvocationResult:
        self.calls.append((agent.id, prompt))
        self.timeline.append(("start", agent.id))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.started.set()
        try:
            gate = self.gates.get(agent.id)
            if gate is not None:
                await gate.wait()
            delay = self.delays.get(agent.id)
            if delay:
                await asyncio.sleep(delay)
            if self.fail_times.get(agent.id, 0) > 0:
                self.fail_times[agent.id] -= 1
                raise RuntimeError(f"{agent.id} backend unavailable")
            return InvocationResult(content=self._reply(agent.id, prompt), usage={"total_tokens": 10})
        finally:
            self.active -= 1
            self.timeline.append(("end", agent.id))

    def _reply(self, agent_id: str, prompt: str) -> str:
        reply = self.replies.get(agent_id, self.default)
        if callable(reply):
            return reply(prompt)
        if isinstance(reply, list):
            return reply.pop(0) if len(reply) > 1 else reply[0]
        return reply

    def calls_for(self, agent_id: str) -> List[str]:
        return [prompt for called, prompt in self.calls if called == agent_id]


def agent_config(
    agent_id: str,
    role: AgentRole,
    *capabilities: str,
    **overrides,
) -> AgentConfig:
    return AgentConfig(
        id=agent_id,
        name=agent_id.replace("-", " ").title(),
        role=role,
        description=f"{role.value} agent",
        capabilities={name: True for name in capabilities},
        **overrides,
    )


def coordinator(agent_id: str = "coordinator-1", **overrides) -> AgentConfig:
    overrides.setdefault("max_concurrent_tasks", 5)
    return agent_config(agent_id, AgentRole.COORDINATOR, "can_analyze", "can_manage_projects", **overrides)


def plan(*descriptions: str, dependencies: Optional[Sequence[Sequence[int]]] = None) -> str:
    """A coordinator reply carrying a JSON task breakdown."""
    tasks = []
    for index, description in enumerate(descriptions):
        task = {"title": description, "description": description}
        if dependencies is not None:
            task["dependencies"] = list(dependencies[index])
        tasks.append(task)
    return json.dumps({"tasks": tasks})


def make_task(
    description: str = "Research the market",
    *,
    agent_id: str = "researcher-1",
    task_id: str = "task-1",
    metadata: Optional[dict] = None,
) -> AgentTask:
    return AgentTask(
        id=task_id,
        conversation_id="conv-1",
        assigned_to_agent_id=agent_id,
        created_by_agent_id="coordinator-1",
        title=description,
        description=description,
        metadata=metadata or {},
    )

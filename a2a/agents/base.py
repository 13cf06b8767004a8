"""Agent definition used by the registry and orchestrator."""
from __future__ import annotations

import asyncio
import dataclasses
import time
import uuid
from collections import deque
from typing import TYPE_CHECKING, Any, Deque, Dict, List, Optional, Protocol, Set

from a2a.agents.parsing import parse_delegation, parse_response
from a2a.core.errors import InvalidStateError, InvocationError, ValidationError
from a2a.core.logging import get_logger
from a2a.core.models import (
    AgentConfig,
    AgentMessage,
    AgentMetrics,
    AgentResponse,
    AgentRole,
    AgentState,
    AgentTask,
    InvocationResult,
    utcnow,
)
from a2a.services.tokens import count_tokens

if TYPE_CHECKING:
    from a2a.agents.roles import TaskLogic

logger = get_logger(name=__name__)

_CAPABILITY_LINES = {
    "can_research": "Research and gather information",
    "can_code": "Write and review code",
    "can_design": "Create designs and mockups",
    "can_analyze": "Analyze data and provide insights",
    "can_write": "Write documentation and content",
    "can_estimate": "Estimate costs and timelines",
    "can_manage_projects": "Manage projects and coordinate teams",
    "can_test_qa": "Test software and ensure quality",
}


class AgentInvoker(Protocol):
    """The single call that performs I/O to a language model."""

    async def invoke(self, agent: AgentConfig, prompt: str) -> InvocationResult:
        ...


class Agent:
    """Capability-bearing unit of work backed by a model call.

    One concrete type for every role; role behaviour lives in the ``TaskLogic``
    chosen at construction. State and metrics are mutated only by the agent.
    """

    HISTORY_LIMIT = 50

    def __init__(self, config: AgentConfig, logic: TaskLogic, invoker: AgentInvoker) -> None:
        self._config = config
        self._logic = logic
        self._invoker = invoker
        self._state = AgentState.IDLE if config.enabled else AgentState.DISABLED
        self._metrics = AgentMetrics(agent_id=config.id)
        self._in_flight: Set[str] = set()
        self._history: Dict[str, Deque[AgentMessage]] = {}
        self.last_error: Optional[str] = None

    @property
    def id(self) -> str:
        return self._config.id

    @property
    def role(self) -> AgentRole:
        return self._config.role

    @property
    def config(self) -> AgentConfig:
        return dataclasses.replace(self._config)

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def metrics(self) -> AgentMetrics:
        return dataclasses.replace(self._metrics)

    @property
    def current_load(self) -> int:
        return len(self._in_flight)

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    def is_available(self) -> bool:
        """Idle, enabled and below its concurrency ceiling."""
        return (
            self._config.enabled
            and self._state is AgentState.IDLE
            and self.current_load < self._config.max_concurrent_tasks
        )

    def has_capacity(self) -> bool:
        """Eligible for new work even if already busy with other tasks."""
        return (
            self._config.enabled
            and self._state not in (AgentState.DISABLED, AgentState.ERROR)
            and self.current_load < self._config.max_concurrent_tasks
        )

    def has_capabilities(self, required: Optional[Dict[str, Any]]) -> bool:
        return self._config.has_capabilities(required)

    def can_handle_task(self, task: AgentTask) -> bool:
        return self._logic.can_handle(self._config, task)

    async def health_check(self) -> bool:
        """Lightweight self-check; does not call the model."""
        return self._config.enabled and self._state is not AgentState.ERROR

    async def invoke(self, prompt: str) -> InvocationResult:
        """Call the model on behalf of this agent, normalising failures."""
        try:
            result = await self._invoker.invoke(self._config, prompt)
        except InvocationError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise InvocationError(f"Agent {self.id} invocation failed: {exc}") from exc

        tokens = result.usage.get("total_tokens") if result.usage else None
        if tokens is None:
            tokens = count_tokens(prompt) + count_tokens(result.content)
        self._metrics.tokens_used += tokens
        return result

    async def complete(self, prompt: str) -> InvocationResult:
        """Answer a free-form prompt (planning, synthesis, votes, messages).

        Counts toward load and token usage only; task counters and the success
        rate stay reserved for ``execute_task``.
        """
        self._ensure_enabled()
        key = f"prompt:{uuid.uuid4().hex}"
        self._begin(key)
        try:
            return await self.invoke(prompt)
        finally:
            self._finish(key)
            self._metrics.last_active_at = utcnow()

    async def process_message(self, message: AgentMessage) -> AgentResponse:
        """Answer a message from another agent or the user."""
        self._ensure_enabled()
        self._remember(message)
        result = await self.complete(self.build_message_prompt(message))
        return parse_response(self.id, result.content)

    async def execute_task(self, task: AgentTask) -> Dict[str, Any]:
        """Run the role logic for a task and return its output mapping."""
        self._ensure_enabled()
        if not self.can_handle_task(task):
            raise ValidationError(f"Agent {self.id} cannot handle task: {task.title}")

        self._begin(task.id)
        started = time.perf_counter()
        try:
            output = await self._logic.execute(self, task)
        except (asyncio.CancelledError, InvocationError):
            self._record(started, success=False)
            raise
        except Exception as exc:
            self._record(started, success=False)
            self.last_error = str(exc)
            self._state = AgentState.ERROR
            logger.exception("agent_logic_failed", agent_id=self.id, task_id=task.id)
            raise
        finally:
            self._finish(task.id)

        self._record(started, success=True)
        output = dict(output)
        output.setdefault("content", "")
        if "delegate_to" not in output:
            output["delegate_to"] = parse_delegation(str(output["content"]))
        return output

    def abandon_task(self, task_id: str) -> None:
        """Forget an in-flight task whose caller gave up on it (e.g. timeout)."""
        self._finish(task_id)
        if self._state is AgentState.BUSY and not self._in_flight:
            self._state = AgentState.IDLE

    def set_enabled(self, enabled: bool) -> None:
        self._config.enabled = enabled
        if not enabled:
            self._state = AgentState.DISABLED
        elif self._state is AgentState.DISABLED:
            self._state = AgentState.BUSY if self._in_flight else AgentState.IDLE

    def update_config(self, **changes: Any) -> None:
        if "id" in changes and changes["id"] != self._config.id:
            raise ValidationError("Agent id is immutable")
        enabled = changes.pop("enabled", None)
        self._config = dataclasses.replace(self._config, **changes)
        if enabled is not None:
            self.set_enabled(enabled)

    def reset(self) -> None:
        """Return to a fresh idle state, clearing metrics and history."""
        self._in_flight.clear()
        self._history.clear()
        self._metrics = AgentMetrics(agent_id=self.id)
        self.last_error = None
        self._state = AgentState.IDLE if self._config.enabled else AgentState.DISABLED

    def conversation_history(self, conversation_id: str) -> List[AgentMessage]:
        return list(self._history.get(conversation_id, ()))

    def clear_conversation_history(self, conversation_id: str) -> None:
        self._history.pop(conversation_id, None)

    def summary(self) -> str:
        return (
            f"{self._config.name} ({self._config.role.value}): "
            f"{self._metrics.tasks_completed} tasks completed, "
            f"{self._metrics.success_rate:.0%} success rate"
        )

    def build_message_prompt(self, message: AgentMessage) -> str:
        lines = [
            f"You are {self._config.name}, a {self._config.role.value} agent.",
            "",
            f"Your role: {self._config.description}",
            "",
        ]
        history = self.conversation_history(message.conversation_id)
        if len(history) > 1:
            lines.append("Conversation history:")
            for previous in history[-6:-1]:
                lines.append(f"- {previous.from_agent_id}: {previous.content}")
            lines.append("")
        lines.append(f"Current message from {message.from_agent_id}:")
        lines.append(message.content)
        lines.append("")
        lines.append("Your capabilities:")
        for flag, text in _CAPABILITY_LINES.items():
            if self._config.capabilities.get(flag):
                lines.append(f"- {text}")
        lines.append("")
        lines.append(
            "Provide your response. If another agent should continue, add a line "
            "'DELEGATE TO: <agent id or role> - <task>'."
        )
        return "\n".join(lines)

    def _ensure_enabled(self) -> None:
        if not self._config.enabled:
            raise InvalidStateError(f"Agent {self.id} is disabled")

    def _remember(self, message: AgentMessage) -> None:
        history = self._history.setdefault(
            message.conversation_id, deque(maxlen=self.HISTORY_LIMIT)
        )
        history.append(message)

    def _begin(self, key: str) -> None:
        self._in_flight.add(key)
        self._metrics.current_load = len(self._in_flight)
        self._metrics.last_active_at = utcnow()
        if self._state is AgentState.IDLE:
            self._state = AgentState.BUSY

    def _finish(self, key: str) -> None:
        self._in_flight.discard(key)
        self._metrics.current_load = len(self._in_flight)
        if self._state is AgentState.BUSY and not self._in_flight:
            self._state = AgentState.IDLE

    def _record(self, started: float, *, success: bool) -> None:
        duration_ms = (time.perf_counter() - started) * 1000
        metrics = self._metrics
        metrics.total_tasks += 1
        if success:
            metrics.tasks_completed += 1
        else:
            metrics.tasks_failed += 1
        metrics.success_rate = metrics.tasks_completed / metrics.total_tasks
        metrics.average_duration_ms += (duration_ms - metrics.average_duration_ms) / metrics.total_tasks
        metrics.last_active_at = utcnow()

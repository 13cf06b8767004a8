"""Strategy state machine that turns a goal into recorded multi-agent work."""
from __future__ import annotations

import asyncio
import dataclasses
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from a2a.agents.base import Agent
from a2a.core.errors import (
    A2AError,
    AgentTimeoutError,
    InvalidStateError,
    InvocationError,
    NoAgentAvailableError,
    NoCoordinatorError,
    ValidationError,
)
from a2a.core.logging import get_logger
from a2a.core.models import (
    ORCHESTRATOR_ENDPOINT,
    USER_ENDPOINT,
    AgentMessage,
    AgentRole,
    AgentTask,
    CollaborationPattern,
    ConsensusDecision,
    ConversationStatus,
    DelegationRequest,
    InvocationResult,
    OrchestrationRequest,
    OrchestrationResult,
    OrchestrationStatus,
    OrchestrationStrategy,
    TaskOutcome,
    TaskStatus,
    Vote,
)
from a2a.orchestration.conversation import ConversationManager
from a2a.orchestration.decomposition import (
    Decomposer,
    StructuredDecomposer,
    SubtaskSpec,
    build_decomposition_prompt,
)
from a2a.orchestration.registry import AgentRegistry
from a2a.orchestration.routing import resolve_role

logger = get_logger(name=__name__)

_STRATEGY_FIELDS = {f.name for f in dataclasses.fields(OrchestrationStrategy)}
_TITLE_LENGTH = 80
_VOTE = re.compile(r"\b(approve|approved|reject|rejected)\b", re.IGNORECASE)

CANCELLED_REASON = "cancelled"
TIMEOUT_ERROR = "timeout"

# Reply content of a peer turn and the message it forwarded, if any.
_Turn = Tuple[Optional[str], Optional[Tuple[Agent, AgentMessage]]]


def merge_strategy(base: OrchestrationStrategy, overrides: Mapping[str, Any]) -> OrchestrationStrategy:
    """Apply a partial mapping of strategy fields, validating names and values."""
    unknown = set(overrides) - _STRATEGY_FIELDS
    if unknown:
        raise ValidationError(f"Unknown strategy fields: {', '.join(sorted(unknown))}")
    changes = {key: value for key, value in overrides.items() if value is not None}
    if "pattern" in changes:
        try:
            changes["pattern"] = CollaborationPattern(changes["pattern"])
        except ValueError as exc:
            raise ValidationError(f"Unknown collaboration pattern: {changes['pattern']}") from exc
    for key, value in changes.items():
        expected = type(getattr(base, key))
        if key != "pattern" and type(value) is not expected:
            raise ValidationError(f"Strategy field {key} must be {expected.__name__}, got {value!r}")
    strategy = dataclasses.replace(base, **changes)
    if strategy.max_agents < 1:
        raise ValidationError("max_agents must be at least 1")
    if strategy.timeout_ms <= 0:
        raise ValidationError("timeout_ms must be positive")
    if strategy.max_retries < 0 or strategy.max_delegations < 0:
        raise ValidationError("max_retries and max_delegations must not be negative")
    return strategy


def output_content(output: Any) -> str:
    if isinstance(output, Mapping):
        return str(output.get("content", ""))
    return "" if output is None else str(output)


@dataclass(slots=True)
class _Run:
    """Mutable state of one orchestration call."""

    conversation_id: str
    request: OrchestrationRequest
    strategy: OrchestrationStrategy
    coordinator: Agent
    preferred: List[Agent] = field(default_factory=list)
    failure: Optional[str] = None
    final_response: Optional[str] = None
    consensus: Optional[ConsensusDecision] = None
    delegations: int = 0

    @property
    def timeout(self) -> float:
        return self.strategy.timeout_ms / 1000


@dataclass(slots=True)
class _Assignment:
    spec: SubtaskSpec
    agent: Agent
    required_capabilities: Dict[str, Any]


class Orchestrator:
    """Drive a goal through one of five collaboration patterns.

    Every step is written to the ``ConversationManager``; agents are only ever
    referenced through the ``AgentRegistry``.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        conversations: ConversationManager,
        *,
        strategy: Optional[OrchestrationStrategy] = None,
        decomposer: Optional[Decomposer] = None,
    ) -> None:
        self._registry = registry
        self._conversations = conversations
        self._strategy = strategy or OrchestrationStrategy()
        self._decomposer: Decomposer = decomposer or StructuredDecomposer()
        self._running: Set[str] = set()
        self._cancel_requests: Set[str] = set()
        self._counters = {status.value: 0 for status in OrchestrationStatus}
        self._counters["aborted"] = 0

    # -- configuration -------------------------------------------------------

    @property
    def strategy(self) -> OrchestrationStrategy:
        return dataclasses.replace(self._strategy)

    def update_strategy(self, **changes: Any) -> OrchestrationStrategy:
        self._strategy = merge_strategy(self._strategy, changes)
        logger.info("strategy_updated", changes=sorted(changes))
        return self.strategy

    def resolve_strategy(self, request: OrchestrationRequest) -> OrchestrationStrategy:
        overrides = dict(request.strategy)
        if request.max_agents is not None:
            overrides["max_agents"] = request.max_agents
        if request.timeout is not None:
            overrides["timeout_ms"] = request.timeout
        return merge_strategy(self._strategy, overrides)

    def stats(self) -> Dict[str, Any]:
        return {
            "running": len(self._running),
            "total": sum(self._counters.values()),
            **self._counters,
            "pattern": self._strategy.pattern.value,
        }

    def is_running(self, conversation_id: str) -> bool:
        return conversation_id in self._running

    def cancel(self, conversation_id: str) -> bool:
        """Stop dispatching new work for a running orchestration.

        In-flight tasks finish (or time out); pending tasks are cancelled and the
        conversation fails with reason ``"cancelled"``. Returns ``False`` when no
        orchestration is running for the id.
        """
        if conversation_id not in self._running:
            return False
        self._cancel_requests.add(conversation_id)
        logger.info("orchestration_cancel_requested", conversation_id=conversation_id)
        return True

    def get_coordinator_agent(self) -> Agent:
        """An enabled coordinator, preferring one that is currently available."""
        coordinators = [
            agent for agent in self._registry.agents_by_role(AgentRole.COORDINATOR) if agent.has_capacity()
        ]
        if not coordinators:
            coordinators = [
                agent for agent in self._registry.agents_by_role(AgentRole.COORDINATOR) if agent.enabled
            ]
        if not coordinators:
            raise NoCoordinatorError("No coordinator agent is registered and enabled")
        for agent in coordinators:
            if agent.is_available():
                return agent
        return coordinators[0]

    # -- entry point ---------------------------------------------------------

    async def orchestrate(self, request: OrchestrationRequest) -> OrchestrationResult:
        started = time.perf_counter()
        strategy = self.resolve_strategy(request)
        conversation = self._conversations.create_conversation(
            request.user_id,
            request.goal,
            project_id=request.project_id,
            metadata={
                "pattern": strategy.pattern.value,
                "strategy": _strategy_dict(strategy),
                "context": dict(request.context),
                "preferred_agents": list(request.preferred_agents),
                "required_capabilities": dict(request.required_capabilities),
            },
        )
        cid = conversation.id
        self._running.add(cid)
        logger.info("orchestration_started", conversation_id=cid, pattern=strategy.pattern.value)

        try:
            try:
                coordinator = self.get_coordinator_agent()
            except NoCoordinatorError as exc:
                self._abort(cid, str(exc))
                exc.conversation_id = cid
                raise

            run = _Run(conversation_id=cid, request=request, strategy=strategy, coordinator=coordinator)
            run.preferred = self._validate_preferred(run)

            if strategy.pattern is CollaborationPattern.PEER_TO_PEER:
                await self._run_peer_to_peer(run)
            else:
                specs = await self._decompose(run)
                assignments = self._plan(run, specs)
                tasks = self._record_tasks(run, assignments)
                if strategy.pattern is CollaborationPattern.SEQUENTIAL:
                    await self._run_sequential(run, tasks)
                else:
                    await self._run_waves(run, tasks)
                    if strategy.pattern is CollaborationPattern.HIERARCHICAL:
                        await self._synthesize(run)

            result = self._finish(run, started)
        except BaseException as exc:
            if self._is_active(cid):
                reason = CANCELLED_REASON if isinstance(exc, asyncio.CancelledError) else f"internal error: {exc}"
                self._cancel_pending(cid)
                self._conversations.fail_conversation(cid, reason)
                logger.exception("orchestration_crashed", conversation_id=cid)
            raise
        finally:
            self._running.discard(cid)
            self._cancel_requests.discard(cid)

        self._counters[result.status.value] += 1
        logger.info(
            "orchestration_finished",
            conversation_id=cid,
            status=result.status.value,
            duration_ms=round(result.duration_ms, 2),
        )
        return result

    # -- planning ------------------------------------------------------------

    def _validate_preferred(self, run: _Run) -> List[Agent]:
        """Preferred agents that exist, are enabled and satisfy the request's capabilities."""
        valid: List[Agent] = []
        required = run.request.required_capabilities
        for agent_id in run.request.preferred_agents:
            agent = self._registry.get(agent_id)
            if agent is None:
                reason = f"Preferred agent {agent_id} is not registered"
            elif not agent.enabled:
                reason = f"Preferred agent {agent_id} is disabled"
            elif not agent.has_capabilities(required):
                reason = f"Preferred agent {agent_id} lacks required capabilities"
            else:
                valid.append(agent)
                continue
            self._conversations.record_warning(run.conversation_id, reason, agent_id=agent_id)
        return valid

    async def _decompose(self, run: _Run) -> List[SubtaskSpec]:
        goal = run.request.goal
        fallback = [
            SubtaskSpec(
                title=goal[:_TITLE_LENGTH],
                description=goal,
                required_capabilities=dict(run.request.required_capabilities),
            )
        ]
        if not run.strategy.decompose:
            return fallback

        coordinator = run.coordinator
        specialists = [
            agent.config for agent in self._registry.all_agents() if agent.enabled and agent.id != coordinator.id
        ]
        prompt = build_decomposition_prompt(goal, run.request.context, specialists)
        try:
            reply = await _complete(coordinator, prompt, run.timeout)
        except AgentTimeoutError:
            self._conversations.record_warning(
                run.conversation_id, "Decomposition timed out; running the goal as one task", agent_id=coordinator.id
            )
            return fallback
        except (InvocationError, InvalidStateError) as exc:
            self._conversations.record_warning(
                run.conversation_id,
                "Decomposition failed; running the goal as one task",
                agent_id=coordinator.id,
                error=str(exc),
            )
            return fallback

        self._conversations.add_message(
            run.conversation_id,
            coordinator.id,
            ORCHESTRATOR_ENDPOINT,
            reply.content,
            metadata={"kind": "decomposition"},
        )
        try:
            specs = self._decomposer.decompose(goal, reply.content)
        except Exception as exc:  # noqa: BLE001
            logger.exception("decomposition_parse_failed", conversation_id=run.conversation_id)
            self._conversations.record_warning(
                run.conversation_id,
                "Decomposition could not be parsed; running the goal as one task",
                agent_id=coordinator.id,
                error=str(exc),
            )
            return fallback
        if not specs:
            self._conversations.record_warning(
                run.conversation_id,
                "Decomposition produced no subtasks; running the goal as one task",
                agent_id=coordinator.id,
            )
            return fallback
        return specs

    def _plan(self, run: _Run, specs: Sequence[SubtaskSpec]) -> List[_Assignment]:
        """Resolve an agent for every subtask before anything is recorded."""
        if run.strategy.pattern is CollaborationPattern.ROUND_ROBIN:
            assignments = self._plan_round_robin(run, specs)
        else:
            assignments = []
            planned: Dict[str, int] = {}
            missing: List[str] = []
            for spec in specs:
                required = {**run.request.required_capabilities, **spec.required_capabilities}
                agent = self._select_agent(run, spec, required, planned)
                if agent is None:
                    missing.append(spec.title)
                    continue
                planned[agent.id] = planned.get(agent.id, 0) + 1
                assignments.append(_Assignment(spec=spec, agent=agent, required_capabilities=required))
            if missing:
                self._no_agent(run, missing)

        logger.info(
            "orchestration_planned",
            conversation_id=run.conversation_id,
            assignments=[assignment.agent.id for assignment in assignments],
        )
        return assignments

    def _select_agent(
        self,
        run: _Run,
        spec: SubtaskSpec,
        required: Mapping[str, Any],
        planned: Mapping[str, int],
    ) -> Optional[Agent]:
        def least_loaded(agents: Sequence[Agent]) -> Optional[Agent]:
            eligible = [agent for agent in agents if agent.has_capacity() and agent.has_capabilities(dict(required))]
            if not eligible:
                return None
            return min(eligible, key=lambda agent: agent.current_load + planned.get(agent.id, 0))

        agent = least_loaded(run.preferred)
        if agent is None and spec.role is not None:
            agent = least_loaded(self._registry.agents_by_role(spec.role))
        if agent is None:
            agent = self._registry.best_agent_for_task(spec.description, required, planned_load=planned)
        return agent

    def _plan_round_robin(self, run: _Run, specs: Sequence[SubtaskSpec]) -> List[_Assignment]:
        available = self._registry.available_agents()
        pool = [agent for agent in available if agent.role is not AgentRole.COORDINATOR] or available
        if not pool:
            self._no_agent(run, [spec.title for spec in specs])

        assignments = []
        missing = []
        for index, spec in enumerate(specs):
            required = {**run.request.required_capabilities, **spec.required_capabilities}
            rotation = pool[index % len(pool):] + pool[: index % len(pool)]
            agent = next((candidate for candidate in rotation if candidate.has_capabilities(required)), None)
            if agent is None:
                missing.append(spec.title)
            else:
                assignments.append(_Assignment(spec=spec, agent=agent, required_capabilities=required))
        if missing:
            self._no_agent(run, missing)
        return assignments

    def _no_agent(self, run: _Run, titles: Sequence[str]) -> None:
        reason = f"No agent available for: {', '.join(titles)}"
        self._abort(run.conversation_id, reason)
        raise NoAgentAvailableError(reason, conversation_id=run.conversation_id)

    def _record_tasks(self, run: _Run, assignments: Sequence[_Assignment]) -> List[AgentTask]:
        sequential = run.strategy.pattern is CollaborationPattern.SEQUENTIAL
        tasks: List[AgentTask] = []
        for index, assignment in enumerate(assignments):
            dependencies = [tasks[dep].id for dep in assignment.spec.dependencies]
            if sequential and index and tasks[index - 1].id not in dependencies:
                dependencies.append(tasks[index - 1].id)
            tasks.append(
                self._conversations.add_task(
                    run.conversation_id,
                    assignment.agent.id,
                    run.coordinator.id,
                    assignment.spec.title,
                    assignment.spec.description,
                    priority=assignment.spec.priority,
                    dependencies=dependencies,
                    input={"goal": run.request.goal, "context": dict(run.request.context)},
                    metadata={"required_capabilities": assignment.required_capabilities, "index": index},
                )
            )
        return tasks

    # -- dispatch ------------------------------------------------------------

    async def execute_task_with_timeout(self, agent: Agent, task: AgentTask, timeout_ms: int) -> AgentTask:
        """Run one task on ``agent`` and record its terminal status.

        A timeout cancels the agent call, forces the agent back to idle and fails
        the task with error ``"timeout"``. Operational failures never escape.
        """
        cid = task.conversation_id
        self._conversations.update_task_status(cid, task.id, TaskStatus.IN_PROGRESS)
        logger.info("task_dispatched", conversation_id=cid, task_id=task.id, agent_id=agent.id)
        try:
            output = await asyncio.wait_for(agent.execute_task(task), timeout_ms / 1000)
        except asyncio.TimeoutError:
            agent.abandon_task(task.id)
            logger.warning("task_timeout", conversation_id=cid, task_id=task.id, agent_id=agent.id, timeout_ms=timeout_ms)
            return self._conversations.update_task_status(cid, task.id, TaskStatus.FAILED, error=TIMEOUT_ERROR)
        except (InvocationError, ValidationError, InvalidStateError) as exc:
            logger.warning("task_failed", conversation_id=cid, task_id=task.id, agent_id=agent.id, error=str(exc))
            return self._conversations.update_task_status(cid, task.id, TaskStatus.FAILED, error=str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("task_crashed", conversation_id=cid, task_id=task.id, agent_id=agent.id)
            return self._conversations.update_task_status(cid, task.id, TaskStatus.FAILED, error=str(exc))
        return self._conversations.update_task_status(cid, task.id, TaskStatus.COMPLETED, output=output)

    async def _run_task(self, run: _Run, task: AgentTask, *, handoff_from: Optional[str]) -> AgentTask:
        """Dispatch with retries; a hand-off is recorded for every dispatch."""
        retries = 0
        while True:
            agent = self._registry.get(task.assigned_to_agent_id)
            if agent is None:
                self._conversations.update_task_status(run.conversation_id, task.id, TaskStatus.IN_PROGRESS)
                return self._conversations.update_task_status(
                    run.conversation_id,
                    task.id,
                    TaskStatus.FAILED,
                    error=f"Agent {task.assigned_to_agent_id} is no longer registered",
                )
            if handoff_from is not None:
                self._conversations.record_handoff(
                    run.conversation_id,
                    handoff_from,
                    agent.id,
                    reason="Retry after failure" if retries else "Task assignment",
                    context=task.description,
                    task_id=task.id,
                )
            result = await self.execute_task_with_timeout(agent, self._with_inputs(run, task), run.strategy.timeout_ms)
            if (
                result.status is TaskStatus.COMPLETED
                or not run.strategy.retry_on_failure
                or retries >= run.strategy.max_retries
                or self._should_stop(run)
            ):
                return result
            retries += 1
            target = agent
            if not agent.has_capacity():
                target = self._registry.best_agent_for_task(
                    task.description, task.metadata.get("required_capabilities")
                ) or agent
            logger.info("task_retry", conversation_id=run.conversation_id, task_id=task.id, attempt=retries)
            task = self._conversations.requeue_task(run.conversation_id, task.id, assigned_to_agent_id=target.id)

    def _with_inputs(self, run: _Run, task: AgentTask) -> AgentTask:
        """Copy of ``task`` whose input carries upstream outputs."""
        payload: Dict[str, Any] = dict(task.input) if isinstance(task.input, Mapping) else {"input": task.input}
        if task.dependencies:
            payload["dependency_outputs"] = [
                _output_ref(self._conversations.get_task(run.conversation_id, dep)) for dep in task.dependencies
            ]
        if run.strategy.pattern is CollaborationPattern.SEQUENTIAL:
            payload["previous_outputs"] = [
                _output_ref(previous)
                for previous in self._conversations.get_completed_tasks(run.conversation_id)
                if previous.id != task.id
            ]
        return dataclasses.replace(task, input=payload)

    async def _run_sequential(self, run: _Run, tasks: Sequence[AgentTask]) -> None:
        for task in tasks:
            if self._should_stop(run):
                break
            result = await self._run_task(run, task, handoff_from=run.coordinator.id)
            if result.status is not TaskStatus.COMPLETED:
                run.failure = f"Task '{result.title}' failed: {result.error}"
                break
            self._report_result(run, result)
        completed = self._conversations.get_completed_tasks(run.conversation_id)
        if completed and not run.failure:
            run.final_response = output_content(completed[-1].output)

    async def _run_waves(self, run: _Run, tasks: Sequence[AgentTask]) -> None:
        """Dispatch ready tasks in waves under a ``max_agents`` semaphore."""
        semaphore = asyncio.Semaphore(run.strategy.max_agents)
        cid = run.conversation_id

        async def guarded(task: AgentTask) -> None:
            async with semaphore:
                if self._should_stop(run):
                    return
                result = await self._run_task(run, task, handoff_from=run.coordinator.id)
            if result.status is TaskStatus.COMPLETED:
                self._report_result(run, result)
            elif run.strategy.stop_on_error and run.failure is None:
                run.failure = f"Task '{result.title}' failed: {result.error}"

        wave = 0
        while not self._should_stop(run):
            ready, blocked = self._ready_tasks(cid)
            for task in blocked:
                self._conversations.update_task_status(cid, task.id, TaskStatus.CANCELLED)
            if not ready:
                break
            wave += 1
            logger.info("wave_dispatched", conversation_id=cid, wave=wave, tasks=len(ready))
            await asyncio.gather(*(guarded(task) for task in ready))

        if run.strategy.pattern is not CollaborationPattern.HIERARCHICAL:
            completed = self._conversations.get_completed_tasks(cid)
            if completed:
                run.final_response = "\n\n".join(
                    f"## {task.title}\n{output_content(task.output)}" for task in completed
                )

    def _ready_tasks(self, conversation_id: str) -> Tuple[List[AgentTask], List[AgentTask]]:
        """Pending tasks split into runnable ones and ones whose dependencies can never complete."""
        tasks = {task.id: task for task in self._conversations.get_tasks(conversation_id)}
        ready, blocked = [], []
        for task in tasks.values():
            if task.status is not TaskStatus.PENDING:
                continue
            statuses = [tasks[dep].status for dep in task.dependencies]
            if all(status is TaskStatus.COMPLETED for status in statuses):
                ready.append(task)
            elif any(status in (TaskStatus.FAILED, TaskStatus.CANCELLED) for status in statuses):
                blocked.append(task)
        return ready, blocked

    def _report_result(self, run: _Run, task: AgentTask) -> None:
        """Message a completed task's output back to its creator; delegate when hierarchical."""
        cid = run.conversation_id
        content = output_content(task.output)
        self._conversations.add_message(
            cid,
            task.assigned_to_agent_id,
            task.created_by_agent_id,
            content,
            metadata={"kind": "result", "task_id": task.id},
        )
        if run.strategy.pattern is not CollaborationPattern.HIERARCHICAL:
            return

        self._conversations.record_handoff(
            cid,
            task.assigned_to_agent_id,
            run.coordinator.id,
            reason="Result returned to coordinator",
            context=content[:500],
            task_id=task.id,
        )
        delegation = task.output.get("delegate_to") if isinstance(task.output, Mapping) else None
        if isinstance(delegation, DelegationRequest):
            self._delegate(run, task, delegation)

    def _delegate(self, run: _Run, origin: AgentTask, delegation: DelegationRequest) -> None:
        """Route a specialist's delegation request through the coordinator."""
        cid = run.conversation_id
        if run.delegations >= run.strategy.max_delegations:
            self._conversations.record_warning(
                cid, "Delegation limit reached", agent_id=origin.assigned_to_agent_id, task_id=origin.id
            )
            return
        target = self._resolve_target(delegation.agent_id, exclude=origin.assigned_to_agent_id)
        if target is None:
            self._conversations.record_warning(
                cid,
                f"Delegation target {delegation.agent_id} is not available",
                agent_id=origin.assigned_to_agent_id,
                task_id=origin.id,
            )
            return

        run.delegations += 1
        self._conversations.record_handoff(
            cid,
            origin.assigned_to_agent_id,
            run.coordinator.id,
            reason=f"Delegation requested to {target.id}",
            context=delegation.task,
            task_id=origin.id,
        )
        self._conversations.add_task(
            cid,
            target.id,
            run.coordinator.id,
            delegation.task[:_TITLE_LENGTH],
            delegation.task,
            dependencies=[origin.id],
            input={"goal": run.request.goal, "context": dict(run.request.context)},
            metadata={"delegated_by": origin.assigned_to_agent_id, "reason": delegation.reason},
        )

    def _resolve_target(self, reference: str, *, exclude: Optional[str] = None) -> Optional[Agent]:
        """An agent named by id or by role, with spare capacity."""
        agent = self._registry.get(reference)
        if agent is None:
            role = resolve_role(reference)
            if role is not None:
                candidates = [a for a in self._registry.agents_by_role(role) if a.has_capacity() and a.id != exclude]
                agent = min(candidates, key=lambda a: a.current_load) if candidates else None
        if agent is None or agent.id == exclude or not agent.has_capacity():
            return None
        return agent

    async def _synthesize(self, run: _Run) -> None:
        cid = run.conversation_id
        completed = self._conversations.get_completed_tasks(cid)
        if not completed or self._should_stop(run):
            return
        sections = "\n\n".join(
            f"### {task.title} ({task.assigned_to_agent_id})\n{output_content(task.output)}" for task in completed
        )
        prompt = (
            f"Synthesize a final response for the goal below from the specialist results.\n\n"
            f"Goal: {run.request.goal}\n\nResults:\n{sections}"
        )
        try:
            reply = await _complete(run.coordinator, prompt, run.timeout)
        except (InvocationError, InvalidStateError) as exc:
            self._conversations.record_warning(cid, "Final synthesis failed", agent_id=run.coordinator.id, error=str(exc))
            return
        run.final_response = reply.content
        self._conversations.add_message(
            cid, run.coordinator.id, USER_ENDPOINT, reply.content, metadata={"kind": "synthesis"}
        )

    # -- peer to peer --------------------------------------------------------

    async def _run_peer_to_peer(self, run: _Run) -> None:
        """Seed the goal, then let agents message and hand off to each other in rounds."""
        cid = run.conversation_id
        request = run.request
        required = dict(request.required_capabilities)
        seed = next((agent for agent in run.preferred if agent.has_capacity()), None)
        seed = seed or self._registry.best_agent_for_task(request.goal, required)
        if seed is None:
            self._no_agent(run, [request.goal[:_TITLE_LENGTH]])

        message = self._conversations.add_message(cid, ORCHESTRATOR_ENDPOINT, seed.id, request.goal)
        inbox: List[Tuple[Agent, AgentMessage]] = [(seed, message)]
        participants: Dict[str, Agent] = {}
        semaphore = asyncio.Semaphore(run.strategy.max_agents)
        rounds = 0
        answered = False

        async def turn(agent: Agent, incoming: AgentMessage) -> _Turn:
            async with semaphore:
                if self._should_stop(run):
                    return None, None
                participants.setdefault(agent.id, agent)
                task = self._conversations.add_task(
                    cid,
                    agent.id,
                    incoming.from_agent_id,
                    f"Round {rounds}: {incoming.content}"[:_TITLE_LENGTH],
                    incoming.content,
                    input={"goal": request.goal, "context": dict(request.context), "message_id": incoming.id},
                    metadata={"round": rounds, "required_capabilities": required},
                )
                result = await self._run_task(run, task, handoff_from=None)
            if result.status is not TaskStatus.COMPLETED:
                if run.strategy.stop_on_error and run.failure is None:
                    run.failure = f"Turn of {agent.id} failed: {result.error}"
                return None, None

            content = output_content(result.output)
            delegation = result.output.get("delegate_to") if isinstance(result.output, Mapping) else None
            target = None
            if isinstance(delegation, DelegationRequest):
                target = self._resolve_target(delegation.agent_id, exclude=agent.id)
                if target is None:
                    self._conversations.record_warning(
                        cid, f"Delegation target {delegation.agent_id} is not available", agent_id=agent.id
                    )
            if target is None:
                self._conversations.add_message(
                    cid, agent.id, incoming.from_agent_id, content, parent_message_id=incoming.id,
                    metadata={"kind": "result", "task_id": result.id},
                )
                return content, None

            forwarded = self._conversations.add_message(
                cid, agent.id, target.id, delegation.task, parent_message_id=incoming.id,
                metadata={"kind": "delegation", "task_id": result.id},
            )
            self._conversations.record_handoff(
                cid, agent.id, target.id, reason=delegation.reason, context=delegation.task, task_id=result.id
            )
            return content, (target, forwarded)

        while inbox and not self._should_stop(run):
            if rounds >= run.strategy.max_agents:
                self._conversations.record_warning(cid, "Round limit reached", pending_messages=len(inbox))
                break
            rounds += 1
            logger.info("peer_round_started", conversation_id=cid, round=rounds, agents=len(inbox))
            results = await asyncio.gather(*(turn(agent, incoming) for agent, incoming in inbox))
            # Inbox order; a turn that answered outranks one that only delegated.
            for content, forwarded in results:
                if content is not None and (forwarded is None or not answered):
                    run.final_response = content
                    answered = answered or forwarded is None
            inbox = [forwarded for _, forwarded in results if forwarded is not None]

        if run.strategy.require_consensus and run.final_response and not self._should_stop(run):
            await self._vote(run, list(participants.values()))

    async def _vote(self, run: _Run, voters: Sequence[Agent]) -> None:
        """Majority vote on the final answer; anything but approval fails the run."""
        cid = run.conversation_id
        question = f"Does this answer satisfy the goal '{run.request.goal}'?\n\n{run.final_response}"
        prompt = f"{question}\n\nReply with APPROVE or REJECT on the first line, then your reasoning."

        async def ballot(agent: Agent) -> Vote:
            try:
                reply = await _complete(agent, prompt, run.timeout)
            except (InvocationError, InvalidStateError) as exc:
                return Vote(agent_id=agent.id, vote="abstain", reasoning=str(exc))
            match = _VOTE.search(reply.content)
            choice = "abstain" if match is None else ("approve" if match.group(1).lower().startswith("approve") else "reject")
            self._conversations.add_message(
                cid, agent.id, ORCHESTRATOR_ENDPOINT, reply.content, metadata={"kind": "vote", "vote": choice}
            )
            return Vote(agent_id=agent.id, vote=choice, reasoning=reply.content)

        votes = tuple(await asyncio.gather(*(ballot(agent) for agent in voters)))
        approvals = sum(1 for vote in votes if vote.vote == "approve")
        rejections = sum(1 for vote in votes if vote.vote == "reject")
        if approvals * 2 > len(votes):
            decision = "approved"
        elif rejections * 2 > len(votes):
            decision = "rejected"
        else:
            decision = "no_consensus"
        run.consensus = ConsensusDecision(
            question=question, votes=votes, final_decision=decision, consensus=decision != "no_consensus"
        )
        self._conversations.update_metadata(cid, consensus=decision, votes={v.agent_id: v.vote for v in votes})
        if decision != "approved":
            run.failure = f"Consensus not reached: {decision}"

    # -- completion ----------------------------------------------------------

    def _should_stop(self, run: _Run) -> bool:
        return run.failure is not None or run.conversation_id in self._cancel_requests

    def _finish(self, run: _Run, started: float) -> OrchestrationResult:
        cid = run.conversation_id
        if cid in self._cancel_requests:
            run.failure = CANCELLED_REASON
        self._cancel_pending(cid)

        tasks = self._conversations.get_tasks(cid)
        completed = [task for task in tasks if task.status is TaskStatus.COMPLETED]
        if run.failure is None and tasks and not completed:
            run.failure = "All tasks failed"

        if run.failure is not None:
            conversation = self._conversations.fail_conversation(cid, run.failure)
        else:
            conversation = self._conversations.complete_conversation(cid)

        if conversation.status is ConversationStatus.COMPLETED and len(completed) == len(tasks):
            status = OrchestrationStatus.COMPLETED
        elif completed:
            status = OrchestrationStatus.PARTIAL
        else:
            status = OrchestrationStatus.FAILED

        return OrchestrationResult(
            conversation_id=cid,
            status=status,
            outputs=tuple(
                TaskOutcome(
                    task_id=task.id,
                    title=task.title,
                    agent_id=task.assigned_to_agent_id,
                    status=task.status,
                    output=task.output,
                    error=task.error,
                )
                for task in tasks
            ),
            participating_agents=conversation.participants,
            duration_ms=(time.perf_counter() - started) * 1000,
            pattern=run.strategy.pattern,
            final_response=run.final_response,
            summary=self._conversations.generate_summary(cid),
            consensus=run.consensus,
            error=run.failure,
        )

    def _cancel_pending(self, conversation_id: str) -> None:
        for task in self._conversations.get_pending_tasks(conversation_id):
            self._conversations.update_task_status(conversation_id, task.id, TaskStatus.CANCELLED)

    def _abort(self, conversation_id: str, reason: str) -> None:
        self._cancel_pending(conversation_id)
        self._conversations.fail_conversation(conversation_id, reason)
        self._counters["aborted"] += 1
        logger.warning("orchestration_aborted", conversation_id=conversation_id, reason=reason)

    def _is_active(self, conversation_id: str) -> bool:
        try:
            return not self._conversations.get_conversation(conversation_id).is_terminal
        except A2AError:
            return False


async def _complete(agent: Agent, prompt: str, timeout: float) -> InvocationResult:
    """Free-form agent call bounded by ``timeout`` seconds."""
    try:
        return await asyncio.wait_for(agent.complete(prompt), timeout)
    except asyncio.TimeoutError as exc:
        raise AgentTimeoutError(f"Agent {agent.id} did not answer within {timeout:g} s") from exc


def _strategy_dict(strategy: OrchestrationStrategy) -> Dict[str, Any]:
    values = dataclasses.asdict(strategy)
    values["pattern"] = strategy.pattern.value
    return values


def _output_ref(task: AgentTask) -> Dict[str, Any]:
    return {
        "task_id": task.id,
        "title": task.title,
        "agent_id": task.assigned_to_agent_id,
        "content": output_content(task.output),
    }

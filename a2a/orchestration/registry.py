"""Directory of registered agents and capability-based routing."""
from __future__ import annotations

import dataclasses
import math
import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from a2a.agents.base import Agent, AgentInvoker
from a2a.agents.roles import TaskLogic, default_role_catalog
from a2a.core.errors import AgentNotFoundError, DuplicateAgentError, ValidationError
from a2a.core.logging import get_logger
from a2a.core.models import AgentConfig, AgentMetrics, AgentRole, AgentState, TaskRoutingRule
from a2a.orchestration.routing import DEFAULT_ROUTING_RULES, guess_role

logger = get_logger(name=__name__)


class AgentRegistry:
    """Single source of truth for which agents exist and what they can do."""

    def __init__(
        self,
        invoker: AgentInvoker,
        *,
        catalog: Optional[Mapping[AgentRole, TaskLogic]] = None,
        rules: Optional[Iterable[TaskRoutingRule]] = None,
    ) -> None:
        self._invoker = invoker
        self._catalog: Dict[AgentRole, TaskLogic] = dict(catalog) if catalog is not None else default_role_catalog()
        self._rules: List[TaskRoutingRule] = list(DEFAULT_ROUTING_RULES if rules is None else rules)
        self._agents: Dict[str, Agent] = {}
        self._order: Dict[str, int] = {}
        self._sequence = 0
        self._lock = threading.RLock()

    # -- lifecycle -----------------------------------------------------------

    def register(self, config: AgentConfig, logic: Optional[TaskLogic] = None) -> Agent:
        """Construct and store an agent. Raises ``DuplicateAgentError`` on id reuse."""
        if not config.id:
            raise ValidationError("Agent id must not be empty")
        if config.max_concurrent_tasks < 1:
            raise ValidationError("max_concurrent_tasks must be at least 1")
        logic = logic or self._catalog.get(config.role)
        if logic is None:
            raise ValidationError(f"No task logic registered for role '{config.role.value}'")

        owned = dataclasses.replace(
            config,
            capabilities=dict(config.capabilities),
            specializations=list(config.specializations),
            metadata=dict(config.metadata),
        )
        with self._lock:
            if config.id in self._agents:
                raise DuplicateAgentError(f"Agent {config.id} is already registered")
            agent = Agent(owned, logic, self._invoker)
            self._agents[config.id] = agent
            self._order[config.id] = self._sequence
            self._sequence += 1

        logger.info("agent_registered", agent_id=config.id, role=config.role.value)
        return agent

    def unregister(self, agent_id: str) -> None:
        with self._lock:
            if agent_id not in self._agents:
                raise AgentNotFoundError(f"Agent {agent_id} not found")
            del self._agents[agent_id]
            del self._order[agent_id]
        logger.info("agent_unregistered", agent_id=agent_id)

    def clear(self) -> None:
        with self._lock:
            self._agents.clear()
            self._order.clear()

    def reset_all(self) -> None:
        for agent in self.all_agents():
            agent.reset()

    def set_agent_enabled(self, agent_id: str, enabled: bool) -> Agent:
        agent = self.require(agent_id)
        agent.set_enabled(enabled)
        logger.info("agent_enabled_changed", agent_id=agent_id, enabled=enabled)
        return agent

    # -- lookups -------------------------------------------------------------

    def get(self, agent_id: str) -> Optional[Agent]:
        with self._lock:
            return self._agents.get(agent_id)

    def require(self, agent_id: str) -> Agent:
        agent = self.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(f"Agent {agent_id} not found")
        return agent

    def has(self, agent_id: str) -> bool:
        with self._lock:
            return agent_id in self._agents

    def count(self) -> int:
        with self._lock:
            return len(self._agents)

    def all_agents(self) -> List[Agent]:
        """Agents in registration order."""
        with self._lock:
            return sorted(self._agents.values(), key=lambda agent: self._order[agent.id])

    def agents_by_role(self, role: AgentRole) -> List[Agent]:
        return [agent for agent in self.all_agents() if agent.role is role]

    def agents_with_capability(self, capability: str) -> List[Agent]:
        return [agent for agent in self.all_agents() if agent.has_capabilities({capability: True})]

    def available_agents(self) -> List[Agent]:
        """Idle, enabled agents in registration order."""
        return [agent for agent in self.all_agents() if agent.is_available()]

    def least_loaded_agent(self) -> Optional[Agent]:
        candidates = [agent for agent in self.all_agents() if agent.has_capacity()]
        return min(candidates, key=lambda agent: agent.current_load) if candidates else None

    def most_experienced_agent(self, role: Optional[AgentRole] = None) -> Optional[Agent]:
        """Highest ``success_rate * (1 + log10(total_tasks + 1))`` among enabled agents."""
        candidates = [
            agent
            for agent in self.all_agents()
            if agent.enabled and (role is None or agent.role is role)
        ]
        if not candidates:
            return None

        def experience(agent: Agent) -> float:
            metrics = agent.metrics
            return metrics.success_rate * (1 + math.log10(metrics.total_tasks + 1))

        best = candidates[0]
        for agent in candidates[1:]:
            if experience(agent) > experience(best):
                best = agent
        return best

    # -- routing -------------------------------------------------------------

    def add_routing_rule(self, rule: TaskRoutingRule) -> None:
        with self._lock:
            self._rules.append(rule)

    def routing_rules(self) -> List[TaskRoutingRule]:
        with self._lock:
            return list(self._rules)

    def best_agent_for_task(
        self,
        description: str,
        required_capabilities: Optional[Mapping[str, Any]] = None,
        *,
        planned_load: Optional[Mapping[str, int]] = None,
    ) -> Optional[Agent]:
        """Pick an agent for ``description`` or ``None`` when nothing qualifies.

        Candidates are enabled agents, not in error, with spare capacity and every
        required capability. The first matching rule that yields candidates wins,
        then a role named in the description, then any candidate (non-coordinators
        first). ``planned_load`` adds work already promised to an agent but not yet
        started, so one planning pass spreads subtasks.
        """
        required = dict(required_capabilities or {})
        candidates = [
            agent
            for agent in self.all_agents()
            if agent.has_capacity() and agent.has_capabilities(required)
        ]
        if not candidates:
            return None

        for rule in self.routing_rules():
            if not rule.matches(description, required):
                continue
            preferred = [
                agent
                for agent in candidates
                if agent.role in rule.preferred_roles or agent.id in rule.preferred_agent_ids
            ]
            if preferred:
                return self._pick(preferred, planned_load)

        role = guess_role(description)
        if role is not None:
            named = [agent for agent in candidates if agent.role is role]
            if named:
                return self._pick(named, planned_load)

        specialists = [agent for agent in candidates if agent.role is not AgentRole.COORDINATOR]
        return self._pick(specialists or candidates, planned_load)

    def _pick(self, agents: Sequence[Agent], planned_load: Optional[Mapping[str, int]]) -> Agent:
        planned = planned_load or {}

        def rank(agent: Agent) -> Tuple[int, float, int]:
            load = agent.current_load + planned.get(agent.id, 0)
            return (load, -agent.metrics.success_rate, self._order.get(agent.id, 0))

        return min(agents, key=rank)

    # -- introspection -------------------------------------------------------

    async def health_check(self) -> Dict[str, bool]:
        """Per-agent health; a failing check maps to ``False`` instead of raising."""
        results: Dict[str, bool] = {}
        for agent in self.all_agents():
            try:
                results[agent.id] = bool(await agent.health_check())
            except Exception:  # noqa: BLE001
                logger.exception("agent_health_check_failed", agent_id=agent.id)
                results[agent.id] = False
        return results

    def all_metrics(self) -> Dict[str, AgentMetrics]:
        return {agent.id: agent.metrics for agent in self.all_agents()}

    def entries(self) -> List[Tuple[AgentConfig, AgentState, AgentMetrics]]:
        """Snapshot of every agent's config, state and metrics."""
        return [(agent.config, agent.state, agent.metrics) for agent in self.all_agents()]

    def stats(self) -> Dict[str, Any]:
        agents = self.all_agents()
        by_role: Dict[str, int] = {}
        for agent in agents:
            by_role[agent.role.value] = by_role.get(agent.role.value, 0) + 1
        metrics = [agent.metrics for agent in agents]
        return {
            "total_agents": len(agents),
            "available_agents": sum(1 for agent in agents if agent.is_available()),
            "busy_agents": sum(1 for agent in agents if agent.state is AgentState.BUSY),
            "agents_by_role": by_role,
            "total_tasks_completed": sum(m.tasks_completed for m in metrics),
            "average_success_rate": (sum(m.success_rate for m in metrics) / len(metrics)) if metrics else 0.0,
        }

"""Service facade: lifecycle, default roster and the operations exposed over HTTP."""
from __future__ import annotations

import dataclasses
from typing import Any, Dict, List, Optional, Sequence

from a2a.agents.base import Agent
from a2a.agents.defaults import default_agent_configs
from a2a.agents.roles import TaskLogic
from a2a.config import A2ASettings
from a2a.core.errors import ServiceUnavailableError
from a2a.core.logging import get_logger
from a2a.core.models import (
    AgentConfig,
    AgentMetrics,
    AgentRole,
    ConversationContext,
    ConversationEvent,
    ConversationSummary,
    OrchestrationRequest,
    OrchestrationResult,
    OrchestrationStrategy,
)
from a2a.orchestration.conversation import ConversationManager
from a2a.orchestration.orchestrator import Orchestrator
from a2a.orchestration.registry import AgentRegistry

logger = get_logger(name=__name__)


class A2AService:
    """Entry point wrapping the registry, the ledger and the orchestrator."""

    def __init__(
        self,
        settings: A2ASettings,
        registry: AgentRegistry,
        conversations: ConversationManager,
        orchestrator: Orchestrator,
        *,
        default_agents: Optional[Sequence[AgentConfig]] = None,
    ) -> None:
        self._settings = settings
        self._registry = registry
        self._conversations = conversations
        self._orchestrator = orchestrator
        self._default_agents = list(
            default_agents if default_agents is not None else default_agent_configs(settings.default_model)
        )
        self._initialized = False

    @property
    def settings(self) -> A2ASettings:
        return self._settings

    @property
    def registry(self) -> AgentRegistry:
        return self._registry

    @property
    def conversations(self) -> ConversationManager:
        return self._conversations

    @property
    def orchestrator(self) -> Orchestrator:
        return self._orchestrator

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    def initialize(self) -> None:
        """Register the default roster once; agents already present are kept."""
        if self._initialized:
            return
        for config in self._default_agents:
            if not self._registry.has(config.id):
                self._registry.register(config)
        self._initialized = True
        logger.info("service_initialized", agents=self._registry.count())

    def reset(self) -> None:
        """Reset agent state and forget every conversation."""
        self._registry.reset_all()
        self._conversations.clear()
        self._initialized = False
        logger.info("service_reset")

    def update_settings(self, **changes: Any) -> A2ASettings:
        self._settings = dataclasses.replace(self._settings, **changes)
        logger.info("service_settings_updated", changes=sorted(changes))
        return self._settings

    async def execute(self, request: OrchestrationRequest) -> OrchestrationResult:
        if not self._settings.enabled:
            raise ServiceUnavailableError("A2A service is disabled")
        if not self._initialized:
            self.initialize()
        running = self._orchestrator.stats()["running"]
        if running >= self._settings.max_concurrent_conversations:
            raise ServiceUnavailableError("Maximum concurrent conversations reached")

        result = await self._orchestrator.orchestrate(request)
        logger.info(
            "service_execution_finished",
            conversation_id=result.conversation_id,
            status=result.status.value,
            agents=len(result.participating_agents),
        )
        return result

    def cancel(self, conversation_id: str) -> bool:
        return self._orchestrator.cancel(conversation_id)

    # -- agents --------------------------------------------------------------

    def register_agent(self, config: AgentConfig, logic: Optional[TaskLogic] = None) -> Agent:
        return self._registry.register(config, logic)

    def unregister_agent(self, agent_id: str) -> None:
        self._registry.unregister(agent_id)

    def set_agent_enabled(self, agent_id: str, enabled: bool) -> Agent:
        return self._registry.set_agent_enabled(agent_id, enabled)

    def get_agents(self) -> List[Agent]:
        return self._registry.all_agents()

    def get_agent(self, agent_id: str) -> Agent:
        return self._registry.require(agent_id)

    def get_agent_metrics(self) -> List[AgentMetrics]:
        return list(self._registry.all_metrics().values())

    def get_available_agents(self) -> List[str]:
        return [agent.id for agent in self._registry.available_agents()]

    def get_agents_by_role(self, role: AgentRole) -> List[str]:
        return [agent.id for agent in self._registry.agents_by_role(role)]

    # -- conversations -------------------------------------------------------

    def get_conversation(self, conversation_id: str) -> ConversationContext:
        return self._conversations.get_conversation(conversation_id)

    def get_conversation_summary(self, conversation_id: str) -> ConversationSummary:
        return self._conversations.generate_summary(conversation_id)

    def delete_conversation(self, conversation_id: str) -> None:
        self._conversations.delete_conversation(conversation_id)

    def get_user_conversations(self, user_id: str) -> List[ConversationContext]:
        return self._conversations.get_user_conversations(user_id)

    def get_recent_conversations(self, limit: int = 10) -> List[ConversationContext]:
        return self._conversations.get_recent_conversations(limit)

    def get_active_conversations(self) -> List[ConversationContext]:
        return self._conversations.get_active_conversations()

    def search_conversations(self, query: str) -> List[ConversationContext]:
        return self._conversations.search_conversations(query)

    def get_events(self, conversation_id: str) -> List[ConversationEvent]:
        return self._conversations.get_events(conversation_id)

    # -- strategy and status -------------------------------------------------

    def update_strategy(self, **changes: Any) -> OrchestrationStrategy:
        return self._orchestrator.update_strategy(**changes)

    def get_strategy(self) -> OrchestrationStrategy:
        return self._orchestrator.strategy

    def get_stats(self) -> Dict[str, Any]:
        registry = self._registry.stats()
        return {
            "enabled": self._settings.enabled,
            "initialized": self._initialized,
            "total_conversations": self._conversations.count(),
            "active_conversations": len(self._conversations.get_active_conversations()),
            "total_agents": registry["total_agents"],
            "available_agents": registry["available_agents"],
            "strategy": dataclasses.asdict(self._orchestrator.strategy),
            "orchestrator": self._orchestrator.stats(),
            "registry": registry,
        }

    async def health_check(self) -> Dict[str, Any]:
        agents = await self._registry.health_check()
        return {
            "enabled": self._settings.enabled,
            "initialized": self._initialized,
            "agent_registry": self._registry.count() > 0,
            "conversation_manager": True,
            "orchestrator": True,
            "agents": agents,
        }

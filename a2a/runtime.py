"""Application runtime composition helpers."""
from __future__ import annotations

from typing import Optional

from a2a.agents.base import AgentInvoker
from a2a.config import Config
from a2a.core.event_bus import ConversationEventBus
from a2a.core.logging import get_logger
from a2a.orchestration.conversation import ConversationManager
from a2a.orchestration.orchestrator import Orchestrator
from a2a.orchestration.registry import AgentRegistry
from a2a.service import A2AService
from a2a.services.llm_pool import LLMPool, ModelInvoker, OfflineConfig

logger = get_logger(name=__name__)


def build_llm_pool(config: Config) -> LLMPool:
    """Register every configured backend under the default model name.

    Without credentials the offline client is registered so the service still
    runs end to end.
    """
    pool = LLMPool()
    model = config.a2a.default_model

    if config.azure_openai:
        pool.register_azure_openai(model, config.azure_openai)
    elif config.openai:
        pool.register_openai(model, config.openai)
    else:
        logger.warning("llm_credentials_missing", fallback="offline", model=model)
        pool.register_offline(model, OfflineConfig())
    return pool


def build_service(
    config: Optional[Config] = None,
    *,
    invoker: Optional[AgentInvoker] = None,
    event_bus: Optional[ConversationEventBus] = None,
) -> A2AService:
    """Construct the registry, ledger, orchestrator and facade once, wired explicitly."""
    config = config or Config.from_env()
    if invoker is None:
        invoker = ModelInvoker(build_llm_pool(config), config.a2a.default_model)

    registry = AgentRegistry(invoker)
    conversations = ConversationManager(event_bus, max_events=config.a2a.max_events)
    orchestrator = Orchestrator(registry, conversations, strategy=config.a2a.strategy())
    return A2AService(config.a2a, registry, conversations, orchestrator)

"""LLM client pool for shared model access with concurrency control."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from types import SimpleNamespace
from typing import Any, AsyncIterator, Dict, Optional, Union

from openai import AsyncAzureOpenAI, AsyncOpenAI

from a2a.config import AzureOpenAIConfig, OpenAIConfig
from a2a.core.logging import get_logger
from a2a.core.models import AgentConfig, InvocationResult

logger = get_logger(name=__name__)


class OfflineConfig:
    """Marker configuration for the scripted offline client."""

    def __init__(self, max_concurrent: int = 50, latency: float = 0.0) -> None:
        self.max_concurrent = max_concurrent
        self.latency = latency


ClientConfig = Union[AzureOpenAIConfig, OpenAIConfig, OfflineConfig]


class LLMPool:
    """Manages shared LLM clients with concurrency limiting."""

    def __init__(self) -> None:
        self._configs: Dict[str, ClientConfig] = {}
        self._clients: Dict[str, Any] = {}
        self._semaphores: Dict[str, asyncio.Semaphore] = {}

    def register_azure_openai(self, name: str, config: AzureOpenAIConfig) -> None:
        """Register an Azure OpenAI deployment under a model name."""
        self._register(name, config)

    def register_openai(self, name: str, config: OpenAIConfig) -> None:
        """Register an OpenAI-compatible endpoint under a model name."""
        self._register(name, config)

    def register_offline(self, name: str, config: Optional[OfflineConfig] = None) -> None:
        """Register the deterministic offline client, used when no credentials are configured."""
        self._register(name, config or OfflineConfig())

    def _register(self, name: str, config: ClientConfig) -> None:
        self._configs[name] = config
        self._semaphores[name] = asyncio.Semaphore(config.max_concurrent)
        self._clients.pop(name, None)

    def has(self, model_name: Optional[str]) -> bool:
        return model_name is not None and model_name in self._configs

    @property
    def models(self) -> list[str]:
        return list(self._configs)

    def target_model(self, model_name: str) -> str:
        """Model identifier sent to the backend (the deployment name on Azure)."""
        config = self._configs[model_name]
        if isinstance(config, AzureOpenAIConfig):
            return config.deployment_name
        return model_name

    @asynccontextmanager
    async def acquire(self, model_name: str) -> AsyncIterator[Any]:
        """Acquire access to a model client with concurrency control."""
        if model_name not in self._configs:
            raise KeyError(f"Model '{model_name}' not registered in LLM pool")

        semaphore = self._semaphores[model_name]
        await semaphore.acquire()
        try:
            # Lazy initialization on first use
            if model_name not in self._clients:
                self._clients[model_name] = self._build_client(model_name)
            yield self._clients[model_name]
        finally:
            semaphore.release()

    def _build_client(self, model_name: str) -> Any:
        config = self._configs[model_name]
        if isinstance(config, AzureOpenAIConfig):
            return AsyncAzureOpenAI(
                api_key=config.api_key,
                api_version=config.api_version,
                azure_endpoint=config.endpoint,
            )
        if isinstance(config, OpenAIConfig):
            return AsyncOpenAI(api_key=config.api_key, base_url=config.base_url)
        return ScriptedLLMClient(model_name, latency=config.latency)


class ModelInvoker:
    """Invocation capability backed by the pool: one chat completion per prompt."""

    def __init__(self, pool: LLMPool, default_model: str) -> None:
        self._pool = pool
        self._default_model = default_model

    def resolve_model(self, agent: AgentConfig) -> str:
        if self._pool.has(agent.model):
            return agent.model  # type: ignore[return-value]
        return self._default_model

    async def invoke(self, agent: AgentConfig, prompt: str) -> InvocationResult:
        model_name = self.resolve_model(agent)
        messages = []
        if agent.system_prompt:
            messages.append({"role": "system", "content": agent.system_prompt})
        messages.append({"role": "user", "content": prompt})

        kwargs: Dict[str, Any] = {"model": self._pool.target_model(model_name), "messages": messages}
        if agent.temperature is not None:
            kwargs["temperature"] = agent.temperature
        if agent.max_tokens is not None:
            kwargs["max_tokens"] = agent.max_tokens

        async with self._pool.acquire(model_name) as client:
            response = await client.chat.completions.create(**kwargs)

        content = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        usage_map: Dict[str, int] = {}
        if usage is not None:
            for key in ("prompt_tokens", "completion_tokens", "total_tokens"):
                value = getattr(usage, key, None)
                if value is not None:
                    usage_map[key] = int(value)
        logger.debug("model_invoked", agent_id=agent.id, model=model_name, usage=usage_map)
        return InvocationResult(content=content, usage=usage_map)


class ScriptedLLMClient:
    """Offline client mirroring the ``chat.completions.create`` surface.

    Replies deterministically with an acknowledgement of the prompt so
    orchestration can run end to end without credentials.
    """

    def __init__(self, model_name: str, latency: float = 0.0) -> None:
        self.model_name = model_name
        self.latency = latency
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _create(self, **kwargs: Any) -> Any:
        messages = kwargs.get("messages", [])
        user_message = next((m["content"] for m in messages if m["role"] == "user"), "")
        if self.latency:
            await asyncio.sleep(self.latency)

        first_line = user_message.strip().splitlines()[0] if user_message.strip() else ""
        content = f"[{self.model_name}] Acknowledged: {first_line[:200]}"
        completion_tokens = max(1, len(content) // 4)
        prompt_tokens = max(1, len(user_message) // 4)
        return SimpleNamespace(
            model=self.model_name,
            choices=[
                SimpleNamespace(
                    message=SimpleNamespace(role="assistant", content=content),
                    finish_reason="stop",
                )
            ],
            usage=SimpleNamespace(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        )

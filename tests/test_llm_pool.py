"""Tests for the model pool, the invoker and token estimation."""
from __future__ import annotations

import pytest

from a2a.config import AzureOpenAIConfig, OpenAIConfig
from a2a.core.models import AgentConfig, AgentRole
from a2a.services.llm_pool import LLMPool, ModelInvoker, OfflineConfig
from a2a.services.tokens import count_tokens


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def researcher(**overrides) -> AgentConfig:
    return AgentConfig(
        id="researcher-1",
        name="Researcher",
        role=AgentRole.RESEARCHER,
        system_prompt="You are a researcher.",
        **overrides,
    )


@pytest.mark.anyio
async def test_offline_invoke_returns_content_and_usage() -> None:
    pool = LLMPool()
    pool.register_offline("gpt-4")
    invoker = ModelInvoker(pool, "gpt-4")

    result = await invoker.invoke(researcher(), "Summarise the findings\nmore detail")

    assert result.content == "[gpt-4] Acknowledged: Summarise the findings"
    assert result.usage["total_tokens"] == result.usage["prompt_tokens"] + result.usage["completion_tokens"]


@pytest.mark.anyio
async def test_acquire_unknown_model_raises() -> None:
    pool = LLMPool()
    with pytest.raises(KeyError):
        async with pool.acquire("missing"):
            pass


def test_agent_model_falls_back_to_default() -> None:
    pool = LLMPool()
    pool.register_offline("gpt-4")
    pool.register_offline("small", OfflineConfig(max_concurrent=2))
    invoker = ModelInvoker(pool, "gpt-4")

    assert invoker.resolve_model(researcher(model="small")) == "small"
    assert invoker.resolve_model(researcher(model="unknown")) == "gpt-4"
    assert invoker.resolve_model(researcher()) == "gpt-4"
    assert pool.models == ["gpt-4", "small"]


def test_target_model_uses_azure_deployment() -> None:
    pool = LLMPool()
    pool.register_azure_openai("gpt-4", AzureOpenAIConfig(api_key="k", endpoint="https://x", deployment_name="prod-gpt4"))
    pool.register_openai("gpt-4o", OpenAIConfig(api_key="k"))

    assert pool.target_model("gpt-4") == "prod-gpt4"
    assert pool.target_model("gpt-4o") == "gpt-4o"


def test_count_tokens_by_content_type() -> None:
    assert count_tokens("") == 0
    assert count_tokens("a" * 100) == 25
    assert count_tokens('{"key": "value"}') == 5
    assert count_tokens("def f():\n    import os\n") == 8

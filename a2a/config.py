"""Configuration management for the A2A orchestrator."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from a2a.core.models import CollaborationPattern, OrchestrationStrategy


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class AzureOpenAIConfig:
    """Azure OpenAI service configuration."""

    api_key: str
    endpoint: str
    api_version: str = "2024-02-15-preview"
    deployment_name: str = "gpt-4"
    max_concurrent: int = 50


@dataclass(frozen=True)
class OpenAIConfig:
    """OpenAI (or compatible) endpoint configuration."""

    api_key: str
    base_url: Optional[str] = None
    max_concurrent: int = 50


@dataclass(frozen=True)
class A2ASettings:
    """Orchestration defaults applied process-wide."""

    enabled: bool = True
    max_concurrent_conversations: int = 10
    default_model: str = "gpt-4"
    pattern: CollaborationPattern = CollaborationPattern.HIERARCHICAL
    max_agents: int = 3
    timeout_ms: int = 30_000
    retry_on_failure: bool = False
    max_retries: int = 2
    stop_on_error: bool = False
    require_consensus: bool = False
    max_events: int = 1000

    def strategy(self) -> OrchestrationStrategy:
        return OrchestrationStrategy(
            pattern=self.pattern,
            max_agents=self.max_agents,
            timeout_ms=self.timeout_ms,
            retry_on_failure=self.retry_on_failure,
            max_retries=self.max_retries,
            stop_on_error=self.stop_on_error,
            require_consensus=self.require_consensus,
        )

    @classmethod
    def from_env(cls) -> A2ASettings:
        return cls(
            enabled=_env_bool("A2A_ENABLED", True),
            max_concurrent_conversations=int(os.getenv("A2A_MAX_CONCURRENT_CONVERSATIONS", "10")),
            default_model=os.getenv("A2A_DEFAULT_MODEL", "gpt-4"),
            pattern=CollaborationPattern(os.getenv("A2A_PATTERN", "hierarchical")),
            max_agents=int(os.getenv("A2A_MAX_AGENTS", "3")),
            timeout_ms=int(os.getenv("A2A_TIMEOUT_MS", "30000")),
            retry_on_failure=_env_bool("A2A_RETRY_ON_FAILURE", False),
            max_retries=int(os.getenv("A2A_MAX_RETRIES", "2")),
            stop_on_error=_env_bool("A2A_STOP_ON_ERROR", False),
            require_consensus=_env_bool("A2A_REQUIRE_CONSENSUS", False),
            max_events=int(os.getenv("A2A_MAX_EVENTS", "1000")),
        )


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from environment variables."""

    azure_openai: Optional[AzureOpenAIConfig] = None
    openai: Optional[OpenAIConfig] = None
    a2a: A2ASettings = field(default_factory=A2ASettings)
    environment: str = "development"
    log_level: str = "INFO"

    @property
    def has_credentials(self) -> bool:
        return self.azure_openai is not None or self.openai is not None

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables."""
        azure_key = os.getenv("AZURE_OPENAI_KEY")
        azure_endpoint = os.getenv("AZURE_OPENAI_ENDPOINT")

        azure_config = None
        if azure_key and azure_endpoint:
            azure_config = AzureOpenAIConfig(
                api_key=azure_key,
                endpoint=azure_endpoint,
                api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-15-preview"),
                deployment_name=os.getenv("AZURE_OPENAI_DEPLOYMENT", "gpt-4"),
                max_concurrent=int(os.getenv("AZURE_OPENAI_MAX_CONCURRENT", "50")),
            )

        openai_config = None
        openai_key = os.getenv("OPENAI_API_KEY")
        if openai_key:
            openai_config = OpenAIConfig(
                api_key=openai_key,
                base_url=os.getenv("OPENAI_BASE_URL") or None,
                max_concurrent=int(os.getenv("OPENAI_MAX_CONCURRENT", "50")),
            )

        return cls(
            azure_openai=azure_config,
            openai=openai_config,
            a2a=A2ASettings.from_env(),
            environment=os.getenv("ENVIRONMENT", "development"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

"""HTTP API for the agent directory."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, status
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from a2a.agents.base import Agent
from a2a.api.dependencies import get_service, translate_errors
from a2a.core.errors import ValidationError
from a2a.core.models import AgentConfig, AgentRole
from a2a.orchestration.routing import resolve_role
from a2a.service import A2AService

router = APIRouter(prefix="/a2a/agents", tags=["agents"])


class AgentCreateRequest(BaseModel):
    id: str = Field(..., min_length=1, description="Unique agent identifier")
    name: str = Field(..., description="Display name")
    role: str = Field(..., description="Role used to pick the agent's task logic")
    description: str = ""
    capabilities: Dict[str, Any] = Field(default_factory=dict)
    system_prompt: str = ""
    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    enabled: bool = True
    max_concurrent_tasks: int = Field(default=1, ge=1)
    specializations: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_config(self) -> AgentConfig:
        role = resolve_role(self.role)
        if role is None:
            raise ValidationError(f"Unknown agent role: {self.role}")
        return AgentConfig(
            id=self.id,
            name=self.name,
            role=role,
            description=self.description,
            capabilities=dict(self.capabilities),
            system_prompt=self.system_prompt,
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            enabled=self.enabled,
            max_concurrent_tasks=self.max_concurrent_tasks,
            specializations=list(self.specializations),
            metadata=dict(self.metadata),
        )


class AgentResponse(BaseModel):
    agent_id: str
    name: str
    role: str
    description: str
    state: str
    enabled: bool
    current_load: int
    capabilities: Dict[str, Any]
    specializations: List[str]
    metrics: Dict[str, Any]
    last_error: Optional[str]

    @classmethod
    def from_agent(cls, agent: Agent) -> "AgentResponse":
        config = agent.config
        return cls(
            agent_id=agent.id,
            name=config.name,
            role=config.role.value,
            description=config.description,
            state=agent.state.value,
            enabled=agent.enabled,
            current_load=agent.current_load,
            capabilities=dict(config.capabilities),
            specializations=list(config.specializations),
            metrics=jsonable_encoder(agent.metrics),
            last_error=agent.last_error,
        )


class EnableRequest(BaseModel):
    enabled: bool = True


@router.get("", response_model=List[AgentResponse])
async def list_agents(service: A2AService = Depends(get_service)) -> List[AgentResponse]:
    return [AgentResponse.from_agent(agent) for agent in service.get_agents()]


@router.post("", response_model=AgentResponse, status_code=status.HTTP_201_CREATED)
async def register_agent(
    request: AgentCreateRequest,
    service: A2AService = Depends(get_service),
) -> AgentResponse:
    with translate_errors():
        agent = service.register_agent(request.to_config())
    return AgentResponse.from_agent(agent)


@router.get("/role/{role}", response_model=List[str])
async def agents_by_role(role: str, service: A2AService = Depends(get_service)) -> List[str]:
    resolved: Optional[AgentRole] = resolve_role(role)
    with translate_errors():
        if resolved is None:
            raise ValidationError(f"Unknown agent role: {role}")
        return service.get_agents_by_role(resolved)


@router.get("/{agent_id}", response_model=AgentResponse)
async def get_agent(agent_id: str, service: A2AService = Depends(get_service)) -> AgentResponse:
    with translate_errors():
        agent = service.get_agent(agent_id)
    return AgentResponse.from_agent(agent)


@router.delete("/{agent_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unregister_agent(agent_id: str, service: A2AService = Depends(get_service)) -> None:
    with translate_errors():
        service.unregister_agent(agent_id)


@router.post("/{agent_id}/enable", response_model=AgentResponse)
async def set_agent_enabled(
    agent_id: str,
    request: EnableRequest,
    service: A2AService = Depends(get_service),
) -> AgentResponse:
    with translate_errors():
        agent = service.set_agent_enabled(agent_id, request.enabled)
    return AgentResponse.from_agent(agent)

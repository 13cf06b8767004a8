"""HTTP API for running goals and reading the conversation ledger."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from a2a.api.dependencies import get_service, translate_errors
from a2a.api.system import StrategyUpdate
from a2a.core.models import OrchestrationRequest
from a2a.service import A2AService

router = APIRouter(prefix="/a2a", tags=["conversations"])


class ExecuteRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    goal: str = Field(..., min_length=1, description="High-level goal for the agents")
    context: Dict[str, Any] = Field(default_factory=dict)
    project_id: Optional[str] = None
    preferred_agents: List[str] = Field(default_factory=list)
    max_agents: Optional[int] = Field(default=None, ge=1)
    timeout: Optional[int] = Field(default=None, gt=0, description="Per-task timeout in milliseconds")
    required_capabilities: Dict[str, Any] = Field(default_factory=dict)
    strategy: Optional[StrategyUpdate] = Field(default=None, description="Partial strategy override")

    def to_request(self) -> OrchestrationRequest:
        return OrchestrationRequest(
            user_id=self.user_id,
            goal=self.goal,
            context=dict(self.context),
            project_id=self.project_id,
            preferred_agents=list(self.preferred_agents),
            max_agents=self.max_agents,
            timeout=self.timeout,
            required_capabilities=dict(self.required_capabilities),
            strategy=self.strategy.overrides() if self.strategy is not None else {},
        )


@router.post("/execute")
async def execute(request: ExecuteRequest, service: A2AService = Depends(get_service)) -> Dict[str, Any]:
    with translate_errors():
        result = await service.execute(request.to_request())
    return jsonable_encoder(result)


@router.get("/conversations/recent")
async def recent_conversations(
    limit: int = Query(default=10, ge=1, le=100),
    service: A2AService = Depends(get_service),
) -> List[Dict[str, Any]]:
    return jsonable_encoder(service.get_recent_conversations(limit))


@router.get("/conversations/active")
async def active_conversations(service: A2AService = Depends(get_service)) -> List[Dict[str, Any]]:
    return jsonable_encoder(service.get_active_conversations())


@router.get("/conversations/search")
async def search_conversations(
    q: str = Query(..., min_length=1),
    service: A2AService = Depends(get_service),
) -> List[Dict[str, Any]]:
    return jsonable_encoder(service.search_conversations(q))


@router.get("/conversations/user/{user_id}")
async def user_conversations(user_id: str, service: A2AService = Depends(get_service)) -> List[Dict[str, Any]]:
    return jsonable_encoder(service.get_user_conversations(user_id))


@router.get("/conversations/{conversation_id}")
async def get_conversation(conversation_id: str, service: A2AService = Depends(get_service)) -> Dict[str, Any]:
    with translate_errors():
        return jsonable_encoder(service.get_conversation(conversation_id))


@router.get("/conversations/{conversation_id}/summary")
async def get_summary(conversation_id: str, service: A2AService = Depends(get_service)) -> Dict[str, Any]:
    with translate_errors():
        return jsonable_encoder(service.get_conversation_summary(conversation_id))


@router.get("/conversations/{conversation_id}/events")
async def get_events(conversation_id: str, service: A2AService = Depends(get_service)) -> List[Dict[str, Any]]:
    with translate_errors():
        return jsonable_encoder(service.get_events(conversation_id))


@router.post("/conversations/{conversation_id}/cancel", status_code=status.HTTP_202_ACCEPTED)
async def cancel_conversation(conversation_id: str, service: A2AService = Depends(get_service)) -> Dict[str, Any]:
    with translate_errors():
        service.get_conversation(conversation_id)
    return {"conversation_id": conversation_id, "cancelled": service.cancel(conversation_id)}


@router.delete("/conversations/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(conversation_id: str, service: A2AService = Depends(get_service)) -> None:
    with translate_errors():
        service.delete_conversation(conversation_id)

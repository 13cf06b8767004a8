"""HTTP API for metrics, health and the orchestration strategy."""
from __future__ import annotations

import dataclasses
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ConfigDict, Field

from a2a.api.dependencies import get_service, translate_errors
from a2a.core.models import CollaborationPattern, OrchestrationStrategy
from a2a.service import A2AService

router = APIRouter(prefix="/a2a", tags=["system"])


class StrategyModel(BaseModel):
    pattern: CollaborationPattern
    max_agents: int
    timeout_ms: int
    retry_on_failure: bool
    max_retries: int
    stop_on_error: bool
    require_consensus: bool
    decompose: bool
    max_delegations: int

    @classmethod
    def from_strategy(cls, strategy: OrchestrationStrategy) -> "StrategyModel":
        return cls(**dataclasses.asdict(strategy))


class StrategyUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    pattern: Optional[CollaborationPattern] = None
    max_agents: Optional[int] = Field(default=None, ge=1)
    timeout_ms: Optional[int] = Field(default=None, gt=0)
    retry_on_failure: Optional[bool] = None
    max_retries: Optional[int] = Field(default=None, ge=0)
    stop_on_error: Optional[bool] = None
    require_consensus: Optional[bool] = None
    decompose: Optional[bool] = None
    max_delegations: Optional[int] = Field(default=None, ge=0)

    def overrides(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


@router.get("/metrics")
async def agent_metrics(service: A2AService = Depends(get_service)) -> List[Dict[str, Any]]:
    return jsonable_encoder(service.get_agent_metrics())


@router.get("/stats")
async def stats(service: A2AService = Depends(get_service)) -> Dict[str, Any]:
    return jsonable_encoder(service.get_stats())


@router.get("/health")
async def health(service: A2AService = Depends(get_service)) -> Dict[str, Any]:
    return await service.health_check()


@router.get("/strategy", response_model=StrategyModel)
async def get_strategy(service: A2AService = Depends(get_service)) -> StrategyModel:
    return StrategyModel.from_strategy(service.get_strategy())


@router.put("/strategy", response_model=StrategyModel)
async def update_strategy(update: StrategyUpdate, service: A2AService = Depends(get_service)) -> StrategyModel:
    with translate_errors():
        strategy = service.update_strategy(**update.overrides())
    return StrategyModel.from_strategy(strategy)

"""Agent roster registered when the service initializes."""
from __future__ import annotations

from typing import List, Optional

from a2a.core.models import AgentConfig, AgentRole


def _capabilities(*names: str) -> dict:
    return {name: True for name in names}


def default_agent_configs(model: Optional[str] = None) -> List[AgentConfig]:
    """Coordinator plus one specialist per common role, all bound to ``model``."""
    return [
        AgentConfig(
            id="coordinator-1",
            name="Main Coordinator",
            role=AgentRole.COORDINATOR,
            description="Coordinates multi-agent workflows and delegates tasks",
            capabilities=_capabilities("can_analyze", "can_manage_projects"),
            system_prompt=(
                "You are a Coordinator Agent. Your role is to analyze requests, break them "
                "down into tasks, and delegate to specialized agents. Always think about "
                "which agents are best suited for each task."
            ),
            model=model,
            max_concurrent_tasks=5,
            specializations=["orchestration", "planning", "delegation"],
        ),
        AgentConfig(
            id="researcher-1",
            name="Research Specialist",
            role=AgentRole.RESEARCHER,
            description="Gathers information and conducts research",
            capabilities=_capabilities("can_research", "can_analyze", "can_write"),
            system_prompt=(
                "You are a Research Agent. Your role is to gather information, analyze data, "
                "and provide well-researched insights. Always cite your reasoning and provide "
                "comprehensive findings."
            ),
            model=model,
            max_concurrent_tasks=3,
            specializations=["research", "analysis", "documentation"],
        ),
        AgentConfig(
            id="developer-1",
            name="Development Expert",
            role=AgentRole.DEVELOPER,
            description="Writes and reviews code",
            capabilities=_capabilities("can_code", "can_analyze", "can_write"),
            system_prompt=(
                "You are a Developer Agent. Your role is to write clean, maintainable code and "
                "provide technical implementation guidance. Focus on best practices and code quality."
            ),
            model=model,
            max_concurrent_tasks=2,
            specializations=["coding", "architecture", "best-practices"],
        ),
        AgentConfig(
            id="designer-1",
            name="Design Expert",
            role=AgentRole.DESIGNER,
            description="Creates designs and user experiences",
            capabilities=_capabilities("can_design", "can_analyze", "can_write"),
            system_prompt=(
                "You are a Designer Agent. Your role is to create intuitive, beautiful designs "
                "that provide excellent user experiences. Consider accessibility, usability, "
                "and visual appeal."
            ),
            model=model,
            max_concurrent_tasks=2,
            specializations=["ui-design", "ux", "visual-design"],
        ),
        AgentConfig(
            id="analyst-1",
            name="Data Analyst",
            role=AgentRole.ANALYST,
            description="Analyzes data and provides insights",
            capabilities=_capabilities("can_research", "can_analyze", "can_write"),
            system_prompt=(
                "You are an Analyst Agent. Your role is to analyze data, identify patterns, and "
                "provide actionable insights. Use data-driven reasoning and clear visualizations."
            ),
            model=model,
            max_concurrent_tasks=3,
            specializations=["data-analysis", "metrics", "insights"],
        ),
        AgentConfig(
            id="cost-estimator-1",
            name="Cost Estimator",
            role=AgentRole.COST_ESTIMATOR,
            description="Estimates project costs and budgets",
            capabilities=_capabilities("can_analyze", "can_write", "can_estimate"),
            system_prompt=(
                "You are a Cost Estimator Agent. Your role is to provide accurate cost estimates "
                "with detailed breakdowns. Consider all factors including time, resources, and "
                "potential risks."
            ),
            model=model,
            max_concurrent_tasks=3,
            specializations=["cost-estimation", "budgeting", "pricing"],
        ),
    ]

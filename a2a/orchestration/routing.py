"""Default task routing rules and role guessing."""
from __future__ import annotations

import re
from typing import Optional, Tuple

from a2a.core.models import AgentRole, MessagePriority, TaskRoutingRule


def _rule(
    name: str,
    keywords: Tuple[str, ...],
    role: AgentRole,
    capabilities: Tuple[str, ...],
    priority: MessagePriority = MessagePriority.NORMAL,
) -> TaskRoutingRule:
    return TaskRoutingRule(
        name=name,
        keywords=keywords,
        preferred_roles=(role,),
        required_capabilities={capability: True for capability in capabilities},
        priority=priority,
    )


DEFAULT_ROUTING_RULES: Tuple[TaskRoutingRule, ...] = (
    _rule("research", ("research", "investigate", "find", "gather", "analyze data"), AgentRole.RESEARCHER, ("can_research",)),
    _rule("development", ("code", "implement", "develop", "program", "build feature"), AgentRole.DEVELOPER, ("can_code",)),
    _rule("design", ("design", "mockup", "ui", "ux", "interface", "visual"), AgentRole.DESIGNER, ("can_design",)),
    _rule("analysis", ("analyze", "evaluate", "assess", "metrics", "data analysis"), AgentRole.ANALYST, ("can_analyze",)),
    _rule("documentation", ("document", "write", "content", "documentation", "guide"), AgentRole.WRITER, ("can_write",)),
    _rule("testing", ("test", "qa", "quality", "verify", "validate"), AgentRole.QA_TESTER, ("can_test_qa",)),
    _rule("estimation", ("estimate", "cost", "budget", "pricing", "quote"), AgentRole.COST_ESTIMATOR, ("can_estimate",)),
    _rule("project_management", ("plan", "coordinate", "manage", "schedule", "organize"), AgentRole.PROJECT_MANAGER, ("can_manage_projects",)),
    _rule(
        "architecture",
        ("architecture", "system design", "technical design", "infrastructure"),
        AgentRole.TECHNICAL_ARCHITECT,
        ("can_analyze", "can_code"),
        MessagePriority.HIGH,
    ),
    _rule(
        "coordination",
        ("coordinate", "orchestrate", "oversee", "delegate"),
        AgentRole.COORDINATOR,
        ("can_manage_projects",),
        MessagePriority.HIGH,
    ),
)

# Words that name a role directly in free text ("ask the designer to ...").
_ROLE_NAMES = {
    AgentRole.RESEARCHER: ("researcher",),
    AgentRole.DEVELOPER: ("developer", "engineer", "programmer"),
    AgentRole.DESIGNER: ("designer",),
    AgentRole.ANALYST: ("analyst",),
    AgentRole.WRITER: ("writer", "copywriter"),
    AgentRole.QA_TESTER: ("qa tester", "tester"),
    AgentRole.PROJECT_MANAGER: ("project manager",),
    AgentRole.COST_ESTIMATOR: ("cost estimator", "estimator"),
    AgentRole.TECHNICAL_ARCHITECT: ("technical architect", "architect"),
    AgentRole.COORDINATOR: ("coordinator",),
}


def guess_role(description: str) -> Optional[AgentRole]:
    """Role explicitly named in ``description``, if any."""
    lowered = description.lower()
    for role, names in _ROLE_NAMES.items():
        if any(re.search(rf"\b{re.escape(name)}\b", lowered) for name in names):
            return role
    return None


def resolve_role(value: str) -> Optional[AgentRole]:
    """Parse a role value such as ``cost_estimator`` or ``cost-estimator``."""
    normalized = value.strip().lower().replace("-", "_").replace(" ", "_")
    try:
        return AgentRole(normalized)
    except ValueError:
        return None

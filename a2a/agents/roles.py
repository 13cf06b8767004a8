"""Per-role task logic plugged into the single ``Agent`` type."""
from __future__ import annotations

import abc
import json
import re
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from a2a.agents.parsing import bullet_items
from a2a.core.models import AgentConfig, AgentRole, AgentTask

if TYPE_CHECKING:
    from a2a.agents.base import Agent

Extractor = Callable[[str], Any]

_CODE_BLOCK = re.compile(r"```(\w*)\n([\s\S]*?)```")
_HEADING = re.compile(r"^#{1,6}\s+(.+)$", re.MULTILINE)
_AMOUNT = re.compile(r"\$\s?([\d,]+(?:\.\d+)?)")
_SCORE = re.compile(r"(?:quality\s+score|score)\s*[:=]?\s*(\d+(?:\.\d+)?)\s*(?:/\s*(\d+))?", re.IGNORECASE)


def _format_input(task: AgentTask) -> str:
    if task.input is None:
        return "{}"
    try:
        return json.dumps(task.input, default=str)
    except (TypeError, ValueError):
        return str(task.input)


def section_items(name: str) -> Extractor:
    """Bullets under the first paragraph that starts with ``name``."""
    pattern = re.compile(rf"{name}:?([\s\S]*?)(?=\n\n|\n#|$)", re.IGNORECASE)

    def extract(text: str) -> List[str]:
        match = pattern.search(text)
        return bullet_items(match.group(1)) if match else []

    return extract


def keyword_bullets(*keywords: str) -> Extractor:
    def extract(text: str) -> List[str]:
        return [item for item in bullet_items(text) if any(k in item.lower() for k in keywords)]

    return extract


def code_blocks(text: str) -> List[Dict[str, str]]:
    return [
        {"language": match.group(1) or "text", "code": match.group(2).strip()}
        for match in _CODE_BLOCK.finditer(text)
    ]


def headings(text: str) -> List[str]:
    return [match.group(1).strip() for match in _HEADING.finditer(text)]


def total_cost(text: str) -> Optional[float]:
    """Largest dollar amount mentioned, taken as the total estimate."""
    amounts = [float(value.replace(",", "")) for value in _AMOUNT.findall(text)]
    return max(amounts) if amounts else None


def quality_score(text: str) -> Optional[float]:
    match = _SCORE.search(text)
    if not match:
        return None
    score = float(match.group(1))
    scale = float(match.group(2)) if match.group(2) else (10.0 if score <= 10 else 100.0)
    return round(score / scale, 3) if scale else None


def extract_json_object(text: str) -> Optional[Any]:
    """Parse the first JSON object in ``text``, tolerating markdown fences."""
    candidate = text
    if "```json" in candidate:
        candidate = candidate.split("```json", 1)[1].split("```", 1)[0]
    elif "```" in candidate:
        candidate = candidate.split("```", 1)[1].split("```", 1)[0]
    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        return json.loads(candidate[start : end + 1])
    except json.JSONDecodeError:
        return None


class TaskLogic(abc.ABC):
    """Role-specific prompt construction and output extraction."""

    role: AgentRole = AgentRole.CUSTOM

    def can_handle(self, config: AgentConfig, task: AgentTask) -> bool:
        return config.has_capabilities(task.metadata.get("required_capabilities"))

    @abc.abstractmethod
    def build_prompt(self, config: AgentConfig, task: AgentTask) -> str:
        """Prompt sent to the model for this task."""

    def parse(self, content: str) -> Dict[str, Any]:
        return {}

    async def execute(self, agent: Agent, task: AgentTask) -> Dict[str, Any]:
        result = await agent.invoke(self.build_prompt(agent.config, task))
        output: Dict[str, Any] = {"content": result.content}
        if result.tools_used:
            output["tools_used"] = list(result.tools_used)
        output.update(self.parse(result.content))
        return output


class PromptedTaskLogic(TaskLogic):
    """Logic described as data: a heading, a list of deliverables and extractors."""

    def __init__(
        self,
        role: AgentRole,
        heading: str,
        deliverables: Sequence[str],
        extractors: Optional[Mapping[str, Extractor]] = None,
    ) -> None:
        self.role = role
        self.heading = heading
        self.deliverables = tuple(deliverables)
        self.extractors = dict(extractors or {})

    def build_prompt(self, config: AgentConfig, task: AgentTask) -> str:
        lines = [
            f"{self.heading}:",
            "",
            f"Task: {task.title}",
            f"Description: {task.description}",
            f"Input: {_format_input(task)}",
        ]
        if self.deliverables:
            lines.extend(["", "Provide:"])
            lines.extend(f"{index}. {item}" for index, item in enumerate(self.deliverables, 1))
        return "\n".join(lines)

    def parse(self, content: str) -> Dict[str, Any]:
        return {name: extract(content) for name, extract in self.extractors.items()}


class CoordinatorLogic(TaskLogic):
    """Turns a task into an execution plan with a machine-readable breakdown."""

    role = AgentRole.COORDINATOR

    def build_prompt(self, config: AgentConfig, task: AgentTask) -> str:
        return "\n".join(
            [
                "As a Coordinator Agent, analyze this task and create an execution plan:",
                "",
                f"Task: {task.title}",
                f"Description: {task.description}",
                f"Input: {_format_input(task)}",
                "",
                "Provide:",
                "1. Required agents and their roles",
                "2. Task breakdown with dependencies",
                "3. Estimated timeline",
                "4. Success criteria",
                "",
                "Format as JSON.",
            ]
        )

    def parse(self, content: str) -> Dict[str, Any]:
        breakdown = extract_json_object(content)
        return {"plan": content, "task_breakdown": breakdown if breakdown is not None else {"raw_plan": content}}


def _prompted(role: AgentRole, heading: str, deliverables: Tuple[str, ...], **extractors: Extractor) -> TaskLogic:
    return PromptedTaskLogic(role, heading, deliverables, extractors)


def default_role_catalog() -> Dict[AgentRole, TaskLogic]:
    """Logic for every built-in role. ``CUSTOM`` agents must bring their own."""
    return {
        AgentRole.COORDINATOR: CoordinatorLogic(),
        AgentRole.RESEARCHER: _prompted(
            AgentRole.RESEARCHER,
            "As a Researcher Agent, conduct research on this topic",
            ("Key findings", "Relevant data and statistics", "Best practices", "Recommendations", "Sources and references"),
            key_points=bullet_items,
            recommendations=section_items("recommendations?"),
        ),
        AgentRole.DEVELOPER: _prompted(
            AgentRole.DEVELOPER,
            "As a Developer Agent, work on this development task",
            ("Implementation approach", "Code structure", "Key functions/components needed", "Testing strategy", "Potential challenges"),
            code_blocks=code_blocks,
        ),
        AgentRole.DESIGNER: _prompted(
            AgentRole.DESIGNER,
            "As a Designer Agent, create a design solution for",
            ("Design concept", "Color scheme and typography", "Layout structure", "Component hierarchy", "User experience flow", "Accessibility considerations"),
            sections=headings,
        ),
        AgentRole.ANALYST: _prompted(
            AgentRole.ANALYST,
            "As an Analyst Agent, analyze the following",
            ("Data summary", "Key metrics", "Trends and patterns", "Insights and findings", "Recommendations", "Risk assessment"),
            insights=section_items("insights?"),
            recommendations=section_items("recommendations?"),
        ),
        AgentRole.WRITER: _prompted(
            AgentRole.WRITER,
            "As a Writer Agent, create content for",
            ("Well-structured, clear, and professional content",),
            sections=headings,
        ),
        AgentRole.QA_TESTER: _prompted(
            AgentRole.QA_TESTER,
            "As a QA Tester Agent, review and test",
            ("Test plan", "Test cases", "Quality assessment", "Issues found", "Recommendations for improvement"),
            test_cases=keyword_bullets("test", "verify", "check"),
            issues=keyword_bullets("issue", "bug", "error", "fail"),
            quality_score=quality_score,
        ),
        AgentRole.PROJECT_MANAGER: _prompted(
            AgentRole.PROJECT_MANAGER,
            "As a Project Manager Agent, manage this project aspect",
            ("Project plan", "Timeline and milestones", "Resource allocation", "Risk assessment", "Success metrics"),
            milestones=keyword_bullets("milestone", "week", "phase", "sprint"),
            risks=keyword_bullets("risk"),
        ),
        AgentRole.COST_ESTIMATOR: _prompted(
            AgentRole.COST_ESTIMATOR,
            "As a Cost Estimator Agent, estimate costs for",
            ("Detailed cost breakdown", "Total estimated cost", "Cost assumptions", "Risk factors affecting cost", "Cost optimization suggestions"),
            total_cost=total_cost,
            assumptions=section_items("assumptions?"),
        ),
        AgentRole.TECHNICAL_ARCHITECT: _prompted(
            AgentRole.TECHNICAL_ARCHITECT,
            "As a Technical Architect Agent, design architecture for",
            ("Architecture overview", "Technology stack recommendations", "System components", "Data flow", "Scalability considerations", "Security considerations"),
            components=section_items("(?:system )?components"),
        ),
    }

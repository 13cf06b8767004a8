"""Turning a coordinator's reply into an ordered list of subtasks.

Decomposition is pluggable: the orchestrator only depends on the ``Decomposer``
protocol. ``StructuredDecomposer`` understands a JSON breakdown and degrades
to a bullet/numbered list when the reply is free text.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from a2a.agents.roles import extract_json_object
from a2a.core.logging import get_logger
from a2a.core.models import AgentConfig, AgentRole, MessagePriority
from a2a.orchestration.routing import resolve_role

logger = get_logger(name=__name__)

_LIST_ITEM = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s+(.+?)\s*$")
_PARALLEL_MARKERS = ("in parallel", "independent", "concurrently", "simultaneously")
_MIN_ITEM_LENGTH = 10
_TITLE_LENGTH = 80


@dataclass(frozen=True, slots=True)
class SubtaskSpec:
    """One unit of work proposed by decomposition.

    ``dependencies`` are indexes of earlier subtasks in the same list.
    """

    title: str
    description: str
    dependencies: Tuple[int, ...] = ()
    required_capabilities: Mapping[str, Any] = field(default_factory=dict)
    role: Optional[AgentRole] = None
    priority: MessagePriority = MessagePriority.NORMAL


class Decomposer(Protocol):
    def decompose(self, goal: str, content: str) -> List[SubtaskSpec]:
        """Subtasks for ``goal`` parsed from the coordinator reply ``content``."""
        ...


def build_decomposition_prompt(
    goal: str,
    context: Optional[Mapping[str, Any]] = None,
    agents: Sequence[AgentConfig] = (),
) -> str:
    lines = [
        "Break the following goal into concrete subtasks for specialist agents.",
        "",
        f"Goal: {goal}",
    ]
    if context:
        lines.append("Context:")
        lines.extend(f"- {key}: {value}" for key, value in context.items())
    if agents:
        lines.extend(["", "Available agents:"])
        lines.extend(f"- {agent.id} ({agent.role.value}): {agent.description}" for agent in agents)
    lines.extend(
        [
            "",
            'Respond with JSON: {"tasks": [{"title": ..., "description": ..., "role": ..., '
            '"dependencies": [<index of an earlier task>], "required_capabilities": {...}}]}.',
            "Leave dependencies empty for tasks that can run in parallel.",
        ]
    )
    return "\n".join(lines)


class StructuredDecomposer:
    """JSON breakdown first, then a list of bullet or numbered items."""

    def decompose(self, goal: str, content: str) -> List[SubtaskSpec]:
        parsed = extract_json_object(content)
        if isinstance(parsed, dict):
            items = parsed.get("tasks") or parsed.get("subtasks")
            if isinstance(items, list):
                specs = self._from_json(items)
                if specs:
                    return specs
        return self._from_list(content)

    def _from_json(self, items: List[Any]) -> List[SubtaskSpec]:
        keys: Dict[str, int] = {}
        specs: List[SubtaskSpec] = []
        for raw in items:
            if isinstance(raw, str):
                raw = {"description": raw}
            if not isinstance(raw, dict):
                continue
            description = str(raw.get("description") or raw.get("title") or "").strip()
            if not description:
                continue
            index = len(specs)
            title = str(raw.get("title") or description[:_TITLE_LENGTH]).strip()
            dependencies = self._dependencies(raw.get("dependencies") or (), keys, index, title)
            capabilities = raw.get("required_capabilities") or {}
            role = raw.get("role")
            specs.append(
                SubtaskSpec(
                    title=title,
                    description=description,
                    dependencies=dependencies,
                    required_capabilities=dict(capabilities) if isinstance(capabilities, dict) else {},
                    role=resolve_role(role) if isinstance(role, str) else None,
                    priority=_priority(raw.get("priority")),
                )
            )
            for key in (raw.get("id"), title):
                if key is not None:
                    keys.setdefault(str(key).lower(), index)
        return specs

    def _dependencies(self, references: Any, keys: Mapping[str, int], index: int, title: str) -> Tuple[int, ...]:
        if not isinstance(references, (list, tuple)):
            references = [references]
        resolved = {self._resolve(ref, keys, index) for ref in references}
        if None in resolved:
            # An unknown reference keeps the subtask behind its predecessor.
            logger.warning("unresolved_dependency", subtask=title, references=[str(ref) for ref in references])
            resolved.discard(None)
            if index > 0:
                resolved.add(index - 1)
        return tuple(sorted(resolved))

    @staticmethod
    def _resolve(reference: Any, keys: Mapping[str, int], index: int) -> Optional[int]:
        """Map a dependency reference (id, title or index) to an earlier subtask."""
        resolved = keys.get(str(reference).lower())
        if resolved is None and isinstance(reference, int) and not isinstance(reference, bool):
            resolved = reference
        elif resolved is None and isinstance(reference, str) and reference.strip().isdigit():
            resolved = int(reference.strip())
        if resolved is None or not 0 <= resolved < index:
            return None
        return resolved

    def _from_list(self, content: str) -> List[SubtaskSpec]:
        items = []
        for line in content.splitlines():
            match = _LIST_ITEM.match(line)
            if match and len(match.group(1)) > _MIN_ITEM_LENGTH:
                items.append(match.group(1))

        independent = any(marker in content.lower() for marker in _PARALLEL_MARKERS)
        return [
            SubtaskSpec(
                title=item[:_TITLE_LENGTH],
                description=item,
                dependencies=() if independent or index == 0 else (index - 1,),
            )
            for index, item in enumerate(items)
        ]


def _priority(value: Any) -> MessagePriority:
    try:
        return MessagePriority(str(value).lower())
    except ValueError:
        return MessagePriority.NORMAL

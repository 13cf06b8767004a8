"""Extract structured hints (delegation, next actions, info requests) from agent replies."""
from __future__ import annotations

import re
from typing import List, Optional

from a2a.core.models import AgentResponse, DelegationRequest, InfoRequest

_DELEGATION = re.compile(r"DELEGATE TO:\s*([\w.-]+)\s*-\s*(.+)", re.IGNORECASE)
_NEXT_ACTIONS = re.compile(r"NEXT ACTIONS?:([\s\S]+?)(?=\n\n|\n[A-Z ]+:|$)", re.IGNORECASE)
_INFO_REQUEST = re.compile(r"NEED INFO FROM:\s*([\w.-]+)\s*-\s*(.+)", re.IGNORECASE)
_REASONING = re.compile(r"REASONING:\s*(.+)", re.IGNORECASE)
_BULLET = re.compile(r"^[-•*]\s+")


def bullet_items(text: str) -> List[str]:
    """Return the text of ``-``/``*``/``•`` bullet lines."""
    items = []
    for line in text.splitlines():
        stripped = line.strip()
        if _BULLET.match(stripped):
            items.append(_BULLET.sub("", stripped))
    return items


def parse_delegation(text: str) -> Optional[DelegationRequest]:
    match = _DELEGATION.search(text)
    if not match:
        return None
    return DelegationRequest(agent_id=match.group(1), task=match.group(2).strip())


def parse_response(agent_id: str, text: str) -> AgentResponse:
    response = AgentResponse(agent_id=agent_id, content=text)
    response.delegate_to = parse_delegation(text)

    actions = _NEXT_ACTIONS.search(text)
    if actions:
        response.next_actions = bullet_items(actions.group(1))

    for match in _INFO_REQUEST.finditer(text):
        response.requests_info.append(
            InfoRequest(from_agent=match.group(1), question=match.group(2).strip())
        )

    reasoning = _REASONING.search(text)
    if reasoning:
        response.reasoning = reasoning.group(1).strip()
    return response

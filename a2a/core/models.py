"""Core data models shared across orchestration components."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

# Reserved message endpoints that are never counted as participants.
USER_ENDPOINT = "user"
ORCHESTRATOR_ENDPOINT = "orchestrator"
RESERVED_ENDPOINTS = frozenset({USER_ENDPOINT, ORCHESTRATOR_ENDPOINT})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AgentRole(str, Enum):
    """Specialty an agent is registered under."""

    COORDINATOR = "coordinator"
    RESEARCHER = "researcher"
    DEVELOPER = "developer"
    DESIGNER = "designer"
    ANALYST = "analyst"
    WRITER = "writer"
    QA_TESTER = "qa_tester"
    PROJECT_MANAGER = "project_manager"
    COST_ESTIMATOR = "cost_estimator"
    TECHNICAL_ARCHITECT = "technical_architect"
    CUSTOM = "custom"


class AgentState(str, Enum):
    """Lifecycle states for a registered agent."""

    IDLE = "idle"
    BUSY = "busy"
    DISABLED = "disabled"
    ERROR = "error"


class MessagePriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class CollaborationPattern(str, Enum):
    """Topology used to coordinate agents for one orchestration run."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    HIERARCHICAL = "hierarchical"
    PEER_TO_PEER = "peer_to_peer"
    ROUND_ROBIN = "round_robin"


class OrchestrationStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class ConversationEventType(str, Enum):
    CONVERSATION_STARTED = "conversation_started"
    MESSAGE_SENT = "message_sent"
    TASK_ASSIGNED = "task_assigned"
    TASK_STARTED = "task_started"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"
    TASK_CANCELLED = "task_cancelled"
    TASK_REQUEUED = "task_requeued"
    HANDOFF_INITIATED = "handoff_initiated"
    WARNING = "warning"
    METADATA_UPDATED = "metadata_updated"
    CONVERSATION_COMPLETED = "conversation_completed"
    CONVERSATION_FAILED = "conversation_failed"


# Capability flags are plain names mapped to a truthy value (bool or weight).
Capabilities = Dict[str, Any]


@dataclass(slots=True)
class AgentConfig:
    """Configuration payload used by the registry when instantiating an agent."""

    id: str
    name: str
    role: AgentRole
    description: str = ""
    capabilities: Capabilities = field(default_factory=dict)
    system_prompt: str = ""
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    enabled: bool = True
    max_concurrent_tasks: int = 1
    specializations: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def has_capabilities(self, required: Optional[Mapping[str, Any]]) -> bool:
        """Exact-superset check: every truthy required flag must be truthy here."""
        if not required:
            return True
        return all(bool(self.capabilities.get(name)) for name, wanted in required.items() if wanted)


@dataclass(slots=True)
class AgentMetrics:
    """Counters owned and mutated by a single agent."""

    agent_id: str
    total_tasks: int = 0
    tasks_completed: int = 0
    tasks_failed: int = 0
    success_rate: float = 0.0
    average_duration_ms: float = 0.0
    current_load: int = 0
    tokens_used: int = 0
    last_active_at: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class InvocationResult:
    """What the model capability returns for one prompt."""

    content: str
    tools_used: Tuple[str, ...] = ()
    usage: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class DelegationRequest:
    agent_id: str
    task: str
    reason: str = "Agent requested delegation"


@dataclass(frozen=True, slots=True)
class InfoRequest:
    from_agent: str
    question: str


@dataclass(slots=True)
class AgentResponse:
    """Structured view of an agent's reply to a message."""

    agent_id: str
    content: str
    reasoning: Optional[str] = None
    next_actions: List[str] = field(default_factory=list)
    delegate_to: Optional[DelegationRequest] = None
    requests_info: List[InfoRequest] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class AgentMessage:
    id: str
    conversation_id: str
    from_agent_id: str
    to_agent_id: str
    content: str
    priority: MessagePriority = MessagePriority.NORMAL
    created_at: datetime = field(default_factory=utcnow)
    metadata: Mapping[str, Any] = field(default_factory=dict)
    parent_message_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class AgentTask:
    id: str
    conversation_id: str
    assigned_to_agent_id: str
    created_by_agent_id: str
    title: str
    description: str
    priority: MessagePriority = MessagePriority.NORMAL
    status: TaskStatus = TaskStatus.PENDING
    dependencies: Tuple[str, ...] = ()
    input: Any = None
    output: Any = None
    error: Optional[str] = None
    attempts: int = 0
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class AgentHandoff:
    id: str
    conversation_id: str
    from_agent_id: str
    to_agent_id: str
    reason: str
    context: str
    task_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class ConversationEvent:
    type: ConversationEventType
    conversation_id: str
    timestamp: datetime = field(default_factory=utcnow)
    data: Mapping[str, Any] = field(default_factory=dict)
    agent_id: Optional[str] = None
    task_id: Optional[str] = None
    message_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ConversationContext:
    """Read view of one conversation; built fresh by the manager on every query."""

    id: str
    user_id: str
    goal: str
    project_id: Optional[str]
    status: ConversationStatus
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime]
    metadata: Mapping[str, Any]
    messages: Tuple[AgentMessage, ...]
    tasks: Tuple[AgentTask, ...]
    handoffs: Tuple[AgentHandoff, ...]
    participants: Tuple[str, ...]

    @property
    def is_terminal(self) -> bool:
        return self.status is not ConversationStatus.ACTIVE


@dataclass(frozen=True, slots=True)
class AgentParticipation:
    agent_id: str
    tasks_completed: int


@dataclass(frozen=True, slots=True)
class Deliverable:
    type: str
    description: str
    output: Any = None


@dataclass(frozen=True, slots=True)
class ConversationSummary:
    conversation_id: str
    goal: str
    status: ConversationStatus
    outcome: str
    message_count: int
    task_count: int
    completed_tasks: int
    failed_tasks: int
    handoff_count: int
    agents_participated: Tuple[AgentParticipation, ...]
    key_decisions: Tuple[str, ...]
    deliverables: Tuple[Deliverable, ...]
    duration_ms: float


@dataclass(frozen=True, slots=True)
class TaskRoutingRule:
    """Maps a task description to the role(s) or agents that should take it.

    A rule matches when a keyword starts a word of the description
    (case-insensitive), or when the caller explicitly requires every capability
    the rule names. A custom ``predicate(description, required_capabilities)``
    replaces both checks.
    """

    name: str
    keywords: Tuple[str, ...] = ()
    preferred_roles: Tuple[AgentRole, ...] = ()
    preferred_agent_ids: Tuple[str, ...] = ()
    required_capabilities: Mapping[str, Any] = field(default_factory=dict)
    priority: MessagePriority = MessagePriority.NORMAL
    predicate: Any = None

    def matches(self, description: str, required: Optional[Mapping[str, Any]] = None) -> bool:
        if self.predicate is not None:
            return bool(self.predicate(description, required or {}))
        lowered = description.lower()
        if any(re.search(rf"\b{re.escape(keyword.lower())}", lowered) for keyword in self.keywords):
            return True
        if required and self.required_capabilities:
            return all(required.get(name) for name, wanted in self.required_capabilities.items() if wanted)
        return False


@dataclass(slots=True)
class OrchestrationStrategy:
    """Named configuration of one orchestration run."""

    pattern: CollaborationPattern = CollaborationPattern.HIERARCHICAL
    max_agents: int = 3
    timeout_ms: int = 30_000
    retry_on_failure: bool = False
    max_retries: int = 2
    stop_on_error: bool = False
    require_consensus: bool = False
    decompose: bool = True
    max_delegations: int = 5


@dataclass(slots=True)
class OrchestrationRequest:
    user_id: str
    goal: str
    context: Dict[str, Any] = field(default_factory=dict)
    project_id: Optional[str] = None
    preferred_agents: List[str] = field(default_factory=list)
    max_agents: Optional[int] = None
    timeout: Optional[int] = None
    required_capabilities: Dict[str, Any] = field(default_factory=dict)
    strategy: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class TaskOutcome:
    task_id: str
    title: str
    agent_id: str
    status: TaskStatus
    output: Any = None
    error: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Vote:
    agent_id: str
    vote: str
    reasoning: str


@dataclass(frozen=True, slots=True)
class ConsensusDecision:
    question: str
    votes: Tuple[Vote, ...]
    final_decision: str
    consensus: bool


@dataclass(frozen=True, slots=True)
class OrchestrationResult:
    conversation_id: str
    status: OrchestrationStatus
    outputs: Tuple[TaskOutcome, ...]
    participating_agents: Tuple[str, ...]
    duration_ms: float
    pattern: CollaborationPattern
    final_response: Optional[str] = None
    summary: Optional[ConversationSummary] = None
    consensus: Optional[ConsensusDecision] = None
    error: Optional[str] = None

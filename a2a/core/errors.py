"""Error taxonomy for the orchestration core."""
from __future__ import annotations

from typing import Optional


class A2AError(RuntimeError):
    """Base class for orchestration failures."""


class NotFoundError(A2AError):
    """Raised when a conversation, agent or task cannot be resolved."""


class AgentNotFoundError(NotFoundError):
    pass


class ConversationNotFoundError(NotFoundError):
    pass


class TaskNotFoundError(NotFoundError):
    pass


class DuplicateAgentError(A2AError):
    """Raised when registering an agent id that already exists."""


class ValidationError(A2AError, ValueError):
    """Raised when caller input is malformed."""


class InvalidStateError(A2AError):
    """Raised on mutation of a terminal conversation or an illegal task transition."""


class DependencyNotSatisfiedError(InvalidStateError):
    """Raised when a task is started before all of its dependencies completed."""


class OrchestrationAbortedError(A2AError):
    """Base for failures that abort a whole orchestration run."""

    def __init__(self, message: str, conversation_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.conversation_id = conversation_id


class NoAgentAvailableError(OrchestrationAbortedError):
    """Raised when no registered agent can take a subtask."""


class NoCoordinatorError(OrchestrationAbortedError):
    """Raised when no coordinator agent is registered and enabled."""


class InvocationError(A2AError):
    """Raised when the external model invocation itself fails."""


class AgentTimeoutError(InvocationError):
    """Raised when an agent invocation exceeds its timeout."""


class ServiceUnavailableError(A2AError):
    """Raised when the service is disabled or at capacity."""

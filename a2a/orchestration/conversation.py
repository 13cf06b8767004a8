"""In-process ledger of messages, tasks, hand-offs and events per conversation."""
from __future__ import annotations

import dataclasses
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional, Sequence

from a2a.core.errors import (
    ConversationNotFoundError,
    DependencyNotSatisfiedError,
    InvalidStateError,
    TaskNotFoundError,
    ValidationError,
)
from a2a.core.event_bus import ConversationEventBus
from a2a.core.logging import get_logger
from a2a.core.models import (
    RESERVED_ENDPOINTS,
    AgentHandoff,
    AgentMessage,
    AgentParticipation,
    AgentTask,
    ConversationContext,
    ConversationEvent,
    ConversationEventType,
    ConversationStatus,
    ConversationSummary,
    Deliverable,
    MessagePriority,
    TaskStatus,
    utcnow,
)

logger = get_logger(name=__name__)

_DECISION_WORDS = ("decided", "concluded", "determined", "agreed")
_KEY_DECISION_LIMIT = 5
_KEY_DECISION_LENGTH = 200

_ALLOWED_TRANSITIONS = {
    TaskStatus.PENDING: {TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED},
    TaskStatus.IN_PROGRESS: {TaskStatus.COMPLETED, TaskStatus.FAILED},
    TaskStatus.FAILED: set(),
    TaskStatus.COMPLETED: set(),
    TaskStatus.CANCELLED: set(),
}

_STATUS_EVENTS = {
    TaskStatus.IN_PROGRESS: ConversationEventType.TASK_STARTED,
    TaskStatus.COMPLETED: ConversationEventType.TASK_COMPLETED,
    TaskStatus.FAILED: ConversationEventType.TASK_FAILED,
    TaskStatus.CANCELLED: ConversationEventType.TASK_CANCELLED,
}


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


@dataclass(slots=True)
class _Conversation:
    """Mutable ledger entry; never handed out, only projected into read views."""

    id: str
    user_id: str
    goal: str
    project_id: Optional[str]
    metadata: Dict[str, Any]
    events: Deque[ConversationEvent]
    status: ConversationStatus = ConversationStatus.ACTIVE
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    messages: List[AgentMessage] = field(default_factory=list)
    tasks: List[AgentTask] = field(default_factory=list)
    task_index: Dict[str, int] = field(default_factory=dict)
    handoffs: List[AgentHandoff] = field(default_factory=list)
    lock: threading.RLock = field(default_factory=threading.RLock)

    def participants(self) -> List[str]:
        seen: Dict[str, None] = {}
        for message in self.messages:
            seen.setdefault(message.from_agent_id)
            seen.setdefault(message.to_agent_id)
        for task in self.tasks:
            seen.setdefault(task.created_by_agent_id)
            seen.setdefault(task.assigned_to_agent_id)
        return [agent_id for agent_id in seen if agent_id not in RESERVED_ENDPOINTS]

    def task(self, task_id: str) -> AgentTask:
        index = self.task_index.get(task_id)
        if index is None:
            raise TaskNotFoundError(f"Task {task_id} not found in conversation {self.id}")
        return self.tasks[index]


class ConversationManager:
    """Owns every conversation-scoped record; callers only ever see read views.

    Writers to one conversation are serialised by its own re-entrant lock. The
    manager-wide lock guards the conversation map only.
    """

    def __init__(self, event_bus: Optional[ConversationEventBus] = None, *, max_events: int = 1000) -> None:
        self._event_bus = event_bus
        self._max_events = max_events
        self._conversations: Dict[str, _Conversation] = {}
        self._lock = threading.Lock()

    # -- lifecycle -----------------------------------------------------------

    def create_conversation(
        self,
        user_id: str,
        goal: str,
        project_id: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> ConversationContext:
        if not goal or not goal.strip():
            raise ValidationError("Conversation goal must not be empty")

        conversation = _Conversation(
            id=_new_id("conv"),
            user_id=user_id,
            goal=goal,
            project_id=project_id,
            metadata=dict(metadata or {}),
            events=deque(maxlen=self._max_events),
        )
        with self._lock:
            self._conversations[conversation.id] = conversation
        with conversation.lock:
            self._emit(
                conversation,
                ConversationEventType.CONVERSATION_STARTED,
                data={"user_id": user_id, "goal": goal, "project_id": project_id},
            )
            logger.info("conversation_created", conversation_id=conversation.id, user_id=user_id)
            return self._view(conversation)

    def complete_conversation(self, conversation_id: str) -> ConversationContext:
        conversation = self._require(conversation_id)
        with conversation.lock:
            self._ensure_active(conversation)
            conversation.status = ConversationStatus.COMPLETED
            conversation.completed_at = conversation.updated_at = utcnow()
            self._emit(
                conversation,
                ConversationEventType.CONVERSATION_COMPLETED,
                data={"task_count": len(conversation.tasks)},
            )
            logger.info("conversation_completed", conversation_id=conversation_id)
            return self._view(conversation)

    def fail_conversation(self, conversation_id: str, reason: str) -> ConversationContext:
        conversation = self._require(conversation_id)
        with conversation.lock:
            self._ensure_active(conversation)
            conversation.status = ConversationStatus.FAILED
            conversation.completed_at = conversation.updated_at = utcnow()
            conversation.metadata["failure_reason"] = reason
            self._emit(conversation, ConversationEventType.CONVERSATION_FAILED, data={"reason": reason})
            logger.warning("conversation_failed", conversation_id=conversation_id, reason=reason)
            return self._view(conversation)

    def delete_conversation(self, conversation_id: str) -> None:
        with self._lock:
            if self._conversations.pop(conversation_id, None) is None:
                raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        logger.info("conversation_deleted", conversation_id=conversation_id)

    def clear(self) -> None:
        with self._lock:
            self._conversations.clear()

    # -- mutations -----------------------------------------------------------

    def add_message(
        self,
        conversation_id: str,
        from_agent_id: str,
        to_agent_id: str,
        content: str,
        *,
        priority: MessagePriority = MessagePriority.NORMAL,
        metadata: Optional[Mapping[str, Any]] = None,
        parent_message_id: Optional[str] = None,
    ) -> AgentMessage:
        conversation = self._require(conversation_id)
        with conversation.lock:
            self._ensure_active(conversation)
            message = AgentMessage(
                id=_new_id("msg"),
                conversation_id=conversation_id,
                from_agent_id=from_agent_id,
                to_agent_id=to_agent_id,
                content=content,
                priority=priority,
                metadata=dict(metadata or {}),
                parent_message_id=parent_message_id,
            )
            conversation.messages.append(message)
            self._emit(
                conversation,
                ConversationEventType.MESSAGE_SENT,
                data={"from": from_agent_id, "to": to_agent_id},
                agent_id=from_agent_id,
                message_id=message.id,
            )
            return message

    def add_task(
        self,
        conversation_id: str,
        assigned_to_agent_id: str,
        created_by_agent_id: str,
        title: str,
        description: str,
        *,
        priority: MessagePriority = MessagePriority.NORMAL,
        dependencies: Sequence[str] = (),
        input: Any = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> AgentTask:
        conversation = self._require(conversation_id)
        with conversation.lock:
            self._ensure_active(conversation)
            for dependency in dependencies:
                conversation.task(dependency)
            task = AgentTask(
                id=_new_id("task"),
                conversation_id=conversation_id,
                assigned_to_agent_id=assigned_to_agent_id,
                created_by_agent_id=created_by_agent_id,
                title=title,
                description=description,
                priority=priority,
                dependencies=tuple(dependencies),
                input=input,
                metadata=dict(metadata or {}),
            )
            conversation.task_index[task.id] = len(conversation.tasks)
            conversation.tasks.append(task)
            self._emit(
                conversation,
                ConversationEventType.TASK_ASSIGNED,
                data={"title": title, "assigned_to": assigned_to_agent_id},
                agent_id=assigned_to_agent_id,
                task_id=task.id,
            )
            return task

    def update_task_status(
        self,
        conversation_id: str,
        task_id: str,
        status: TaskStatus,
        output: Any = None,
        error: Optional[str] = None,
    ) -> AgentTask:
        """Move a task along its state machine and stamp the matching timestamp."""
        conversation = self._require(conversation_id)
        with conversation.lock:
            self._ensure_active(conversation)
            task = conversation.task(task_id)
            if status not in _ALLOWED_TRANSITIONS[task.status]:
                raise InvalidStateError(
                    f"Task {task_id} cannot move from {task.status.value} to {status.value}"
                )

            changes: Dict[str, Any] = {"status": status}
            now = utcnow()
            if status is TaskStatus.IN_PROGRESS:
                unmet = [
                    dependency
                    for dependency in task.dependencies
                    if conversation.task(dependency).status is not TaskStatus.COMPLETED
                ]
                if unmet:
                    raise DependencyNotSatisfiedError(
                        f"Task {task_id} has unmet dependencies: {', '.join(unmet)}"
                    )
                changes.update(started_at=now, attempts=task.attempts + 1)
            else:
                changes["completed_at"] = now
            if output is not None:
                changes["output"] = output
            if error is not None:
                changes["error"] = error

            updated = dataclasses.replace(task, **changes)
            conversation.tasks[conversation.task_index[task_id]] = updated
            data: Dict[str, Any] = {"status": status.value}
            if error is not None:
                data["error"] = error
            self._emit(
                conversation,
                _STATUS_EVENTS[status],
                data=data,
                agent_id=task.assigned_to_agent_id,
                task_id=task_id,
            )
            return updated

    def requeue_task(
        self,
        conversation_id: str,
        task_id: str,
        *,
        assigned_to_agent_id: Optional[str] = None,
    ) -> AgentTask:
        """Return a failed task to ``pending``, optionally for a different agent."""
        conversation = self._require(conversation_id)
        with conversation.lock:
            self._ensure_active(conversation)
            task = conversation.task(task_id)
            if task.status is not TaskStatus.FAILED:
                raise InvalidStateError(f"Only failed tasks can be requeued; {task_id} is {task.status.value}")
            updated = dataclasses.replace(
                task,
                status=TaskStatus.PENDING,
                assigned_to_agent_id=assigned_to_agent_id or task.assigned_to_agent_id,
                started_at=None,
                completed_at=None,
            )
            conversation.tasks[conversation.task_index[task_id]] = updated
            self._emit(
                conversation,
                ConversationEventType.TASK_REQUEUED,
                data={"previous_error": task.error, "attempts": task.attempts},
                agent_id=updated.assigned_to_agent_id,
                task_id=task_id,
            )
            return updated

    def record_handoff(
        self,
        conversation_id: str,
        from_agent_id: str,
        to_agent_id: str,
        reason: str,
        context: str = "",
        task_id: Optional[str] = None,
    ) -> AgentHandoff:
        conversation = self._require(conversation_id)
        with conversation.lock:
            self._ensure_active(conversation)
            handoff = AgentHandoff(
                id=_new_id("handoff"),
                conversation_id=conversation_id,
                from_agent_id=from_agent_id,
                to_agent_id=to_agent_id,
                reason=reason,
                context=context,
                task_id=task_id,
            )
            conversation.handoffs.append(handoff)
            self._emit(
                conversation,
                ConversationEventType.HANDOFF_INITIATED,
                data={"from": from_agent_id, "to": to_agent_id, "reason": reason},
                agent_id=from_agent_id,
                task_id=task_id,
            )
            return handoff

    def record_warning(
        self,
        conversation_id: str,
        message: str,
        *,
        agent_id: Optional[str] = None,
        task_id: Optional[str] = None,
        **data: Any,
    ) -> ConversationEvent:
        conversation = self._require(conversation_id)
        with conversation.lock:
            self._ensure_active(conversation)
            logger.warning("conversation_warning", conversation_id=conversation_id, warning=message)
            return self._emit(
                conversation,
                ConversationEventType.WARNING,
                data={"message": message, **data},
                agent_id=agent_id,
                task_id=task_id,
            )

    def update_metadata(self, conversation_id: str, **values: Any) -> ConversationContext:
        conversation = self._require(conversation_id)
        with conversation.lock:
            self._ensure_active(conversation)
            conversation.metadata.update(values)
            self._emit(conversation, ConversationEventType.METADATA_UPDATED, data={"keys": sorted(values)})
            return self._view(conversation)

    # -- queries -------------------------------------------------------------

    def get_conversation(self, conversation_id: str) -> ConversationContext:
        conversation = self._require(conversation_id)
        with conversation.lock:
            return self._view(conversation)

    def has_conversation(self, conversation_id: str) -> bool:
        with self._lock:
            return conversation_id in self._conversations

    def count(self) -> int:
        with self._lock:
            return len(self._conversations)

    def get_messages(self, conversation_id: str) -> List[AgentMessage]:
        conversation = self._require(conversation_id)
        with conversation.lock:
            return list(conversation.messages)

    def get_tasks(self, conversation_id: str) -> List[AgentTask]:
        conversation = self._require(conversation_id)
        with conversation.lock:
            return list(conversation.tasks)

    def get_task(self, conversation_id: str, task_id: str) -> AgentTask:
        conversation = self._require(conversation_id)
        with conversation.lock:
            return conversation.task(task_id)

    def get_pending_tasks(self, conversation_id: str) -> List[AgentTask]:
        return self._tasks_with_status(conversation_id, TaskStatus.PENDING)

    def get_completed_tasks(self, conversation_id: str) -> List[AgentTask]:
        return self._tasks_with_status(conversation_id, TaskStatus.COMPLETED)

    def get_failed_tasks(self, conversation_id: str) -> List[AgentTask]:
        return self._tasks_with_status(conversation_id, TaskStatus.FAILED)

    def get_agent_tasks(self, conversation_id: str, agent_id: str) -> List[AgentTask]:
        return [task for task in self.get_tasks(conversation_id) if task.assigned_to_agent_id == agent_id]

    def get_participants(self, conversation_id: str) -> List[str]:
        conversation = self._require(conversation_id)
        with conversation.lock:
            return conversation.participants()

    def get_handoffs(self, conversation_id: str) -> List[AgentHandoff]:
        conversation = self._require(conversation_id)
        with conversation.lock:
            return list(conversation.handoffs)

    def get_events(self, conversation_id: str) -> List[ConversationEvent]:
        conversation = self._require(conversation_id)
        with conversation.lock:
            return list(conversation.events)

    def get_conversation_stats(self, conversation_id: str) -> Dict[str, Any]:
        conversation = self._require(conversation_id)
        with conversation.lock:
            by_status = {status.value: 0 for status in TaskStatus}
            for task in conversation.tasks:
                by_status[task.status.value] += 1
            return {
                "status": conversation.status.value,
                "message_count": len(conversation.messages),
                "task_count": len(conversation.tasks),
                "tasks_by_status": by_status,
                "handoff_count": len(conversation.handoffs),
                "participant_count": len(conversation.participants()),
                "event_count": len(conversation.events),
                "duration_ms": _duration_ms(conversation),
            }

    def list_conversations(self) -> List[ConversationContext]:
        return [self.get_conversation(conversation.id) for conversation in self._snapshot()]

    def get_user_conversations(self, user_id: str) -> List[ConversationContext]:
        return self._views(c for c in self._snapshot() if c.user_id == user_id)

    def get_project_conversations(self, project_id: str) -> List[ConversationContext]:
        return self._views(c for c in self._snapshot() if c.project_id == project_id)

    def get_active_conversations(self) -> List[ConversationContext]:
        return self._views(c for c in self._snapshot() if c.status is ConversationStatus.ACTIVE)

    def get_recent_conversations(self, limit: int = 10) -> List[ConversationContext]:
        """Most recently updated first."""
        ordered = sorted(self._snapshot(), key=lambda c: c.updated_at, reverse=True)
        return self._views(ordered[: max(limit, 0)])

    def search_conversations(self, query: str) -> List[ConversationContext]:
        """Case-insensitive match on the goal or any message content."""
        needle = query.lower()
        matches = []
        for conversation in self._snapshot():
            with conversation.lock:
                if needle in conversation.goal.lower() or any(
                    needle in message.content.lower() for message in conversation.messages
                ):
                    matches.append(conversation)
        return self._views(matches)

    def generate_summary(self, conversation_id: str) -> ConversationSummary:
        """Project the ledger into a summary; reads no clock and mutates nothing."""
        conversation = self._require(conversation_id)
        with conversation.lock:
            completed = [t for t in conversation.tasks if t.status is TaskStatus.COMPLETED]
            failed = [t for t in conversation.tasks if t.status is TaskStatus.FAILED]

            per_agent: Dict[str, int] = {}
            for task in completed:
                per_agent[task.assigned_to_agent_id] = per_agent.get(task.assigned_to_agent_id, 0) + 1

            return ConversationSummary(
                conversation_id=conversation.id,
                goal=conversation.goal,
                status=conversation.status,
                outcome=_outcome(conversation, len(failed)),
                message_count=len(conversation.messages),
                task_count=len(conversation.tasks),
                completed_tasks=len(completed),
                failed_tasks=len(failed),
                handoff_count=len(conversation.handoffs),
                agents_participated=tuple(
                    AgentParticipation(agent_id=agent_id, tasks_completed=count)
                    for agent_id, count in per_agent.items()
                ),
                key_decisions=tuple(_key_decisions(conversation.messages)),
                deliverables=tuple(
                    Deliverable(type=task.title, description=task.description, output=task.output)
                    for task in completed
                    if task.output is not None
                ),
                duration_ms=_duration_ms(conversation),
            )

    # -- internals -----------------------------------------------------------

    def _require(self, conversation_id: str) -> _Conversation:
        with self._lock:
            conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    def _snapshot(self) -> List[_Conversation]:
        with self._lock:
            return list(self._conversations.values())

    def _views(self, conversations: Iterable[_Conversation]) -> List[ConversationContext]:
        views = []
        for conversation in conversations:
            with conversation.lock:
                views.append(self._view(conversation))
        return views

    @staticmethod
    def _ensure_active(conversation: _Conversation) -> None:
        if conversation.status is not ConversationStatus.ACTIVE:
            raise InvalidStateError(
                f"Conversation {conversation.id} is {conversation.status.value} and cannot be modified"
            )

    def _tasks_with_status(self, conversation_id: str, status: TaskStatus) -> List[AgentTask]:
        return [task for task in self.get_tasks(conversation_id) if task.status is status]

    def _emit(
        self,
        conversation: _Conversation,
        event_type: ConversationEventType,
        *,
        data: Optional[Mapping[str, Any]] = None,
        agent_id: Optional[str] = None,
        task_id: Optional[str] = None,
        message_id: Optional[str] = None,
    ) -> ConversationEvent:
        event = ConversationEvent(
            type=event_type,
            conversation_id=conversation.id,
            data=dict(data or {}),
            agent_id=agent_id,
            task_id=task_id,
            message_id=message_id,
        )
        conversation.events.append(event)
        conversation.updated_at = event.timestamp
        if self._event_bus is not None:
            self._event_bus.publish(event)
        return event

    @staticmethod
    def _view(conversation: _Conversation) -> ConversationContext:
        return ConversationContext(
            id=conversation.id,
            user_id=conversation.user_id,
            goal=conversation.goal,
            project_id=conversation.project_id,
            status=conversation.status,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
            completed_at=conversation.completed_at,
            metadata=dict(conversation.metadata),
            messages=tuple(conversation.messages),
            tasks=tuple(conversation.tasks),
            handoffs=tuple(conversation.handoffs),
            participants=tuple(conversation.participants()),
        )


def _duration_ms(conversation: _Conversation) -> float:
    end = conversation.completed_at or conversation.updated_at
    return (end - conversation.created_at).total_seconds() * 1000


def _outcome(conversation: _Conversation, failed_tasks: int) -> str:
    if conversation.status is ConversationStatus.ACTIVE:
        return "In progress"
    if conversation.status is ConversationStatus.FAILED:
        return f"Failed: {conversation.metadata.get('failure_reason', 'unknown reason')}"
    if failed_tasks:
        return f"Completed with {failed_tasks} failed tasks"
    return "Successfully completed"


def _key_decisions(messages: Sequence[AgentMessage]) -> List[str]:
    """Messages announcing a decision, or sent at high/urgent priority."""
    decisions = []
    for message in messages:
        lowered = message.content.lower()
        if message.priority in (MessagePriority.HIGH, MessagePriority.URGENT) or any(
            word in lowered for word in _DECISION_WORDS
        ):
            decisions.append(message.content[:_KEY_DECISION_LENGTH])
        if len(decisions) == _KEY_DECISION_LIMIT:
            break
    return decisions

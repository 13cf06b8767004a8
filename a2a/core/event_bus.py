"""Lightweight in-memory publish/subscribe channel for conversation events."""
from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

from .models import ConversationEvent

# Subscription key receiving events from every conversation.
ALL_CONVERSATIONS = "*"


class ConversationEventBus:
    """Push channel layered on top of the ledger's pull-based event log.

    Publishing never blocks: events are put on unbounded per-subscriber queues,
    so a slow subscriber cannot stall a ledger mutation.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[asyncio.Queue[ConversationEvent]]] = defaultdict(list)

    def publish(self, event: ConversationEvent) -> None:
        """Deliver an event to subscribers of its conversation and to global subscribers."""
        for key in (event.conversation_id, ALL_CONVERSATIONS):
            for queue in list(self._subscribers.get(key, ())):
                queue.put_nowait(event)

    def subscriber_count(self, conversation_id: Optional[str] = None) -> int:
        key = conversation_id or ALL_CONVERSATIONS
        return len(self._subscribers.get(key, ()))

    @asynccontextmanager
    async def subscribe(
        self, conversation_id: Optional[str] = None
    ) -> AsyncIterator[asyncio.Queue[ConversationEvent]]:
        """Context manager yielding a queue of events for one conversation (or all)."""
        key = conversation_id or ALL_CONVERSATIONS
        queue: asyncio.Queue[ConversationEvent] = asyncio.Queue()
        self._subscribers[key].append(queue)
        try:
            yield queue
        finally:
            queues = self._subscribers.get(key)
            if queues is not None:
                queues.remove(queue)
                if not queues:
                    del self._subscribers[key]

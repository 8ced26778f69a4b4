"""Realtime change notifications for conversation messages."""

import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    """Something changed in a conversation's message list."""

    conversation_id: UUID
    kind: str  # 'insert', 'update' or 'delete'
    message_id: UUID | None = None


ChangeCallback = Callable[[ChangeEvent], Awaitable[None] | None]
Unsubscribe = Callable[[], None]


class ChangeFeed(Protocol):
    """Subscription interface; consumers only re-fetch on notification."""

    def subscribe(self, conversation_id: UUID, on_change: ChangeCallback) -> Unsubscribe: ...


class InMemoryChangeFeed:
    """
    In-process change feed.

    Suitable for a single server process; store writes publish here and
    the SSE events endpoint fans notifications out to browsers.
    """

    def __init__(self) -> None:
        self._subscribers: dict[UUID, list[ChangeCallback]] = defaultdict(list)

    def subscribe(self, conversation_id: UUID, on_change: ChangeCallback) -> Unsubscribe:
        self._subscribers[conversation_id].append(on_change)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(conversation_id)
            if callbacks and on_change in callbacks:
                callbacks.remove(on_change)
                if not callbacks:
                    del self._subscribers[conversation_id]

        return unsubscribe

    def subscriber_count(self, conversation_id: UUID) -> int:
        return len(self._subscribers.get(conversation_id, ()))

    async def publish(self, event: ChangeEvent) -> None:
        """Notify every subscriber of the event's conversation."""
        for callback in list(self._subscribers.get(event.conversation_id, ())):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "Change subscriber failed for conversation %s", event.conversation_id
                )

"""In-process pub/sub for conversation events."""

import asyncio
from typing import Awaitable, Callable, Protocol

from ..logging_config import get_logger
from ..models import ConversationEvent, EventType

logger = get_logger(__name__)


EventHandler = Callable[[ConversationEvent], Awaitable[None]]


class IEventBus(Protocol):
    """Fan-out of coordinator events to transport subscribers."""

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        """Subscribe a handler to one event type."""
        ...

    def subscribe_all(self, handler: EventHandler) -> None:
        """Subscribe a handler to every event type."""
        ...

    async def publish(self, event: ConversationEvent) -> None:
        """Deliver an event to its subscribers."""
        ...


class EventBus:
    """In-memory pub/sub event bus."""

    def __init__(self):
        self._subscribers: dict[EventType, list[EventHandler]] = {
            event_type: [] for event_type in EventType
        }
        self._wildcard: list[EventHandler] = []

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        self._subscribers[event_type].append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        self._wildcard.append(handler)

    def unsubscribe_all(self, handler: EventHandler) -> None:
        if handler in self._wildcard:
            self._wildcard.remove(handler)

    async def publish(self, event: ConversationEvent) -> None:
        """Call all matching handlers concurrently; failures are only logged."""
        handlers = [*self._subscribers.get(event.type, []), *self._wildcard]
        if not handlers:
            return

        results = await asyncio.gather(
            *[handler(event) for handler in handlers],
            return_exceptions=True,
        )

        for i, result in enumerate(results):
            if isinstance(result, Exception):
                logger.error(
                    "Error in event handler %s: %s",
                    i,
                    result,
                    extra={
                        "context": {
                            "conversation_id": event.conversation_id,
                            "event": event.type.value,
                        }
                    },
                )

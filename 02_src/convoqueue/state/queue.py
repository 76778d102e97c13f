"""QueueManager: bounded FIFO of pending inbound messages."""

from dataclasses import dataclass
from datetime import datetime

from ..clock import Clock, utc_now
from ..errors import QueueFullError
from ..logging_config import get_logger
from ..models import ConversationState, ConversationStatus, QueueEntry
from .store import ConversationStateStore

logger = get_logger(__name__)


@dataclass
class EnqueueResult:
    """Outcome of adding a message to the queue."""

    queue_position: int
    queue_length: int
    state: ConversationStatus


@dataclass
class RemoveResult:
    """Outcome of removing a message from the queue."""

    queue_length: int
    has_more: bool
    state: ConversationStatus
    removed: bool


def purge_expired(
    state: ConversationState, now: datetime, ttl_seconds: int
) -> list[QueueEntry]:
    """Drop entries older than the TTL in place; return the dropped ones.

    When the queue empties and nothing is bound, the state drops to IDLE.
    """
    kept: list[QueueEntry] = []
    expired: list[QueueEntry] = []
    for entry in state.message_queue:
        if entry.age_seconds(now) > ttl_seconds:
            expired.append(entry)
        else:
            kept.append(entry)

    if expired:
        state.message_queue = kept
        if not kept and state.state != ConversationStatus.PROCESSING:
            state.state = ConversationStatus.IDLE
    return expired


class QueueManager:
    """Enqueue, peek and remove pending messages for a conversation."""

    def __init__(self, store: ConversationStateStore, clock: Clock = utc_now):
        self._store = store
        self._config = store.config
        self._clock = clock

    async def enqueue(
        self,
        conversation_id: str,
        message_id: str,
        user_id: str,
        character_id: str,
        message_data: dict,
        original_timestamp: datetime | None = None,
        temp_id: str | None = None,
    ) -> EnqueueResult:
        """Append a message; raises QueueFullError at capacity."""
        state = await self._store.get(conversation_id)

        if state.queue_length >= self._config.max_queue_size:
            logger.warning(
                "Queue full, rejecting message",
                extra={
                    "context": {
                        "conversation_id": conversation_id,
                        "message_id": message_id,
                        "queue_length": state.queue_length,
                    }
                },
            )
            raise QueueFullError(conversation_id, self._config.max_queue_size)

        state.message_queue.append(
            QueueEntry(
                message_id=message_id,
                user_id=user_id,
                character_id=character_id,
                message_data=message_data,
                queued_at=self._clock(),
                original_timestamp=original_timestamp,
                temp_id=temp_id,
            )
        )
        if state.state == ConversationStatus.IDLE:
            state.state = ConversationStatus.QUEUED

        await self._store.set(conversation_id, state)

        logger.info(
            "Message added to queue",
            extra={
                "context": {
                    "conversation_id": conversation_id,
                    "message_id": message_id,
                    "queue_position": state.queue_length,
                }
            },
        )
        return EnqueueResult(
            queue_position=state.queue_length,
            queue_length=state.queue_length,
            state=state.state,
        )

    async def dequeue_next(self, conversation_id: str) -> QueueEntry | None:
        """Purge expired entries, then peek the head (it is not removed)."""
        state = await self._store.get(conversation_id)
        if not state.message_queue:
            return None

        expired = purge_expired(state, self._clock(), self._config.message_ttl)
        if expired:
            for entry in expired:
                logger.warning(
                    "Removing expired message from queue",
                    extra={
                        "context": {
                            "conversation_id": conversation_id,
                            "message_id": entry.message_id,
                            "age_seconds": int(entry.age_seconds(self._clock())),
                        }
                    },
                )
            await self._store.set(conversation_id, state)

        return state.message_queue[0] if state.message_queue else None

    async def remove(self, conversation_id: str, message_id: str) -> RemoveResult:
        """Delete an entry by id, wherever it sits in the queue."""
        state = await self._store.get(conversation_id)

        original_length = state.queue_length
        state.message_queue = [
            entry for entry in state.message_queue if entry.message_id != message_id
        ]
        state.recompute_state()
        state.last_processed_at = self._clock()

        await self._store.set(conversation_id, state)

        removed = state.queue_length < original_length
        logger.debug(
            "Message removed from queue",
            extra={
                "context": {
                    "conversation_id": conversation_id,
                    "message_id": message_id,
                    "remaining": state.queue_length,
                    "was_removed": removed,
                }
            },
        )
        return RemoveResult(
            queue_length=state.queue_length,
            has_more=state.queue_length > 0,
            state=state.state,
            removed=removed,
        )


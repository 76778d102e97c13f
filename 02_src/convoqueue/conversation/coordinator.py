"""MessageCoordinator: decides when an inbound message may reach inference."""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Coroutine, Protocol

from ..clock import Clock, parse_datetime, to_iso, utc_now
from ..config import QueueConfig
from ..errors import (
    InferenceError,
    MessageNotFoundError,
    QueueFullError,
    RetryLimitError,
    RetryNotAllowedError,
)
from ..event_bus import IEventBus
from ..formatter import (
    handle_current_message_with_history,
    reorganize_to_alternating_pattern,
    to_inference_messages,
    validate_conversation_pattern,
)
from ..llm import ILLMProvider
from ..logging_config import get_logger
from ..models import (
    ChatMessage,
    ConversationEvent,
    ConversationStatus,
    EventType,
    MessageStatus,
    MessageType,
    QueueEntry,
    Sender,
    format_conversation_id,
    is_ai_liker,
)
from ..state import (
    ConversationStateStore,
    ProcessingManager,
    QueueManager,
    StatusReporter,
)
from ..storage import IStorage

logger = get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 50


class IntakeStatus(str, Enum):
    PROCESSING = "processing"
    QUEUED = "queued"
    REJECTED = "rejected"


@dataclass
class IntakeResult:
    """What happened to an inbound message."""

    status: IntakeStatus
    conversation_id: str
    message_id: str
    queue_position: int | None = None
    queue_length: int | None = None
    error: str | None = None

    @property
    def accepted(self) -> bool:
        return self.status != IntakeStatus.REJECTED

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "conversation_id": self.conversation_id,
            "message_id": self.message_id,
            "queue_position": self.queue_position,
            "queue_length": self.queue_length,
            "error": self.error,
        }


@dataclass
class RetryResult:
    """Outcome of a direct retry of a failed message."""

    success: bool
    message_id: str
    retry_count: int
    retry_failed: bool = False
    response: ChatMessage | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message_id": self.message_id,
            "retry_count": self.retry_count,
            "retry_failed": self.retry_failed,
            "response": self.response.to_dict() if self.response else None,
            "error": self.error,
        }


class IMessageCoordinator(Protocol):
    """Message intake, queue draining and retries for all conversations."""

    async def handle_message(
        self,
        user_id: str,
        character_id: str,
        content: str,
        type: str = MessageType.TEXT.value,
        metadata: dict | None = None,
        message_id: str | None = None,
        original_timestamp: datetime | None = None,
        temp_id: str | None = None,
    ) -> IntakeResult:
        """Process the message now, queue it, or reject it when the queue is full."""
        ...

    async def process_next(self, conversation_id: str) -> ChatMessage | None:
        """Bind the head of the queue to processing, if nothing else is bound."""
        ...

    async def retry_message(
        self, user_id: str, character_id: str, message_id: str
    ) -> RetryResult:
        """Re-run inference for a message flagged with an LLM error."""
        ...

    async def like_message(
        self, conversation_id: str, message_id: str, liker_id: str, is_liked: bool = True
    ) -> ChatMessage:
        """Record or withdraw a like and notify participants."""
        ...

    async def force_process_next(self, conversation_id: str) -> ChatMessage | None:
        """Admin: reset processing, then process the next queued message."""
        ...

    async def start(self) -> None:
        ...

    async def stop(self) -> None:
        ...


class MessageCoordinator:
    """Runs the intake pipeline on top of the conversation state layer.

    Every state change goes through QueueManager / ProcessingManager, so
    the read-modify-write semantics of the shared store apply unchanged.
    Replies are produced in background tasks; `drain` waits for them.
    """

    def __init__(
        self,
        storage: IStorage,
        state_store: ConversationStateStore,
        event_bus: IEventBus,
        llm_provider: ILLMProvider,
        clock: Clock = utc_now,
        queue: QueueManager | None = None,
        processing: ProcessingManager | None = None,
        status: StatusReporter | None = None,
        system_prompt: str | None = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ):
        self._storage = storage
        self._state_store = state_store
        self._event_bus = event_bus
        self._llm = llm_provider
        self._clock = clock
        self._queue = queue or QueueManager(state_store, clock)
        self._processing = processing or ProcessingManager(state_store, clock)
        self._status = status or StatusReporter(state_store, clock)
        self._system_prompt = system_prompt
        self._history_limit = history_limit

        self._tasks: set[asyncio.Task] = set()
        self._running = False

    @property
    def config(self) -> QueueConfig:
        return self._state_store.config

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def start(self) -> None:
        logger.info("Starting MessageCoordinator")
        self._running = True

    async def stop(self) -> None:
        """Stop accepting messages and cancel in-flight replies."""
        logger.info("Stopping MessageCoordinator")
        self._running = False

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    async def drain(self) -> None:
        """Wait until no reply task is pending, including ones scheduled meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # Intake

    async def handle_message(
        self,
        user_id: str,
        character_id: str,
        content: str,
        type: str = MessageType.TEXT.value,
        metadata: dict | None = None,
        message_id: str | None = None,
        original_timestamp: datetime | None = None,
        temp_id: str | None = None,
    ) -> IntakeResult:
        """Process the message now, queue it, or reject it when the queue is full."""
        self._require_running()

        conversation_id = format_conversation_id(user_id, character_id)
        message_id = message_id or str(uuid.uuid4())
        timestamp = parse_datetime(original_timestamp) or self._clock()
        metadata = dict(metadata or {})
        if temp_id:
            metadata.setdefault("temp_id", temp_id)

        logger.info(
            "Message received",
            extra={
                "context": {
                    "conversation_id": conversation_id,
                    "message_id": message_id,
                    "type": type,
                }
            },
        )

        if await self._processing.can_process_immediately(conversation_id):
            message = ChatMessage(
                id=message_id,
                conversation_id=conversation_id,
                sender=Sender.USER.value,
                content=content,
                timestamp=timestamp,
                type=type,
                status=MessageStatus.PROCESSING.value,
                metadata=metadata,
            )
            await self._process_immediately(conversation_id, message)
            return IntakeResult(
                status=IntakeStatus.PROCESSING,
                conversation_id=conversation_id,
                message_id=message_id,
            )

        try:
            enqueued = await self._queue.enqueue(
                conversation_id,
                message_id,
                user_id,
                character_id,
                {"content": content, "type": type, "metadata": metadata},
                original_timestamp=timestamp,
                temp_id=temp_id,
            )
        except QueueFullError as e:
            return IntakeResult(
                status=IntakeStatus.REJECTED,
                conversation_id=conversation_id,
                message_id=message_id,
                error=str(e),
            )

        await self._emit(
            EventType.QUEUED,
            conversation_id,
            {
                "message_id": message_id,
                "temp_id": temp_id,
                "queue_position": enqueued.queue_position,
                "queue_length": enqueued.queue_length,
            },
        )
        await self._emit_queue_status(conversation_id)

        # Queued with nothing bound (e.g. after a reset): nobody else will drain it
        if enqueued.state == ConversationStatus.QUEUED:
            self._schedule(self.process_next(conversation_id))

        return IntakeResult(
            status=IntakeStatus.QUEUED,
            conversation_id=conversation_id,
            message_id=message_id,
            queue_position=enqueued.queue_position,
            queue_length=enqueued.queue_length,
        )

    async def _process_immediately(
        self, conversation_id: str, message: ChatMessage
    ) -> None:
        await self._processing.set_processing(conversation_id, message.id)
        try:
            await self._storage.save_message(message)
        except Exception:
            await self._processing.reset_processing(conversation_id)
            raise

        await self._emit(EventType.RECEIVE, conversation_id, {"message": message.to_dict()})
        await self._emit(
            EventType.PROCESSING,
            conversation_id,
            {"message_id": message.id, "started_at": to_iso(self._clock())},
        )
        self._schedule(self._respond(conversation_id, message))

    # Queue draining

    async def process_next(self, conversation_id: str) -> ChatMessage | None:
        """Bind the head of the queue to processing, if nothing else is bound."""
        state = await self._state_store.get(conversation_id)
        if state.currently_processing and not state.needs_reset:
            logger.debug(
                "Conversation busy, not processing next",
                extra={
                    "context": {
                        "conversation_id": conversation_id,
                        "currently_processing": state.currently_processing,
                    }
                },
            )
            return None

        entry = await self._queue.dequeue_next(conversation_id)
        if entry is None:
            return None

        try:
            await self._processing.set_processing(conversation_id, entry.message_id)
            message = self._message_from_entry(conversation_id, entry)
            await self._storage.save_message(message)
            await self._queue.remove(conversation_id, entry.message_id)
        except Exception as e:
            logger.error(
                "Error processing queued message",
                extra={
                    "context": {
                        "conversation_id": conversation_id,
                        "message_id": entry.message_id,
                        "error": str(e),
                    }
                },
                exc_info=True,
            )
            await self._processing.reset_processing(conversation_id)
            raise

        logger.info(
            "Processing queued message",
            extra={
                "context": {
                    "conversation_id": conversation_id,
                    "message_id": message.id,
                    "waited_seconds": int(entry.age_seconds(self._clock())),
                }
            },
        )

        await self._emit(EventType.RECEIVE, conversation_id, {"message": message.to_dict()})
        await self._emit(
            EventType.PROCESSING,
            conversation_id,
            {
                "message_id": message.id,
                "temp_id": entry.temp_id,
                "started_at": to_iso(self._clock()),
            },
        )
        await self._emit_queue_status(conversation_id)

        self._schedule(self._respond(conversation_id, message))
        return message

    async def force_process_next(self, conversation_id: str) -> ChatMessage | None:
        """Admin: reset processing, then process the next queued message."""
        logger.warning(
            "Force processing next message",
            extra={"context": {"conversation_id": conversation_id}},
        )
        await self._processing.reset_processing(conversation_id)
        return await self.process_next(conversation_id)

    @staticmethod
    def _message_from_entry(conversation_id: str, entry: QueueEntry) -> ChatMessage:
        data = entry.message_data
        metadata = dict(data.get("metadata") or {})
        if entry.temp_id:
            metadata.setdefault("temp_id", entry.temp_id)
        return ChatMessage(
            id=entry.message_id,
            conversation_id=conversation_id,
            sender=Sender.USER.value,
            content=data.get("content") or "",
            # Keep the send time so history order matches what the user saw
            timestamp=entry.original_timestamp or entry.queued_at,
            type=data.get("type") or MessageType.TEXT.value,
            status=MessageStatus.PROCESSING.value,
            metadata=metadata,
        )

    # Replies

    async def _respond(self, conversation_id: str, message: ChatMessage) -> None:
        try:
            try:
                text = await self._generate_reply(conversation_id, message)
            except InferenceError as e:
                await self._record_llm_error(conversation_id, message.id, e)
            else:
                await self._deliver_reply(conversation_id, message.id, text)
        finally:
            await self._processing.complete_processing(conversation_id, message.id)

        await self.process_next(conversation_id)

    async def _generate_reply(self, conversation_id: str, message: ChatMessage) -> str:
        history = await self._storage.get_messages(conversation_id, limit=self._history_limit)
        history = [m for m in history if m.id != message.id]

        turns = handle_current_message_with_history(
            reorganize_to_alternating_pattern(history), message
        )

        validation = validate_conversation_pattern(turns)
        if not validation.is_valid:
            logger.debug(
                "Conversation pattern issues",
                extra={
                    "context": {
                        "conversation_id": conversation_id,
                        "issues": validation.issues,
                    }
                },
            )

        return await self._llm.complete(
            to_inference_messages(turns), system=self._system_prompt
        )

    async def _deliver_reply(
        self, conversation_id: str, user_message_id: str, text: str
    ) -> ChatMessage:
        reply = ChatMessage(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            sender=Sender.CHARACTER.value,
            content=text,
            timestamp=self._clock(),
            status=MessageStatus.SENT.value,
            reply_to_message_id=user_message_id,
        )
        await self._storage.save_message(reply)

        user_message = await self._storage.get_message(user_message_id)
        if user_message is not None:
            user_message.status = MessageStatus.DELIVERED.value
            user_message.clear_llm_error()
            await self._storage.update_message(user_message)

        logger.info(
            "Reply delivered",
            extra={
                "context": {
                    "conversation_id": conversation_id,
                    "message_id": reply.id,
                    "reply_to_message_id": user_message_id,
                }
            },
        )

        await self._emit(EventType.RECEIVE, conversation_id, {"message": reply.to_dict()})
        await self._emit(
            EventType.RESPONSE_LINKED,
            conversation_id,
            {"message_id": reply.id, "reply_to_message_id": user_message_id},
        )
        return reply

    async def _record_llm_error(
        self,
        conversation_id: str,
        message_id: str,
        error: InferenceError,
        retry_failed: bool = False,
    ) -> None:
        logger.warning(
            "Inference failed",
            extra={
                "context": {
                    "conversation_id": conversation_id,
                    "message_id": message_id,
                    "error_type": error.error_type,
                    "error": str(error),
                    "retry_failed": retry_failed,
                }
            },
        )

        now = self._clock()
        retry_count = 0
        message = await self._storage.get_message(message_id)
        if message is not None:
            message.has_llm_error = True
            message.error_type = error.error_type
            message.error_timestamp = now
            message.status = MessageStatus.FAILED.value
            retry_count = message.retry_count
            await self._storage.update_message(message)

        await self._emit(
            EventType.LLM_ERROR,
            conversation_id,
            {
                "message_id": message_id,
                "error_type": error.error_type,
                "error": str(error),
                "error_timestamp": to_iso(now),
                "retry_count": retry_count,
                "retry_failed": retry_failed,
            },
        )

    # Retries and likes

    async def retry_message(
        self, user_id: str, character_id: str, message_id: str
    ) -> RetryResult:
        """Re-run inference for a message flagged with an LLM error.

        Goes straight to the provider; the queue and processing state are
        not involved. Only user messages flagged with an LLM error qualify;
        anything else raises RetryNotAllowedError. Raises RetryLimitError
        once max_retries is used up.
        """
        self._require_running()
        conversation_id = format_conversation_id(user_id, character_id)

        message = await self._storage.get_message(message_id)
        if message is None or message.conversation_id != conversation_id:
            raise MessageNotFoundError(f"Message {message_id} not found")

        if message.sender != Sender.USER.value or not message.has_llm_error:
            logger.warning(
                "Retry refused for message without LLM error",
                extra={"context": {"conversation_id": conversation_id, "message_id": message_id}},
            )
            raise RetryNotAllowedError("Message does not have an LLM error to retry")

        max_retries = self.config.max_retries
        if message.retry_count >= max_retries:
            logger.warning(
                "Retry limit reached",
                extra={
                    "context": {
                        "conversation_id": conversation_id,
                        "message_id": message_id,
                        "retry_count": message.retry_count,
                    }
                },
            )
            raise RetryLimitError(message_id, message.retry_count, max_retries)

        message.retry_count += 1
        message.status = MessageStatus.RETRYING.value
        await self._storage.update_message(message)

        await self._emit(
            EventType.STATUS,
            conversation_id,
            {
                "message_id": message_id,
                "status": MessageStatus.RETRYING.value,
                "retry_count": message.retry_count,
                "timestamp": to_iso(self._clock()),
            },
        )

        try:
            text = await self._generate_reply(conversation_id, message)
        except InferenceError as e:
            await self._record_llm_error(conversation_id, message_id, e, retry_failed=True)
            return RetryResult(
                success=False,
                message_id=message_id,
                retry_count=message.retry_count,
                retry_failed=True,
                error=str(e),
            )

        reply = await self._deliver_reply(conversation_id, message_id, text)
        logger.info(
            "Message retry completed",
            extra={
                "context": {
                    "conversation_id": conversation_id,
                    "message_id": message_id,
                    "retry_count": message.retry_count,
                }
            },
        )
        return RetryResult(
            success=True,
            message_id=message_id,
            retry_count=message.retry_count,
            response=reply,
        )

    async def like_message(
        self, conversation_id: str, message_id: str, liker_id: str, is_liked: bool = True
    ) -> ChatMessage:
        """Record or withdraw a like and notify participants."""
        message = await self._storage.set_like(message_id, liker_id, is_liked)
        await self._emit(
            EventType.LIKED,
            conversation_id,
            {
                "message_id": message_id,
                "liker_id": liker_id,
                "is_liked": is_liked,
                "is_ai_like": is_ai_liker(liker_id),
                "likes": dict(message.likes),
            },
        )
        return message

    # Helpers

    async def _emit(self, event_type: EventType, conversation_id: str, payload: dict) -> None:
        await self._event_bus.publish(
            ConversationEvent(
                type=event_type,
                conversation_id=conversation_id,
                payload=payload,
                timestamp=self._clock(),
            )
        )

    async def _emit_queue_status(self, conversation_id: str) -> None:
        status = await self._status.get_queue_status(conversation_id)
        status.pop("conversation_id", None)
        await self._emit(EventType.QUEUE_STATUS, conversation_id, status)

    def _schedule(self, coro: Coroutine) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Reply task failed: {error}",
                exc_info=(type(error), error, error.__traceback__),
            )

    def _require_running(self) -> None:
        if not self._running:
            raise RuntimeError("MessageCoordinator not started")

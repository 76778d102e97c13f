"""Client-side timeline that reconciles optimistic sends with server events."""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from ..clock import Clock, parse_datetime, to_iso, utc_now
from ..errors import RetryLimitError, SendError
from ..logging_config import get_logger
from ..models import (
    ChatMessage,
    ConversationStatus,
    EventType,
    MessageStatus,
    MessageType,
    Sender,
    parse_conversation_id,
)

logger = get_logger(__name__)

DEFAULT_MAX_RETRIES = 3

_PENDING_STATUSES = {MessageStatus.QUEUED.value, MessageStatus.PROCESSING.value}


@dataclass
class TimelineMessage(ChatMessage):
    """ChatMessage plus the view state only the client tracks."""

    queue_position: int | None = None
    processing_started_at: datetime | None = None
    is_retrying: bool = False
    retry_failed: bool = False
    is_linked_response: bool = False


class IClientTransport(Protocol):
    """Request/acknowledge channel to the coordinator.

    Methods return the acknowledgement payload; they raise SendError only
    when no acknowledgement could be obtained.
    """

    async def send_message(self, payload: dict) -> dict:
        ...

    async def retry_message(
        self, conversation_id: str, message_id: str, character_id: str
    ) -> dict:
        ...

    async def like_message(
        self, conversation_id: str, message_id: str, is_liked: bool
    ) -> dict:
        ...


class ChatStore:
    """Per-user chat timeline keyed by conversation id.

    Server events are applied idempotently and matched by message id only;
    identical text sent twice is two messages.
    """

    def __init__(
        self,
        transport: IClientTransport,
        user_id: str,
        max_retries: int = DEFAULT_MAX_RETRIES,
        clock: Clock = utc_now,
    ):
        self._transport = transport
        self._user_id = user_id
        self._max_retries = max_retries
        self._clock = clock

        self._messages: dict[str, list[TimelineMessage]] = {}
        self._sending: set[str] = set()
        self._failed: set[str] = set()
        self._llm_errors: set[str] = set()
        self._queue_status: dict[str, dict] = {}
        self._relationships: dict[str, str] = {}  # response id -> original id

        self._handlers = {
            EventType.RECEIVE.value: self.handle_message_received,
            EventType.STATUS.value: self.handle_message_status,
            EventType.QUEUED.value: self.handle_message_queued,
            EventType.PROCESSING.value: self.handle_message_processing,
            EventType.QUEUE_STATUS.value: self.handle_queue_status,
            EventType.RESPONSE_LINKED.value: self.handle_response_linked,
            EventType.LLM_ERROR.value: self.handle_llm_error,
            EventType.LIKED.value: self.handle_message_liked,
        }

    @property
    def user_id(self) -> str:
        return self._user_id

    # Outbound

    async def send_message(
        self,
        conversation_id: str,
        content: str,
        type: str = MessageType.TEXT.value,
        metadata: dict | None = None,
    ) -> TimelineMessage:
        """Render optimistically, then send; marks the message failed on error."""
        _, character_id = parse_conversation_id(conversation_id)

        message = TimelineMessage(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            sender=Sender.USER.value,
            content=content,
            timestamp=self._clock(),
            type=type,
            status=MessageStatus.SENDING.value,
            metadata=dict(metadata or {}),
        )
        self._messages.setdefault(conversation_id, []).append(message)
        self._sending.add(message.id)

        try:
            ack = await self._transport.send_message(
                {
                    "conversation_id": conversation_id,
                    "character_id": character_id,
                    "content": content,
                    "type": type,
                    "metadata": message.metadata,
                    "message_id": message.id,
                    "timestamp": to_iso(message.timestamp),
                }
            )
        except SendError as e:
            self._mark_failed(message, str(e))
            return message

        if not ack.get("success"):
            self._mark_failed(message, ack.get("error") or "Message rejected")
            return message

        self._sending.discard(message.id)
        # queued/processing events may already have arrived ahead of the ack
        if message.status == MessageStatus.SENDING.value:
            message.status = MessageStatus.SENT.value
        return message

    async def retry_message(
        self, conversation_id: str, message_id: str
    ) -> TimelineMessage | None:
        """Retry an LLM-error message in place, or resend a failed one.

        Raises RetryLimitError when the message has used up its retries;
        after that it no longer counts as retryable.
        """
        message = self._find(conversation_id, message_id)
        if message is None:
            logger.warning(
                "Retry requested for unknown message",
                extra={"context": {"conversation_id": conversation_id, "message_id": message_id}},
            )
            return None

        if message_id in self._llm_errors:
            return await self._retry_llm_error(conversation_id, message)

        if message_id in self._failed:
            self._failed.discard(message_id)
            self._messages[conversation_id].remove(message)
            return await self.send_message(
                conversation_id, message.content, message.type, message.metadata
            )

        logger.warning(
            "Message is not in a retryable state",
            extra={"context": {"message_id": message_id, "status": message.status}},
        )
        return None

    async def _retry_llm_error(
        self, conversation_id: str, message: TimelineMessage
    ) -> TimelineMessage:
        if message.retry_count >= self._max_retries:
            self._stop_retrying(message)
            raise RetryLimitError(message.id, message.retry_count, self._max_retries)

        _, character_id = parse_conversation_id(conversation_id)
        ack = await self._transport.retry_message(conversation_id, message.id, character_id)

        if ack.get("success"):
            message.retry_count = ack.get("retry_count", message.retry_count + 1)
            message.is_retrying = False
            return message

        if ack.get("retry_limit_reached"):
            max_retries = ack.get("max_retries", self._max_retries)
            message.retry_count = max(ack.get("retry_count", message.retry_count), max_retries)
            self._stop_retrying(message)
            raise RetryLimitError(message.id, message.retry_count, max_retries)

        if ack.get("retry_failed"):
            message.retry_count = ack.get("retry_count", message.retry_count)
            message.retry_failed = True
            message.is_retrying = False
            message.status = MessageStatus.FAILED.value
            return message

        raise SendError(ack.get("error") or "Retry failed", ack)

    async def like_message(
        self, conversation_id: str, message_id: str, is_liked: bool = True
    ) -> bool:
        """Toggle the user's own like; reverted if the server refuses it."""
        message = self._find(conversation_id, message_id)
        if message is None:
            return False

        self._apply_like(message, self._user_id, is_liked)
        try:
            ack = await self._transport.like_message(conversation_id, message_id, is_liked)
        except SendError:
            self._apply_like(message, self._user_id, not is_liked)
            raise

        if not ack.get("success"):
            self._apply_like(message, self._user_id, not is_liked)
            return False
        return True

    # Server events

    def handle_event(self, event: str, data: dict) -> None:
        """Dispatch one server-pushed event by wire name."""
        handler = self._handlers.get(event)
        if handler is None:
            logger.debug(f"Ignoring unknown event: {event}")
            return
        handler(data)

    def handle_message_received(self, data: dict) -> bool:
        """Insert a finished message; returns False when it was already present."""
        conversation_id = data["conversation_id"]
        message = TimelineMessage.from_dict(data["message"])
        messages = self._messages.setdefault(conversation_id, [])

        if any(m.id == message.id for m in messages):
            return False

        self._sending.discard(message.id)
        if message.has_llm_error:
            self._llm_errors.add(message.id)
        messages.append(message)
        messages.sort(key=lambda m: m.timestamp)

        if message.sender == Sender.CHARACTER.value:
            status = self.get_queue_status(conversation_id)
            status["currently_processing"] = None
            status["state"] = (
                ConversationStatus.QUEUED.value
                if status.get("queue_length", 0) > 0
                else ConversationStatus.IDLE.value
            )
            self._queue_status[conversation_id] = status

            if message.reply_to_message_id:
                self._resolve_reply(conversation_id, message.reply_to_message_id)
            else:
                for m in messages:
                    if m.sender == Sender.USER.value and m.status in _PENDING_STATUSES:
                        m.status = MessageStatus.DELIVERED.value
        return True

    def _resolve_reply(self, conversation_id: str, original_id: str) -> None:
        original = self._find(conversation_id, original_id)
        if original is None:
            return
        original.status = MessageStatus.DELIVERED.value
        original.queue_position = None
        if original.has_llm_error or original_id in self._llm_errors:
            self._llm_errors.discard(original_id)
            original.clear_llm_error()
            original.is_retrying = False
            original.retry_failed = False

    def handle_message_status(self, data: dict) -> None:
        message = self._find(data["conversation_id"], data["message_id"])
        if message is None:
            return
        message.status = data["status"]
        if data["status"] == MessageStatus.RETRYING.value:
            message.is_retrying = True
            message.retry_count = data.get("retry_count", message.retry_count)

    def handle_message_queued(self, data: dict) -> None:
        conversation_id = data["conversation_id"]
        position = data.get("queue_position")

        message = self._find(conversation_id, data["message_id"])
        if message is not None:
            message.status = MessageStatus.QUEUED.value
            message.queue_position = position

        status = self.get_queue_status(conversation_id)
        status["queue_length"] = data.get("queue_length", position or 0)
        status["has_queued_messages"] = True
        self._queue_status[conversation_id] = status

    def handle_message_processing(self, data: dict) -> None:
        conversation_id = data["conversation_id"]
        message_id = data["message_id"]

        message = self._find(conversation_id, message_id)
        if message is not None:
            message.status = MessageStatus.PROCESSING.value
            message.queue_position = None
            message.processing_started_at = parse_datetime(data.get("started_at"))

        status = self.get_queue_status(conversation_id)
        status["currently_processing"] = message_id
        status["state"] = ConversationStatus.PROCESSING.value
        self._queue_status[conversation_id] = status

    def handle_queue_status(self, data: dict) -> None:
        queue_length = data.get("queue_length", 0)
        self._queue_status[data["conversation_id"]] = {
            "queue_length": queue_length,
            "state": data.get("state", ConversationStatus.IDLE.value),
            "currently_processing": data.get("currently_processing"),
            "has_queued_messages": queue_length > 0,
        }

    def handle_response_linked(self, data: dict) -> None:
        response_id = data["message_id"]
        original_id = data["reply_to_message_id"]
        self._relationships[response_id] = original_id

        response = self._find(data["conversation_id"], response_id)
        if response is not None:
            response.reply_to_message_id = original_id
            response.is_linked_response = True

    def handle_llm_error(self, data: dict) -> None:
        message_id = data["message_id"]
        self._llm_errors.add(message_id)

        message = self._find(data["conversation_id"], message_id)
        if message is None:
            return
        message.has_llm_error = True
        message.error_type = data.get("error_type")
        message.error_timestamp = parse_datetime(data.get("error_timestamp")) or self._clock()
        message.status = MessageStatus.FAILED.value
        message.is_retrying = False
        message.retry_failed = bool(data.get("retry_failed", False))
        message.retry_count = max(message.retry_count, data.get("retry_count", 0))

    def handle_message_liked(self, data: dict) -> None:
        message = self._find(data["conversation_id"], data["message_id"])
        if message is None:
            return
        self._apply_like(message, data["liker_id"], data.get("is_liked", True))

    # Queries

    def get_messages(self, conversation_id: str) -> list[TimelineMessage]:
        return list(self._messages.get(conversation_id, []))

    def get_queue_status(self, conversation_id: str) -> dict:
        return dict(
            self._queue_status.get(conversation_id)
            or {
                "queue_length": 0,
                "state": ConversationStatus.IDLE.value,
                "currently_processing": None,
                "has_queued_messages": False,
            }
        )

    def has_llm_error(self, message_id: str) -> bool:
        return message_id in self._llm_errors

    def is_failed(self, message_id: str) -> bool:
        return message_id in self._failed

    def is_sending(self, message_id: str) -> bool:
        return message_id in self._sending

    def can_retry(self, conversation_id: str, message_id: str) -> bool:
        """Whether the UI should offer a retry for this message."""
        if message_id in self._failed:
            return True
        if message_id not in self._llm_errors:
            return False
        message = self._find(conversation_id, message_id)
        return message is not None and message.retry_count < self._max_retries

    def is_message_processing(self, conversation_id: str, message_id: str) -> bool:
        if self.get_queue_status(conversation_id)["currently_processing"] == message_id:
            return True
        message = self._find(conversation_id, message_id)
        return message is not None and message.status == MessageStatus.PROCESSING.value

    def get_message_relationship(self, message_id: str) -> str | None:
        """Id of the user message a reply answers, if linked."""
        return self._relationships.get(message_id)

    def should_show_reply_context(self, conversation_id: str, message_id: str) -> bool:
        """Show "replying to" only when the reply follows several unanswered user messages."""
        messages = self._messages.get(conversation_id, [])
        index = next((i for i, m in enumerate(messages) if m.id == message_id), None)
        if index is None:
            return False

        message = messages[index]
        if message.sender != Sender.CHARACTER.value:
            return False

        original_id = message.reply_to_message_id or self._relationships.get(message_id)
        if not original_id or self._find(conversation_id, original_id) is None:
            return False

        unanswered = 0
        for previous in reversed(messages[:index]):
            if previous.sender != Sender.USER.value:
                break
            unanswered += 1
        return unanswered > 1

    def is_liked_by(self, conversation_id: str, message_id: str, liker_id: str) -> bool:
        message = self._find(conversation_id, message_id)
        return message is not None and message.likes.get(liker_id, False)

    # Helpers

    def _find(self, conversation_id: str, message_id: str) -> TimelineMessage | None:
        for message in self._messages.get(conversation_id, []):
            if message.id == message_id:
                return message
        return None

    def _mark_failed(self, message: TimelineMessage, reason: str) -> None:
        logger.warning(
            "Failed to send message",
            extra={"context": {"message_id": message.id, "error": reason}},
        )
        self._sending.discard(message.id)
        self._failed.add(message.id)
        message.status = MessageStatus.FAILED.value

    def _stop_retrying(self, message: TimelineMessage) -> None:
        message.retry_failed = True
        message.is_retrying = False

    @staticmethod
    def _apply_like(message: ChatMessage, liker_id: str, is_liked: bool) -> None:
        if is_liked:
            message.likes[liker_id] = True
        else:
            message.likes.pop(liker_id, None)

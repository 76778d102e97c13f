"""Chat message models shared by the server and the client timeline."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..clock import parse_datetime, to_iso

AI_LIKER_PREFIX = "ai_"
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class Sender(str, Enum):
    USER = "user"
    CHARACTER = "character"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    SYSTEM = "system"


class MessageStatus(str, Enum):
    """Delivery status of a message as seen by the client."""

    SENDING = "sending"
    QUEUED = "queued"
    PROCESSING = "processing"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    RETRYING = "retrying"


def ai_liker_id(character_id: str) -> str:
    """Liker id used when a character likes a message."""
    return f"{AI_LIKER_PREFIX}{character_id}"


def is_ai_liker(liker_id: str) -> bool:
    return liker_id.startswith(AI_LIKER_PREFIX)


@dataclass
class ChatMessage:
    """A single message in a user-character conversation.

    `sender` is kept as a plain string so that malformed history can reach
    the formatter, which skips unknown senders instead of failing.
    """

    id: str
    conversation_id: str
    sender: str  # "user" | "character"
    content: str
    timestamp: datetime
    type: str = MessageType.TEXT.value
    status: str = MessageStatus.SENT.value
    reply_to_message_id: str | None = None
    has_llm_error: bool = False
    error_type: str | None = None
    error_timestamp: datetime | None = None
    retry_count: int = 0
    likes: dict[str, bool] = field(default_factory=dict)
    metadata: dict = field(default_factory=dict)
    # Set by the formatter when several user messages were folded into one turn
    combined_count: int | None = None

    def clear_llm_error(self) -> None:
        self.has_llm_error = False
        self.error_type = None
        self.error_timestamp = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "sender": self.sender,
            "content": self.content,
            "timestamp": to_iso(self.timestamp),
            "type": self.type,
            "status": self.status,
            "reply_to_message_id": self.reply_to_message_id,
            "has_llm_error": self.has_llm_error,
            "error_type": self.error_type,
            "error_timestamp": to_iso(self.error_timestamp),
            "retry_count": self.retry_count,
            "likes": dict(self.likes),
            "metadata": dict(self.metadata),
        }
        if self.combined_count is not None:
            data["combined_count"] = self.combined_count
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatMessage":
        return cls(
            id=data["id"],
            conversation_id=data.get("conversation_id", ""),
            sender=data.get("sender", ""),
            content=data.get("content") or "",
            timestamp=parse_datetime(data.get("timestamp")) or _EPOCH,
            type=data.get("type") or MessageType.TEXT.value,
            status=data.get("status") or MessageStatus.SENT.value,
            reply_to_message_id=data.get("reply_to_message_id"),
            has_llm_error=bool(data.get("has_llm_error", False)),
            error_type=data.get("error_type"),
            error_timestamp=parse_datetime(data.get("error_timestamp")),
            retry_count=int(data.get("retry_count") or 0),
            likes=dict(data.get("likes") or {}),
            metadata=dict(data.get("metadata") or {}),
            combined_count=data.get("combined_count"),
        )

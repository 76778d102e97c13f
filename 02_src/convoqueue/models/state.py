"""Conversation state and queue entry models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..clock import parse_datetime, to_iso
from ..errors import StateValidationError


class ConversationStatus(str, Enum):
    """Lifecycle states of a conversation."""

    IDLE = "idle"
    PROCESSING = "processing"
    QUEUED = "queued"


def format_conversation_id(user_id: str, character_id: str) -> str:
    """Build the conversation key for a user-character pair."""
    return f"{user_id}_{character_id}"


def parse_conversation_id(conversation_id: str) -> tuple[str, str]:
    """Split a conversation key into (user_id, character_id)."""
    user_id, sep, character_id = conversation_id.partition("_")
    if not sep or not user_id or not character_id:
        raise ValueError(f"Invalid conversation ID format: {conversation_id!r}")
    return user_id, character_id


@dataclass
class QueueEntry:
    """A pending inbound message waiting to be bound to processing."""

    message_id: str
    user_id: str
    character_id: str
    message_data: dict
    queued_at: datetime  # server receipt time, drives expiry
    original_timestamp: datetime | None = None  # client send time, drives ordering
    temp_id: str | None = None

    def age_seconds(self, now: datetime) -> float:
        return (now - self.queued_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_id": self.message_id,
            "user_id": self.user_id,
            "character_id": self.character_id,
            "message_data": self.message_data,
            "queued_at": to_iso(self.queued_at),
            "original_timestamp": to_iso(self.original_timestamp),
            "temp_id": self.temp_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueueEntry":
        if not isinstance(data, dict):
            raise StateValidationError("Queue entry must be an object")
        if not data.get("message_id"):
            raise StateValidationError("Queue entry missing message_id")
        try:
            queued_at = parse_datetime(data.get("queued_at"))
            original_timestamp = parse_datetime(data.get("original_timestamp"))
        except ValueError as e:
            raise StateValidationError(f"Invalid queue entry timestamp: {e}") from e
        if queued_at is None:
            raise StateValidationError(
                f"Queue entry {data['message_id']} missing queued_at"
            )

        return cls(
            message_id=data["message_id"],
            user_id=data.get("user_id", ""),
            character_id=data.get("character_id", ""),
            message_data=data.get("message_data") or {},
            queued_at=queued_at,
            original_timestamp=original_timestamp,
            temp_id=data.get("temp_id"),
        )


@dataclass
class ConversationState:
    """Per-conversation coordination state held in the shared KV store."""

    conversation_id: str
    state: ConversationStatus = ConversationStatus.IDLE
    message_queue: list[QueueEntry] = field(default_factory=list)
    currently_processing: str | None = None
    processing_started_at: datetime | None = None
    last_processed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    # Read-time annotation, never persisted
    needs_reset: bool = False

    @property
    def queue_length(self) -> int:
        return len(self.message_queue)

    def recompute_state(self) -> ConversationStatus:
        """Derive the status from the queue and the processing binding."""
        if self.currently_processing:
            self.state = ConversationStatus.PROCESSING
        elif self.message_queue:
            self.state = ConversationStatus.QUEUED
        else:
            self.state = ConversationStatus.IDLE
        return self.state

    def invariant_violations(self) -> list[str]:
        """List broken consistency rules between state, queue and binding."""
        issues = []
        if self.state == ConversationStatus.PROCESSING:
            if not self.currently_processing:
                issues.append("processing without a bound message")
        elif self.state == ConversationStatus.IDLE:
            if self.message_queue:
                issues.append("idle with a non-empty queue")
            if self.currently_processing:
                issues.append("idle with a bound message")
        elif self.state == ConversationStatus.QUEUED:
            if not self.message_queue:
                issues.append("queued with an empty queue")
            if self.currently_processing:
                issues.append("queued with a bound message")
        return issues

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "state": self.state.value,
            "message_queue": [entry.to_dict() for entry in self.message_queue],
            "currently_processing": self.currently_processing,
            "processing_started_at": to_iso(self.processing_started_at),
            "last_processed_at": to_iso(self.last_processed_at),
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConversationState":
        """Parse a stored blob, filling defaults for missing optional fields."""
        if not isinstance(data, dict):
            raise StateValidationError("Conversation state must be an object")
        conversation_id = data.get("conversation_id")
        if not conversation_id:
            raise StateValidationError("Conversation state missing conversation_id")

        raw_state = data.get("state") or ConversationStatus.IDLE.value
        try:
            status = ConversationStatus(raw_state)
        except ValueError as e:
            raise StateValidationError(f"Unknown conversation state: {raw_state!r}") from e

        raw_queue = data.get("message_queue") or []
        if not isinstance(raw_queue, list):
            raise StateValidationError("message_queue must be a list")

        try:
            return cls(
                conversation_id=conversation_id,
                state=status,
                message_queue=[QueueEntry.from_dict(item) for item in raw_queue],
                currently_processing=data.get("currently_processing") or None,
                processing_started_at=parse_datetime(data.get("processing_started_at")),
                last_processed_at=parse_datetime(data.get("last_processed_at")),
                created_at=parse_datetime(data.get("created_at")),
                updated_at=parse_datetime(data.get("updated_at")),
            )
        except ValueError as e:
            if isinstance(e, StateValidationError):
                raise
            raise StateValidationError(f"Invalid timestamp in state: {e}") from e

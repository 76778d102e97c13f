"""Core data models for the conversation coordinator."""

from .events import ConversationEvent, EventType
from .messages import (
    ChatMessage,
    MessageStatus,
    MessageType,
    Sender,
    ai_liker_id,
    is_ai_liker,
)
from .state import (
    ConversationState,
    ConversationStatus,
    QueueEntry,
    format_conversation_id,
    parse_conversation_id,
)

__all__ = [
    # State
    "ConversationState",
    "ConversationStatus",
    "QueueEntry",
    "format_conversation_id",
    "parse_conversation_id",
    # Messages
    "ChatMessage",
    "MessageStatus",
    "MessageType",
    "Sender",
    "ai_liker_id",
    "is_ai_liker",
    # Events
    "ConversationEvent",
    "EventType",
]

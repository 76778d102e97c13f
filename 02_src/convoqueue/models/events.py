"""Conversation events relayed to clients."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ..clock import utc_now


class EventType(str, Enum):
    """Event names on the wire."""

    RECEIVE = "message:receive"
    STATUS = "message:status"
    QUEUED = "message:queued"
    PROCESSING = "message:processing"
    QUEUE_STATUS = "queue:status"
    RESPONSE_LINKED = "message:response_linked"
    LLM_ERROR = "message:llm_error"
    LIKED = "message:liked"


@dataclass
class ConversationEvent:
    """An event addressed to the participants of one conversation."""

    type: EventType
    conversation_id: str
    payload: dict  # varies by type
    timestamp: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_wire(self) -> dict:
        return {
            "event": self.type.value,
            "data": {"conversation_id": self.conversation_id, **self.payload},
        }

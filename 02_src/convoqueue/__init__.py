"""Conversation state and message queue coordinator."""

from .app import Application, IApplication
from .config import QueueConfig
from .conversation import (
    IMessageCoordinator,
    IntakeResult,
    IntakeStatus,
    MessageCoordinator,
    RetryResult,
)
from .errors import (
    CoordinatorError,
    InferenceError,
    MessageNotFoundError,
    QueueFullError,
    RetryLimitError,
    RetryNotAllowedError,
    SendError,
    StateValidationError,
    StuckProcessingError,
)
from .event_bus import EventBus, IEventBus
from .kv import IKeyValueStore, RedisKeyValueStore, SqliteKeyValueStore
from .llm import ILLMProvider, LLMProvider
from .models import (
    ChatMessage,
    ConversationEvent,
    ConversationState,
    ConversationStatus,
    EventType,
    MessageStatus,
    QueueEntry,
)
from .state import (
    CleanupManager,
    ConversationStateStore,
    ProcessingManager,
    QueueManager,
    StatusReporter,
)
from .storage import IStorage, Storage

__all__ = [
    # Application
    "Application",
    "IApplication",
    "QueueConfig",
    # Models
    "ChatMessage",
    "ConversationEvent",
    "ConversationState",
    "ConversationStatus",
    "EventType",
    "MessageStatus",
    "QueueEntry",
    # State layer
    "ConversationStateStore",
    "QueueManager",
    "ProcessingManager",
    "CleanupManager",
    "StatusReporter",
    # Components
    "IKeyValueStore",
    "SqliteKeyValueStore",
    "RedisKeyValueStore",
    "IStorage",
    "Storage",
    "IEventBus",
    "EventBus",
    "ILLMProvider",
    "LLMProvider",
    "IMessageCoordinator",
    "MessageCoordinator",
    "IntakeResult",
    "IntakeStatus",
    "RetryResult",
    # Errors
    "CoordinatorError",
    "QueueFullError",
    "RetryLimitError",
    "RetryNotAllowedError",
    "StateValidationError",
    "StuckProcessingError",
    "MessageNotFoundError",
    "InferenceError",
    "SendError",
]

"""Conversation state, queue, processing and cleanup management."""

from .cleanup import CleanupManager, CleanupReport
from .processing import ProcessingManager
from .queue import EnqueueResult, QueueManager, RemoveResult, purge_expired
from .status import StatusReporter
from .store import ConversationStateStore

__all__ = [
    "ConversationStateStore",
    "QueueManager",
    "EnqueueResult",
    "RemoveResult",
    "purge_expired",
    "ProcessingManager",
    "CleanupManager",
    "CleanupReport",
    "StatusReporter",
]

"""Error types raised by the coordinator."""


class CoordinatorError(Exception):
    """Base class for coordinator errors."""


class QueueFullError(CoordinatorError):
    """Conversation queue is at capacity; the message was not recorded."""

    def __init__(self, conversation_id: str, max_size: int):
        self.conversation_id = conversation_id
        self.max_size = max_size
        super().__init__(f"Queue full. Maximum {max_size} messages allowed.")


class RetryLimitError(CoordinatorError):
    """Message has used up its retries."""

    def __init__(self, message_id: str, retry_count: int, max_retries: int):
        self.message_id = message_id
        self.retry_count = retry_count
        self.max_retries = max_retries
        super().__init__(f"Maximum retry limit reached ({max_retries} retries)")


class RetryNotAllowedError(CoordinatorError, ValueError):
    """Message has no LLM error to retry."""


class StateValidationError(CoordinatorError, ValueError):
    """Stored conversation state blob is malformed."""


class StuckProcessingError(CoordinatorError):
    """Conversation still reads as stuck after a reset."""


class MessageNotFoundError(CoordinatorError, LookupError):
    """Referenced chat message does not exist."""


class InferenceError(CoordinatorError):
    """The inference provider failed to produce a reply."""

    def __init__(self, message: str, error_type: str = "llm_error"):
        self.error_type = error_type
        super().__init__(message)


class SendError(CoordinatorError):
    """Client-side: the server rejected or failed to acknowledge a request."""

    def __init__(self, message: str, ack: dict | None = None):
        self.ack = ack or {}
        super().__init__(message)

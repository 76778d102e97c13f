"""ProcessingManager: idle / processing / queued transitions."""

from ..clock import Clock, utc_now
from ..errors import StuckProcessingError
from ..logging_config import get_logger
from ..models import ConversationState, ConversationStatus
from .store import ConversationStateStore

logger = get_logger(__name__)


class ProcessingManager:
    """Binds messages to processing and releases them.

    Store failures propagate to the caller; nothing here retries.
    """

    def __init__(self, store: ConversationStateStore, clock: Clock = utc_now):
        self._store = store
        self._clock = clock

    async def can_process_immediately(self, conversation_id: str) -> bool:
        """True when idle, or when processing is stuck and can be reset."""
        state = await self._store.get(conversation_id)
        return state.state == ConversationStatus.IDLE or state.needs_reset

    async def set_processing(
        self, conversation_id: str, message_id: str
    ) -> ConversationState:
        """Bind message_id to processing, resetting a stuck state first."""
        state = await self._store.get(conversation_id)

        if state.needs_reset:
            await self.reset_processing(conversation_id)
            state = await self._store.get(conversation_id)
            if state.needs_reset:
                raise StuckProcessingError(
                    f"Conversation {conversation_id} still stuck after reset"
                )

        state.state = ConversationStatus.PROCESSING
        state.currently_processing = message_id
        state.processing_started_at = self._clock()

        await self._store.set(conversation_id, state)

        logger.debug(
            "Conversation set to processing",
            extra={
                "context": {
                    "conversation_id": conversation_id,
                    "message_id": message_id,
                }
            },
        )
        return state

    async def complete_processing(
        self, conversation_id: str, message_id: str
    ) -> ConversationState:
        """Release the processing binding after a reply (or failure)."""
        state = await self._store.get(conversation_id)

        if state.currently_processing != message_id:
            # Lenient: keep the conversation moving, but make the mismatch visible
            logger.warning(
                "Completing processing for unexpected message",
                extra={
                    "context": {
                        "conversation_id": conversation_id,
                        "expected_message_id": state.currently_processing,
                        "actual_message_id": message_id,
                    }
                },
            )

        self._release(state)
        await self._store.set(conversation_id, state)

        logger.debug(
            "Message processing completed",
            extra={
                "context": {
                    "conversation_id": conversation_id,
                    "message_id": message_id,
                    "new_state": state.state.value,
                }
            },
        )
        return state

    async def reset_processing(self, conversation_id: str) -> ConversationState:
        """Release processing regardless of which message is bound."""
        state = await self._store.get(conversation_id)
        was_stuck = state.needs_reset

        self._release(state)
        state.needs_reset = False
        await self._store.set(conversation_id, state)

        logger.info(
            "Conversation processing reset",
            extra={
                "context": {
                    "conversation_id": conversation_id,
                    "new_state": state.state.value,
                    "queue_length": state.queue_length,
                    "was_stuck": was_stuck,
                }
            },
        )
        return state

    def _release(self, state: ConversationState) -> None:
        state.currently_processing = None
        state.processing_started_at = None
        state.last_processed_at = self._clock()
        state.state = (
            ConversationStatus.QUEUED
            if state.message_queue
            else ConversationStatus.IDLE
        )

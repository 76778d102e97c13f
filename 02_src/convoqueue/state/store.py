"""ConversationStateStore: the only gateway to conversation state blobs."""

import json

from ..clock import Clock, utc_now
from ..config import STATE_KEY_PREFIX, QueueConfig
from ..errors import StateValidationError
from ..kv import IKeyValueStore
from ..logging_config import get_logger
from ..models import ConversationState, ConversationStatus

logger = get_logger(__name__)


class ConversationStateStore:
    """Reads and writes ConversationState against the shared TTL store.

    `get` never returns None: a missing key is lazily initialized to an
    IDLE state and persisted. Reads also flag stuck processing
    (`needs_reset`) without writing; the reset itself is the caller's job.
    """

    def __init__(
        self,
        kv: IKeyValueStore,
        config: QueueConfig | None = None,
        clock: Clock = utc_now,
    ):
        self._kv = kv
        self._config = config or QueueConfig()
        self._clock = clock

    @property
    def config(self) -> QueueConfig:
        return self._config

    @staticmethod
    def key_for(conversation_id: str) -> str:
        return f"{STATE_KEY_PREFIX}{conversation_id}"

    @staticmethod
    def conversation_id_for(key: str) -> str:
        return key[len(STATE_KEY_PREFIX):]

    async def get(self, conversation_id: str) -> ConversationState:
        """Return the conversation state, creating an IDLE one if absent."""
        state = await self.load(conversation_id)

        if state is None:
            now = self._clock()
            state = ConversationState(
                conversation_id=conversation_id,
                state=ConversationStatus.IDLE,
                created_at=now,
            )
            return await self.set(conversation_id, state)

        if self.is_processing_stuck(state):
            logger.warning(
                "Conversation stuck in processing state",
                extra={
                    "context": {
                        "conversation_id": conversation_id,
                        "currently_processing": state.currently_processing,
                        "processing_duration": self.processing_duration(state),
                    }
                },
            )
            state.needs_reset = True

        return state

    async def load(self, conversation_id: str) -> ConversationState | None:
        """Raw read: no lazy creation, no staleness evaluation."""
        raw = await self._kv.get(self.key_for(conversation_id))
        if raw is None:
            return None
        return self._decode(raw)

    async def set(
        self, conversation_id: str, state: ConversationState
    ) -> ConversationState:
        """Validate, stamp updated_at and persist with a fresh TTL."""
        self._validate(conversation_id, state)

        now = self._clock()
        if state.created_at is None:
            state.created_at = now
        state.updated_at = now

        await self._kv.set(
            self.key_for(conversation_id),
            json.dumps(state.to_dict()),
            self._config.state_ttl,
        )

        logger.debug(
            "Conversation state updated",
            extra={
                "context": {
                    "conversation_id": conversation_id,
                    "state": state.state.value,
                    "queue_length": state.queue_length,
                }
            },
        )
        return state

    async def list_keys(self) -> list[str]:
        """All live conversation state keys."""
        return await self._kv.keys(STATE_KEY_PREFIX)

    def is_processing_stuck(self, state: ConversationState) -> bool:
        if state.state != ConversationStatus.PROCESSING or not state.processing_started_at:
            return False
        return self.processing_duration(state) > self._config.processing_timeout

    def processing_duration(self, state: ConversationState) -> float:
        """Seconds since processing started (0 when not processing)."""
        if not state.processing_started_at:
            return 0.0
        return (self._clock() - state.processing_started_at).total_seconds()

    def _decode(self, raw: str) -> ConversationState:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StateValidationError(f"Corrupt conversation state: {e}") from e
        return ConversationState.from_dict(data)

    @staticmethod
    def _validate(conversation_id: str, state: ConversationState) -> None:
        if not conversation_id:
            raise StateValidationError("conversation_id is required")
        if state.conversation_id != conversation_id:
            raise StateValidationError(
                f"State belongs to {state.conversation_id!r}, not {conversation_id!r}"
            )
        if not isinstance(state.state, ConversationStatus):
            raise StateValidationError(f"Unknown conversation state: {state.state!r}")
        if state.state == ConversationStatus.PROCESSING and not state.currently_processing:
            raise StateValidationError("Processing state requires a bound message id")

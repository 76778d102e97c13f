"""Queue status reporting for clients and monitoring."""

from ..clock import Clock, to_iso, utc_now
from ..logging_config import get_logger
from ..models import ConversationState, ConversationStatus
from .store import ConversationStateStore

logger = get_logger(__name__)


class StatusReporter:
    """Read-only projections of conversation state."""

    def __init__(self, store: ConversationStateStore, clock: Clock = utc_now):
        self._store = store
        self._clock = clock

    async def get_queue_status(self, conversation_id: str) -> dict:
        """Queue status as relayed to clients."""
        state = await self._store.get(conversation_id)

        status = {
            "conversation_id": conversation_id,
            "state": state.state.value,
            "queue_length": state.queue_length,
            "currently_processing": state.currently_processing,
            "processing_started_at": to_iso(state.processing_started_at),
            "last_processed_at": to_iso(state.last_processed_at),
            "needs_reset": state.needs_reset,
            "queued_messages": [
                {
                    "message_id": entry.message_id,
                    "queued_at": to_iso(entry.queued_at),
                    "temp_id": entry.temp_id,
                }
                for entry in state.message_queue
            ],
        }
        if state.processing_started_at:
            status["processing_duration"] = self._store.processing_duration(state)
        return status

    async def get_all_states(self) -> list[dict]:
        """Monitoring view of every live conversation."""
        states = []
        errors = 0
        for key in await self._store.list_keys():
            try:
                state = await self._store.load(self._store.conversation_id_for(key))
            except ValueError as e:
                errors += 1
                logger.error(
                    "Error parsing conversation state",
                    extra={"context": {"key": key, "error": str(e)}},
                )
                continue
            if state is not None:
                states.append(self._format_for_monitoring(state))

        if errors:
            logger.warning(
                "Some conversation states could not be retrieved",
                extra={"context": {"error_count": errors}},
            )
        return states

    async def get_stats(self) -> dict:
        """Aggregate counters across conversations."""
        states = await self.get_all_states()

        stats = {
            "total_conversations": len(states),
            "by_state": {status.value: 0 for status in ConversationStatus},
            "total_queued_messages": 0,
            "average_queue_length": 0.0,
            "longest_queue": 0,
            "stuck_processing": 0,
        }
        for state in states:
            stats["by_state"][state["state"]] += 1
            stats["total_queued_messages"] += state["queue_length"]
            stats["longest_queue"] = max(stats["longest_queue"], state["queue_length"])
            if state.get("is_stuck"):
                stats["stuck_processing"] += 1

        if states:
            stats["average_queue_length"] = stats["total_queued_messages"] / len(states)
        return stats

    def _format_for_monitoring(self, state: ConversationState) -> dict:
        now = self._clock()
        formatted = {
            "conversation_id": state.conversation_id,
            "state": state.state.value,
            "queue_length": state.queue_length,
            "currently_processing": state.currently_processing,
            "created_at": to_iso(state.created_at),
            "updated_at": to_iso(state.updated_at),
            "last_processed_at": to_iso(state.last_processed_at),
        }
        if state.processing_started_at:
            formatted["processing_duration"] = int(self._store.processing_duration(state))
            formatted["is_stuck"] = self._store.is_processing_stuck(state)
        if state.message_queue:
            formatted["oldest_message_age"] = int(state.message_queue[0].age_seconds(now))
        return formatted

"""CleanupManager: periodic expiry sweep across all conversations."""

import asyncio
from dataclasses import dataclass, field

from ..clock import Clock, utc_now
from ..logging_config import get_logger
from .queue import purge_expired
from .store import ConversationStateStore

logger = get_logger(__name__)


@dataclass
class CleanupReport:
    """Statistics from one sweep."""

    cleaned_count: int = 0
    conversations_processed: int = 0
    total_conversations: int = 0
    errors: list[dict] = field(default_factory=list)


class CleanupManager:
    """Owns the cleanup timer; start/stop are idempotent."""

    def __init__(
        self,
        store: ConversationStateStore,
        clock: Clock = utc_now,
        interval: float | None = None,
    ):
        self._store = store
        self._config = store.config
        self._clock = clock
        self._interval = interval if interval is not None else self._config.cleanup_interval
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the recurring sweep."""
        if self.is_running:
            logger.warning("Cleanup already running")
            return

        self._task = asyncio.create_task(self._run())
        logger.info(
            "Conversation state cleanup started",
            extra={
                "context": {
                    "interval": self._interval,
                    "message_ttl": self._config.message_ttl,
                }
            },
        )

    async def stop(self) -> None:
        """Stop the recurring sweep."""
        if not self.is_running:
            self._task = None
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Conversation state cleanup stopped")

    async def sweep(self) -> CleanupReport:
        """Remove expired entries from every conversation queue."""
        keys = await self._store.list_keys()
        report = CleanupReport(total_conversations=len(keys))

        for key in keys:
            try:
                report.cleaned_count += await self._cleanup_key(key)
                report.conversations_processed += 1
            except Exception as e:
                report.errors.append({"key": key, "error": str(e)})
                logger.error(
                    "Error cleaning conversation state",
                    extra={"context": {"key": key, "error": str(e)}},
                    exc_info=True,
                )

        if report.cleaned_count:
            logger.info(
                "Cleaned up expired messages",
                extra={
                    "context": {
                        "cleaned_count": report.cleaned_count,
                        "conversations_processed": report.conversations_processed,
                        "total_conversations": report.total_conversations,
                    }
                },
            )
        return report

    async def cleanup_conversation(self, conversation_id: str) -> int:
        """On-demand cleanup of one conversation; returns entries removed."""
        cleaned = await self._cleanup_key(self._store.key_for(conversation_id))
        logger.debug(
            "Manual cleanup completed",
            extra={
                "context": {
                    "conversation_id": conversation_id,
                    "messages_removed": cleaned,
                }
            },
        )
        return cleaned

    async def _cleanup_key(self, key: str) -> int:
        conversation_id = self._store.conversation_id_for(key)
        state = await self._store.load(conversation_id)
        if state is None:
            return 0

        expired = purge_expired(state, self._clock(), self._config.message_ttl)
        if not expired:
            return 0

        for entry in expired:
            logger.debug(
                "Removing expired message",
                extra={
                    "context": {
                        "conversation_id": conversation_id,
                        "message_id": entry.message_id,
                    }
                },
            )
        await self._store.set(conversation_id, state)
        return len(expired)

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._interval)
                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Cleanup sweep error: {e}", exc_info=True)

"""Application bootstrap and lifecycle management."""

import os
from typing import Protocol

from .clock import Clock, utc_now
from .config import STATE_KEY_PREFIX, QueueConfig, resolve_db_path
from .conversation import MessageCoordinator
from .event_bus import EventBus
from .kv import IKeyValueStore, RedisKeyValueStore, SqliteKeyValueStore
from .llm import ILLMProvider, LLMProvider
from .logging_config import get_logger
from .state import (
    CleanupManager,
    ConversationStateStore,
    ProcessingManager,
    QueueManager,
    StatusReporter,
)
from .storage import IStorage, Storage

logger = get_logger(__name__)


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...

    async def reset(self) -> None:
        """Drop all conversation state and message history."""
        ...

    @property
    def storage(self) -> IStorage: ...

    @property
    def status(self) -> StatusReporter: ...

    @property
    def cleanup(self) -> CleanupManager: ...

    @property
    def coordinator(self) -> MessageCoordinator: ...


class Application:
    """Wires the coordinator and its collaborators together.

    `REDIS_URL` selects Redis as the shared state store; without it the
    state lives in SQLite next to the message history.
    """

    def __init__(
        self,
        db_path: str | None = None,
        llm_provider: ILLMProvider | None = None,
        redis_url: str | None = None,
        config: QueueConfig | None = None,
        clock: Clock = utc_now,
        start_cleanup: bool = True,
    ):
        env_db_path = os.getenv("DATABASE_URL") if db_path is None else db_path
        self._db_path = resolve_db_path(env_db_path)
        self._redis_url = redis_url if redis_url is not None else os.getenv("REDIS_URL")
        self._config = config or QueueConfig.from_env()
        self._clock = clock
        self._start_cleanup = start_cleanup
        self._llm: ILLMProvider | None = llm_provider

        # Components (will be initialized in start())
        self._kv: IKeyValueStore | None = None
        self._state_store: ConversationStateStore | None = None
        self._queue: QueueManager | None = None
        self._processing: ProcessingManager | None = None
        self._status: StatusReporter | None = None
        self._cleanup: CleanupManager | None = None
        self._storage: IStorage | None = None
        self._event_bus: EventBus | None = None
        self._coordinator: MessageCoordinator | None = None

    async def start(self) -> None:
        """Initialize components in dependency order."""
        logger.info("Starting application")

        # 1. Shared state store
        if self._redis_url:
            self._kv = RedisKeyValueStore(self._redis_url)
        else:
            self._kv = SqliteKeyValueStore(self._db_path, clock=self._clock)
        await self._kv.init()
        logger.info(f"State store initialized ({type(self._kv).__name__})")

        # 2. State layer (depends on the state store)
        self._state_store = ConversationStateStore(self._kv, self._config, self._clock)
        self._queue = QueueManager(self._state_store, self._clock)
        self._processing = ProcessingManager(self._state_store, self._clock)
        self._status = StatusReporter(self._state_store, self._clock)
        self._cleanup = CleanupManager(self._state_store, self._clock)

        # 3. Message history
        self._storage = Storage(self._db_path)
        await self._storage.init()
        logger.info("Storage initialized")

        # 4. EventBus
        self._event_bus = EventBus()

        # 5. LLMProvider
        if self._llm is None:
            self._llm = LLMProvider()
        logger.info("LLM provider initialized")

        # 6. Coordinator (depends on all of the above)
        self._coordinator = MessageCoordinator(
            storage=self._storage,
            state_store=self._state_store,
            event_bus=self._event_bus,
            llm_provider=self._llm,
            clock=self._clock,
            queue=self._queue,
            processing=self._processing,
            status=self._status,
            system_prompt=os.getenv("SYSTEM_PROMPT"),
        )
        await self._coordinator.start()

        # 7. Cleanup timer
        if self._start_cleanup:
            await self._cleanup.start()

        logger.info("All components initialized successfully")

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        if self._cleanup:
            await self._cleanup.stop()
        if self._coordinator:
            await self._coordinator.stop()
        if self._storage:
            await self._storage.close()
            logger.info("Storage closed")
        if self._kv:
            await self._kv.close()
            logger.info("State store closed")

    async def reset(self) -> None:
        """Drop all conversation state and message history."""
        # 1. Pause active processes
        if self._coordinator:
            await self._coordinator.stop()

        # 2. Clear state and history
        if self._kv:
            await self._kv.clear(STATE_KEY_PREFIX)
        if self._storage:
            await self._storage.clear()
        logger.info("State and storage cleared")

        # 3. Resume
        if self._coordinator:
            await self._coordinator.start()
        logger.info("Reset complete")

    @property
    def config(self) -> QueueConfig:
        return self._config

    @property
    def storage(self) -> IStorage:
        """Get storage instance."""
        if not self._storage:
            raise RuntimeError("Application not started")
        return self._storage

    @property
    def event_bus(self) -> EventBus:
        if not self._event_bus:
            raise RuntimeError("Application not started")
        return self._event_bus

    @property
    def state_store(self) -> ConversationStateStore:
        if not self._state_store:
            raise RuntimeError("Application not started")
        return self._state_store

    @property
    def processing(self) -> ProcessingManager:
        if not self._processing:
            raise RuntimeError("Application not started")
        return self._processing

    @property
    def status(self) -> StatusReporter:
        if not self._status:
            raise RuntimeError("Application not started")
        return self._status

    @property
    def cleanup(self) -> CleanupManager:
        if not self._cleanup:
            raise RuntimeError("Application not started")
        return self._cleanup

    @property
    def coordinator(self) -> MessageCoordinator:
        """Get coordinator instance."""
        if not self._coordinator:
            raise RuntimeError("Application not started")
        return self._coordinator

"""Pytest configuration and fixtures."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from convoqueue.config import QueueConfig  # noqa: E402

START_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = START_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def config():
    return QueueConfig()


@pytest_asyncio.fixture
async def kv(clock):
    """In-memory TTL store driven by the manual clock."""
    from convoqueue.kv import SqliteKeyValueStore

    store = SqliteKeyValueStore(":memory:", clock=clock)
    await store.init()
    yield store
    await store.close()


@pytest.fixture
def state_store(kv, config, clock):
    from convoqueue.state import ConversationStateStore

    return ConversationStateStore(kv, config, clock)


@pytest.fixture
def queue(state_store, clock):
    from convoqueue.state import QueueManager

    return QueueManager(state_store, clock)


@pytest.fixture
def processing(state_store, clock):
    from convoqueue.state import ProcessingManager

    return ProcessingManager(state_store, clock)


@pytest.fixture
def status(state_store, clock):
    from convoqueue.state import StatusReporter

    return StatusReporter(state_store, clock)


@pytest_asyncio.fixture
async def storage():
    """Create in-memory storage for testing."""
    from convoqueue.storage import Storage

    st = Storage(":memory:")
    await st.init()
    yield st
    await st.close()


@pytest.fixture
def event_bus():
    from convoqueue.event_bus import EventBus

    return EventBus()


@pytest.fixture
def published(event_bus):
    """Every event published on the bus, in order."""
    events = []

    async def record(event):
        events.append(event)

    event_bus.subscribe_all(record)
    return events


@pytest.fixture
def mock_llm():
    """Create mock LLM provider."""
    llm = Mock()
    llm.complete = AsyncMock(return_value="Test response")
    return llm


@pytest_asyncio.fixture
async def coordinator(storage, state_store, event_bus, mock_llm, clock, queue, processing, status):
    """Started coordinator sharing the state-layer fixtures."""
    from convoqueue.conversation import MessageCoordinator

    mc = MessageCoordinator(
        storage=storage,
        state_store=state_store,
        event_bus=event_bus,
        llm_provider=mock_llm,
        clock=clock,
        queue=queue,
        processing=processing,
        status=status,
    )
    await mc.start()
    yield mc
    await mc.stop()


def make_message(
    message_id: str,
    sender: str = "user",
    content: str = "hello",
    conversation_id: str = "u1_c1",
    seconds: int = 0,
    **kwargs,
):
    """ChatMessage at START_TIME + seconds."""
    from convoqueue.models import ChatMessage

    return ChatMessage(
        id=message_id,
        conversation_id=conversation_id,
        sender=sender,
        content=content,
        timestamp=START_TIME + timedelta(seconds=seconds),
        **kwargs,
    )

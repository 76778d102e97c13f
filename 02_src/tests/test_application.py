"""Tests for Application."""

from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio

from convoqueue.app import Application
from convoqueue.config import QueueConfig
from convoqueue.kv import RedisKeyValueStore, SqliteKeyValueStore


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("REDIS_URL", "DATABASE_URL", "MAX_QUEUE_SIZE", "SYSTEM_PROMPT"):
        monkeypatch.delenv(name, raising=False)


@pytest_asyncio.fixture
async def app(mock_llm):
    """Started application on in-memory databases."""
    application = Application(db_path=":memory:", llm_provider=mock_llm, start_cleanup=False)
    await application.start()
    yield application
    await application.stop()


class TestApplicationStart:
    """Tests for Application.start()."""

    @pytest.mark.asyncio
    async def test_start_initializes_components(self, app):
        """Test that start initializes all components."""
        assert app._kv is not None
        assert app._state_store is not None
        assert app._storage is not None
        assert app._event_bus is not None
        assert app._coordinator is not None
        assert isinstance(app._kv, SqliteKeyValueStore)

    @pytest.mark.asyncio
    async def test_start_wires_shared_state(self, app, mock_llm):
        """Test that the coordinator shares the application's components."""
        coordinator = app.coordinator
        assert coordinator._state_store is app.state_store
        assert coordinator._storage is app.storage
        assert coordinator._event_bus is app.event_bus
        assert coordinator._llm is mock_llm

    @pytest.mark.asyncio
    async def test_cleanup_timer_optional(self, app, mock_llm):
        """Test that the sweep timer only runs when asked for."""
        assert not app.cleanup.is_running

        timed = Application(db_path=":memory:", llm_provider=mock_llm)
        await timed.start()
        try:
            assert timed.cleanup.is_running
        finally:
            await timed.stop()
        assert not timed.cleanup.is_running

    @pytest.mark.asyncio
    async def test_config_from_environment(self, monkeypatch, mock_llm):
        """Test that limits come from the environment unless given."""
        monkeypatch.setenv("MAX_QUEUE_SIZE", "4")
        assert Application(db_path=":memory:", llm_provider=mock_llm).config.max_queue_size == 4

        explicit = QueueConfig(max_queue_size=2)
        app = Application(db_path=":memory:", llm_provider=mock_llm, config=explicit)
        assert app.config is explicit

    @pytest.mark.asyncio
    async def test_redis_url_selects_redis(self, mock_llm):
        """Test that a Redis URL switches the shared state store."""
        client = AsyncMock()
        with patch("convoqueue.kv.kv_store.redis.from_url", return_value=client):
            app = Application(
                db_path=":memory:",
                llm_provider=mock_llm,
                redis_url="redis://localhost:6379/0",
                start_cleanup=False,
            )
            await app.start()
            try:
                assert isinstance(app._kv, RedisKeyValueStore)
                client.ping.assert_awaited_once()
            finally:
                await app.stop()


class TestApplicationStop:
    """Tests for Application.stop()."""

    @pytest.mark.asyncio
    async def test_stop_closes_connections(self, mock_llm):
        """Test that stop closes storage and the state store."""
        app = Application(db_path=":memory:", llm_provider=mock_llm, start_cleanup=False)
        await app.start()
        await app.stop()

        assert app._storage._conn is None
        assert app._kv._conn is None


class TestApplicationReset:
    """Tests for Application.reset()."""

    @pytest.mark.asyncio
    async def test_reset_clears_state_and_history(self, app):
        """Test that reset drops queues and messages."""
        await app.coordinator.handle_message("u1", "c1", "Hello", message_id="m1")
        await app.coordinator.drain()
        assert await app.storage.get_messages("u1_c1")

        await app.reset()

        assert await app.storage.get_messages("u1_c1") == []
        assert await app.state_store.list_keys() == []

    @pytest.mark.asyncio
    async def test_reset_restarts_coordinator(self, app):
        """Test that the coordinator accepts messages after a reset."""
        await app.reset()

        result = await app.coordinator.handle_message("u2", "c1", "Hi")
        assert result.accepted
        await app.coordinator.drain()


class TestApplicationProperties:
    """Tests for Application properties."""

    @pytest.mark.asyncio
    async def test_storage_property(self, app):
        """Test storage property."""
        assert app.storage is app._storage

    @pytest.mark.parametrize(
        "name", ["storage", "event_bus", "state_store", "processing", "status", "cleanup", "coordinator"]
    )
    def test_property_raises_when_not_started(self, name, mock_llm):
        """Test that component properties raise when not started."""
        app = Application(db_path=":memory:", llm_provider=mock_llm)

        with pytest.raises(RuntimeError, match="not started"):
            getattr(app, name)

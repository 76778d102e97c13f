"""Tests for CleanupManager."""

import asyncio

from convoqueue.models import ConversationStatus
from convoqueue.state import CleanupManager


async def enqueue(queue, conversation_id, message_id):
    user_id, character_id = conversation_id.split("_", 1)
    await queue.enqueue(conversation_id, message_id, user_id, character_id, {})


class TestSweep:
    """Tests for CleanupManager.sweep()."""

    async def test_sweep_removes_expired_entries(self, state_store, queue, clock):
        """Test that a sweep drops expired entries in every conversation."""
        cleanup = CleanupManager(state_store, clock)
        await enqueue(queue, "u1_c1", "old1")
        await enqueue(queue, "u2_c1", "old2")
        clock.advance(200)
        await enqueue(queue, "u1_c1", "fresh")
        clock.advance(101)

        report = await cleanup.sweep()

        assert report.cleaned_count == 2
        assert report.total_conversations == 2
        assert report.conversations_processed == 2
        assert report.errors == []

        first = await state_store.get("u1_c1")
        assert [e.message_id for e in first.message_queue] == ["fresh"]
        assert first.state == ConversationStatus.QUEUED

        second = await state_store.get("u2_c1")
        assert second.queue_length == 0
        assert second.state == ConversationStatus.IDLE

    async def test_sweep_keeps_processing_binding(self, state_store, queue, processing, clock):
        """Test that emptying the queue of an active conversation keeps PROCESSING."""
        cleanup = CleanupManager(state_store, clock)
        await processing.set_processing("u1_c1", "m0")
        await enqueue(queue, "u1_c1", "old")
        clock.advance(301)

        await cleanup.sweep()
        state = await state_store.load("u1_c1")
        assert state.state == ConversationStatus.PROCESSING
        assert state.queue_length == 0

    async def test_sweep_isolates_corrupt_state(self, state_store, queue, kv, clock):
        """Test that one bad blob is reported and the rest still cleaned."""
        cleanup = CleanupManager(state_store, clock)
        await enqueue(queue, "u1_c1", "old")
        await kv.set("conversation_state:u9_c9", "{broken", 3600)
        clock.advance(301)

        report = await cleanup.sweep()

        assert report.cleaned_count == 1
        assert report.conversations_processed == 1
        assert report.total_conversations == 2
        assert [e["key"] for e in report.errors] == ["conversation_state:u9_c9"]

    async def test_sweep_with_nothing_expired(self, state_store, queue, clock):
        """Test that a sweep leaves fresh entries alone."""
        cleanup = CleanupManager(state_store, clock)
        await enqueue(queue, "u1_c1", "m1")

        report = await cleanup.sweep()
        assert report.cleaned_count == 0
        assert (await state_store.get("u1_c1")).queue_length == 1


class TestCleanupConversation:
    """Tests for on-demand cleanup."""

    async def test_cleanup_single_conversation(self, state_store, queue, clock):
        """Test that only the named conversation is cleaned."""
        cleanup = CleanupManager(state_store, clock)
        await enqueue(queue, "u1_c1", "a")
        await enqueue(queue, "u2_c1", "b")
        clock.advance(301)

        assert await cleanup.cleanup_conversation("u1_c1") == 1
        assert (await state_store.load("u2_c1")).queue_length == 1

    async def test_cleanup_missing_conversation(self, state_store, clock):
        """Test that an unknown conversation cleans nothing and creates nothing."""
        cleanup = CleanupManager(state_store, clock)
        assert await cleanup.cleanup_conversation("u1_c1") == 0
        assert await state_store.load("u1_c1") is None


class TestCleanupLifecycle:
    """Tests for start/stop of the cleanup timer."""

    async def test_start_and_stop(self, state_store, clock):
        """Test that the timer runs between start and stop."""
        cleanup = CleanupManager(state_store, clock, interval=0.01)
        await cleanup.start()
        assert cleanup.is_running

        await cleanup.stop()
        assert not cleanup.is_running

    async def test_start_twice_keeps_one_timer(self, state_store, clock):
        """Test that a second start does not create a second timer."""
        cleanup = CleanupManager(state_store, clock, interval=60)
        await cleanup.start()
        task = cleanup._task
        await cleanup.start()
        assert cleanup._task is task
        await cleanup.stop()

    async def test_stop_without_start(self, state_store, clock):
        """Test that stop is a no-op when not running."""
        cleanup = CleanupManager(state_store, clock)
        await cleanup.stop()
        assert not cleanup.is_running

    async def test_timer_sweeps_periodically(self, state_store, queue, clock):
        """Test that the running timer actually removes expired entries."""
        cleanup = CleanupManager(state_store, clock, interval=0.01)
        await enqueue(queue, "u1_c1", "old")
        clock.advance(301)

        await cleanup.start()
        for _ in range(100):
            await asyncio.sleep(0.01)
            if (await state_store.load("u1_c1")).queue_length == 0:
                break
        await cleanup.stop()

        assert (await state_store.load("u1_c1")).queue_length == 0

    async def test_separate_managers_do_not_collide(self, state_store, clock):
        """Test that two managers own independent timers."""
        first = CleanupManager(state_store, clock, interval=60)
        second = CleanupManager(state_store, clock, interval=60)
        await first.start()
        await second.start()
        await first.stop()

        assert not first.is_running
        assert second.is_running
        await second.stop()

"""Tests for data models."""

from datetime import datetime, timedelta, timezone

import pytest

from convoqueue.errors import StateValidationError
from convoqueue.models import (
    ChatMessage,
    ConversationEvent,
    ConversationState,
    ConversationStatus,
    EventType,
    QueueEntry,
    ai_liker_id,
    format_conversation_id,
    is_ai_liker,
    parse_conversation_id,
)

NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_entry(message_id: str = "m1", seconds_ago: int = 0) -> QueueEntry:
    return QueueEntry(
        message_id=message_id,
        user_id="u1",
        character_id="c1",
        message_data={"content": "hi", "type": "text"},
        queued_at=NOW - timedelta(seconds=seconds_ago),
        original_timestamp=NOW - timedelta(seconds=seconds_ago + 1),
        temp_id=f"tmp-{message_id}",
    )


class TestConversationId:
    """Tests for conversation id helpers."""

    def test_format(self):
        """Test that ids are joined with an underscore."""
        assert format_conversation_id("u1", "c1") == "u1_c1"

    def test_parse_splits_on_first_underscore(self):
        """Test that the character id keeps any further underscores."""
        assert parse_conversation_id("u1_char_42") == ("u1", "char_42")

    @pytest.mark.parametrize("bad", ["", "nounderscore", "_c1", "u1_"])
    def test_parse_rejects_invalid(self, bad):
        """Test that malformed ids raise ValueError."""
        with pytest.raises(ValueError):
            parse_conversation_id(bad)


class TestQueueEntry:
    """Tests for QueueEntry."""

    def test_age_seconds(self):
        """Test that age is measured from queued_at."""
        entry = make_entry(seconds_ago=42)
        assert entry.age_seconds(NOW) == 42

    def test_serialization_roundtrip(self):
        """Test that to_dict/from_dict preserve all fields."""
        entry = make_entry()
        assert QueueEntry.from_dict(entry.to_dict()) == entry

    def test_from_dict_requires_message_id(self):
        """Test that an entry without message_id is rejected."""
        with pytest.raises(StateValidationError):
            QueueEntry.from_dict({"queued_at": NOW.isoformat()})

    def test_from_dict_requires_queued_at(self):
        """Test that an entry without queued_at is rejected."""
        with pytest.raises(StateValidationError):
            QueueEntry.from_dict({"message_id": "m1"})


class TestConversationState:
    """Tests for ConversationState."""

    def test_defaults(self):
        """Test that a new state is idle with an empty queue."""
        state = ConversationState(conversation_id="u1_c1")
        assert state.state == ConversationStatus.IDLE
        assert state.queue_length == 0
        assert state.currently_processing is None
        assert state.invariant_violations() == []

    def test_needs_reset_not_serialized(self):
        """Test that the stuck annotation never reaches the stored blob."""
        state = ConversationState(conversation_id="u1_c1", needs_reset=True)
        data = state.to_dict()
        assert "needs_reset" not in data
        assert ConversationState.from_dict(data).needs_reset is False

    def test_roundtrip_with_queue(self):
        """Test that queue entries and timestamps survive serialization."""
        state = ConversationState(
            conversation_id="u1_c1",
            state=ConversationStatus.PROCESSING,
            message_queue=[make_entry("m2"), make_entry("m3")],
            currently_processing="m1",
            processing_started_at=NOW,
            created_at=NOW,
            updated_at=NOW,
        )
        restored = ConversationState.from_dict(state.to_dict())
        assert restored == state

    def test_from_dict_fills_defaults(self):
        """Test that missing optional fields take defaults."""
        state = ConversationState.from_dict({"conversation_id": "u1_c1"})
        assert state.state == ConversationStatus.IDLE
        assert state.message_queue == []
        assert state.processing_started_at is None

    def test_from_dict_rejects_unknown_state(self):
        """Test that an unknown state value is a validation error."""
        with pytest.raises(StateValidationError):
            ConversationState.from_dict({"conversation_id": "u1_c1", "state": "busy"})

    def test_from_dict_rejects_missing_id(self):
        """Test that a blob without conversation_id is rejected."""
        with pytest.raises(StateValidationError):
            ConversationState.from_dict({"state": "idle"})

    def test_from_dict_rejects_bad_timestamp(self):
        """Test that an unparseable timestamp is a validation error."""
        with pytest.raises(StateValidationError):
            ConversationState.from_dict(
                {"conversation_id": "u1_c1", "created_at": "yesterday"}
            )

    def test_recompute_state(self):
        """Test that the status follows binding first, then queue."""
        state = ConversationState(conversation_id="u1_c1")
        state.message_queue.append(make_entry())
        assert state.recompute_state() == ConversationStatus.QUEUED

        state.currently_processing = "m0"
        assert state.recompute_state() == ConversationStatus.PROCESSING

        state.currently_processing = None
        state.message_queue.clear()
        assert state.recompute_state() == ConversationStatus.IDLE

    def test_invariant_violations(self):
        """Test that inconsistent combinations are reported."""
        idle_with_queue = ConversationState(
            conversation_id="u1_c1", message_queue=[make_entry()]
        )
        assert idle_with_queue.invariant_violations() == ["idle with a non-empty queue"]

        processing_unbound = ConversationState(
            conversation_id="u1_c1", state=ConversationStatus.PROCESSING
        )
        assert processing_unbound.invariant_violations() == [
            "processing without a bound message"
        ]

        queued_empty = ConversationState(
            conversation_id="u1_c1", state=ConversationStatus.QUEUED
        )
        assert queued_empty.invariant_violations() == ["queued with an empty queue"]


class TestChatMessage:
    """Tests for ChatMessage."""

    def test_from_dict_defaults(self):
        """Test that optional fields default sensibly."""
        message = ChatMessage.from_dict(
            {"id": "m1", "sender": "user", "content": None, "timestamp": NOW.isoformat()}
        )
        assert message.content == ""
        assert message.type == "text"
        assert message.status == "sent"
        assert message.retry_count == 0
        assert message.likes == {}
        assert message.has_llm_error is False

    def test_from_dict_without_timestamp(self):
        """Test that a missing timestamp sorts first instead of failing."""
        message = ChatMessage.from_dict({"id": "m1", "sender": "user"})
        assert message.timestamp.tzinfo is not None
        assert message.timestamp < NOW

    def test_clear_llm_error(self):
        """Test that clearing resets all error fields."""
        message = ChatMessage(
            id="m1",
            conversation_id="u1_c1",
            sender="user",
            content="hi",
            timestamp=NOW,
            has_llm_error=True,
            error_type="timeout",
            error_timestamp=NOW,
        )
        message.clear_llm_error()
        assert message.has_llm_error is False
        assert message.error_type is None
        assert message.error_timestamp is None

    def test_combined_count_only_serialized_when_set(self):
        """Test that combined_count appears only on formatter output."""
        message = ChatMessage(
            id="m1", conversation_id="u1_c1", sender="user", content="hi", timestamp=NOW
        )
        assert "combined_count" not in message.to_dict()
        message.combined_count = 2
        assert message.to_dict()["combined_count"] == 2


class TestLikers:
    """Tests for AI liker ids."""

    def test_ai_liker_id(self):
        """Test that AI likes use a prefixed liker id."""
        assert ai_liker_id("c1") == "ai_c1"
        assert is_ai_liker("ai_c1")
        assert not is_ai_liker("u1")


class TestConversationEvent:
    """Tests for ConversationEvent."""

    def test_to_wire(self):
        """Test that the wire frame nests the payload under data."""
        event = ConversationEvent(
            type=EventType.QUEUED,
            conversation_id="u1_c1",
            payload={"message_id": "m1", "queue_position": 1},
        )
        assert event.to_wire() == {
            "event": "message:queued",
            "data": {"conversation_id": "u1_c1", "message_id": "m1", "queue_position": 1},
        }

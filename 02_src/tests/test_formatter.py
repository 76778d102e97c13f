"""Tests for conversation formatting."""

import logging

from conftest import make_message

from convoqueue.formatter import (
    EMPTY_COMBINED_PLACEHOLDER,
    combine_consecutive_user_messages,
    get_conversation_stats,
    handle_current_message_with_history,
    reorganize_to_alternating_pattern,
    to_inference_messages,
    validate_conversation_pattern,
)


class TestCombineConsecutiveUserMessages:
    """Tests for combine_consecutive_user_messages()."""

    def test_empty_returns_none(self):
        """Test that an empty run yields nothing to append."""
        assert combine_consecutive_user_messages([]) is None

    def test_single_message_unchanged(self):
        """Test that a single message is returned as-is."""
        message = make_message("m1", content="hi")
        assert combine_consecutive_user_messages([message]) is message

    def test_two_messages_joined_without_numbers(self):
        """Test that two fragments are joined by a blank line."""
        combined = combine_consecutive_user_messages(
            [make_message("m1", content="first"), make_message("m2", content="second")]
        )
        assert combined.content == "first\n\nsecond"
        assert combined.combined_count == 2
        assert combined.id == "m1"

    def test_three_messages_numbered(self):
        """Test that more than two fragments are numbered."""
        combined = combine_consecutive_user_messages(
            [
                make_message("m1", content="a"),
                make_message("m2", content="b"),
                make_message("m3", content="c"),
            ]
        )
        assert combined.content == "1. a\n\n2. b\n\n3. c"
        assert combined.combined_count == 3

    def test_all_empty_uses_placeholder(self):
        """Test that a run with no text gets the placeholder content."""
        combined = combine_consecutive_user_messages(
            [
                make_message("m1", content="", type="image"),
                make_message("m2", content="   ", type="image"),
            ]
        )
        assert combined.content == EMPTY_COMBINED_PLACEHOLDER
        assert combined.id == "m1"

    def test_one_with_text_returned(self):
        """Test that the only message with text stands for the run."""
        with_text = make_message("m2", content="caption")
        combined = combine_consecutive_user_messages(
            [make_message("m1", content="", type="image"), with_text]
        )
        assert combined is with_text

    def test_inputs_not_mutated(self):
        """Test that combining leaves the original messages untouched."""
        first = make_message("m1", content="a")
        second = make_message("m2", content="b")
        combine_consecutive_user_messages([first, second])
        assert first.content == "a"
        assert first.combined_count is None


class TestReorganizeToAlternatingPattern:
    """Tests for reorganize_to_alternating_pattern()."""

    def test_empty(self):
        """Test that no history yields no turns."""
        assert reorganize_to_alternating_pattern([]) == []

    def test_user_user_character_user(self):
        """Test that the leading user run folds into one turn."""
        messages = [
            make_message("u1", content="hello", seconds=0),
            make_message("u2", content="are you there", seconds=1),
            make_message("c1", sender="character", content="yes", seconds=2),
            make_message("u3", content="great", seconds=3),
        ]
        turns = reorganize_to_alternating_pattern(messages)

        assert [t.sender for t in turns] == ["user", "character", "user"]
        assert turns[0].content == "hello\n\nare you there"
        assert turns[1].id == "c1"
        assert turns[2].id == "u3"

    def test_llm_error_messages_dropped(self, caplog):
        """Test that failed turns are excluded and the drop is logged."""
        messages = [
            make_message("u1", content="first", seconds=0),
            make_message("c1", sender="character", content="reply", seconds=1),
            make_message("u2", content="broken", seconds=2, has_llm_error=True),
            make_message("u3", content="again", seconds=3),
        ]
        with caplog.at_level(logging.INFO, logger="convoqueue.formatter.formatter"):
            turns = reorganize_to_alternating_pattern(messages)

        assert [t.id for t in turns] == ["u1", "c1", "u3"]
        assert "Filtered LLM error messages" in caplog.text

    def test_unknown_sender_skipped(self):
        """Test that malformed senders are skipped."""
        messages = [
            make_message("u1", content="hi", seconds=0),
            make_message("x1", sender="system", content="???", seconds=1),
            make_message("c1", sender="character", content="hey", seconds=2),
        ]
        turns = reorganize_to_alternating_pattern(messages)
        assert [t.id for t in turns] == ["u1", "c1"]

    def test_leading_character_kept(self, caplog):
        """Test that no user turn is invented before a character opener."""
        messages = [
            make_message("c1", sender="character", content="welcome", seconds=0),
            make_message("u1", content="thanks", seconds=1),
        ]
        with caplog.at_level(logging.WARNING, logger="convoqueue.formatter.formatter"):
            turns = reorganize_to_alternating_pattern(messages)

        assert [t.id for t in turns] == ["c1", "u1"]
        assert "Conversation starts with AI message" in caplog.text

    def test_consecutive_character_messages_preserved(self):
        """Test that only user runs are merged."""
        messages = [
            make_message("u1", content="hi", seconds=0),
            make_message("c1", sender="character", content="one", seconds=1),
            make_message("c2", sender="character", content="two", seconds=2),
        ]
        turns = reorganize_to_alternating_pattern(messages)
        assert [t.id for t in turns] == ["u1", "c1", "c2"]


class TestHandleCurrentMessageWithHistory:
    """Tests for handle_current_message_with_history()."""

    def test_appends_after_character_turn(self):
        """Test that the in-flight message becomes a new user turn."""
        history = [
            make_message("u1", content="hi"),
            make_message("c1", sender="character", content="hello"),
        ]
        current = make_message("u2", content="how are you")
        result = handle_current_message_with_history(history, current)

        assert [m.id for m in result] == ["u1", "c1", "u2"]
        assert history[-1].id == "c1"

    def test_merges_into_trailing_user_turn(self):
        """Test that a trailing user turn absorbs the in-flight message."""
        history = [
            make_message("c1", sender="character", content="hello"),
            make_message("u1", content="unanswered"),
        ]
        current = make_message("u2", content="follow-up")
        result = handle_current_message_with_history(history, current)

        assert len(result) == 2
        assert result[-1].content == "unanswered\n\nfollow-up"
        assert result[-1].combined_count == 2
        assert history[-1].content == "unanswered"

    def test_duplicate_not_added_twice(self):
        """Test that a message already at the end of history is not repeated."""
        history = [make_message("u1", content="same text")]
        current = make_message("u1", content="same text")
        result = handle_current_message_with_history(history, current)
        assert len(result) == 1
        assert result[0].content == "same text"

    def test_empty_history(self):
        """Test that the in-flight message alone forms the conversation."""
        current = make_message("u1", content="hi")
        assert [m.id for m in handle_current_message_with_history([], current)] == ["u1"]


class TestValidateConversationPattern:
    """Tests for validate_conversation_pattern()."""

    def test_valid_alternation(self):
        """Test that a clean alternating history passes."""
        messages = [
            make_message("u1", content="hello"),
            make_message("c1", sender="character", content="hi there"),
        ]
        result = validate_conversation_pattern(messages)
        assert result.is_valid
        assert result.issues == []

    def test_empty_invalid(self):
        """Test that an empty conversation is reported."""
        assert not validate_conversation_pattern([]).is_valid

    def test_consecutive_run_reported_once(self):
        """Test that each same-sender run yields a single issue."""
        messages = [
            make_message("u1", content="aa"),
            make_message("u2", content="bb"),
            make_message("u3", content="cc"),
            make_message("c1", sender="character", content="dd"),
        ]
        result = validate_conversation_pattern(messages)
        assert not result.is_valid
        assert result.issues == ["Multiple consecutive messages from user starting at index 0"]

    def test_short_message_reported(self):
        """Test that near-empty messages are flagged."""
        messages = [
            make_message("u1", content="k"),
            make_message("c1", sender="character", content="okay"),
        ]
        result = validate_conversation_pattern(messages)
        assert "Very short or empty message at index 0" in result.issues

    def test_imbalance_suggestions(self):
        """Test that skewed user/AI ratios produce suggestions, not issues."""
        user_heavy = [make_message(f"u{i}", content="hello") for i in range(4)]
        assert validate_conversation_pattern(user_heavy).suggestions

        ai_heavy = [
            make_message("c1", sender="character", content="hello"),
            make_message("u1", content="hello"),
            make_message("c2", sender="character", content="hello"),
            make_message("c3", sender="character", content="hello"),
        ]
        assert validate_conversation_pattern(ai_heavy).suggestions


class TestInferenceMessages:
    """Tests for to_inference_messages() and get_conversation_stats()."""

    def test_roles_mapped(self):
        """Test that character turns become assistant turns."""
        messages = [
            make_message("u1", content="hi"),
            make_message("c1", sender="character", content="hello"),
            make_message("u2", content="", type="image"),
        ]
        assert to_inference_messages(messages) == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "user", "content": "[Non-text message]"},
        ]

    def test_stats(self):
        """Test length and span statistics."""
        messages = [
            make_message("u1", content="abcd", seconds=0),
            make_message("c1", sender="character", content="ab", seconds=120),
        ]
        stats = get_conversation_stats(messages)

        assert stats["user_messages"] == 1
        assert stats["ai_messages"] == 1
        assert stats["average_user_length"] == 4
        assert stats["longest_ai_message"] == 2
        assert stats["conversation_span"]["minutes"] == 2

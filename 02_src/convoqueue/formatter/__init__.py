"""Conversation formatting for inference calls."""

from .formatter import (
    EMPTY_COMBINED_PLACEHOLDER,
    PatternValidation,
    combine_consecutive_user_messages,
    get_conversation_stats,
    handle_current_message_with_history,
    reorganize_to_alternating_pattern,
    to_inference_messages,
    validate_conversation_pattern,
)

__all__ = [
    "EMPTY_COMBINED_PLACEHOLDER",
    "PatternValidation",
    "combine_consecutive_user_messages",
    "get_conversation_stats",
    "handle_current_message_with_history",
    "reorganize_to_alternating_pattern",
    "to_inference_messages",
    "validate_conversation_pattern",
]

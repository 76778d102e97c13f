"""Fold chronological chat history into alternating user/assistant turns."""

from dataclasses import dataclass, field, replace

from ..logging_config import get_logger
from ..models import ChatMessage, Sender

logger = get_logger(__name__)

EMPTY_COMBINED_PLACEHOLDER = "[Multiple non-text messages]"
NON_TEXT_PLACEHOLDER = "[Non-text message]"

_KNOWN_SENDERS = {Sender.USER.value, Sender.CHARACTER.value}
_INFERENCE_ROLES = {Sender.USER.value: "user", Sender.CHARACTER.value: "assistant"}


@dataclass
class PatternValidation:
    """Observability report on a formatted conversation."""

    is_valid: bool = True
    issues: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)


def _has_text(message: ChatMessage) -> bool:
    return bool(message.content and message.content.strip())


def reorganize_to_alternating_pattern(
    chronological_messages: list[ChatMessage],
) -> list[ChatMessage]:
    """
    Build the alternating user/assistant sequence for an inference call.

    Messages flagged with an LLM error are dropped, runs of user messages
    are merged into one turn, and unknown senders are skipped. A leading
    character message is kept as-is; no user turn is invented for it.

    Args:
        chronological_messages: Messages sorted by timestamp.

    Returns:
        New list; input messages are not modified.
    """
    if not chronological_messages:
        return []

    messages = [m for m in chronological_messages if not m.has_llm_error]
    dropped = len(chronological_messages) - len(messages)
    if dropped:
        logger.info(
            "Filtered LLM error messages from AI context",
            extra={
                "context": {
                    "original_count": len(chronological_messages),
                    "filtered_count": dropped,
                    "remaining_count": len(messages),
                }
            },
        )

    alternating: list[ChatMessage] = []
    pending_user: list[ChatMessage] = []

    def flush() -> None:
        combined = combine_consecutive_user_messages(pending_user)
        if combined is not None:
            alternating.append(combined)
        pending_user.clear()

    for message in messages:
        if message.sender not in _KNOWN_SENDERS:
            logger.warning(
                "Unknown message sender type, skipping message",
                extra={
                    "context": {
                        "sender": message.sender,
                        "message_id": message.id,
                        "type": message.type,
                    }
                },
            )
            continue

        if message.sender == Sender.USER.value:
            pending_user.append(message)
        else:
            if pending_user:
                flush()
            alternating.append(message)

    if pending_user:
        flush()

    if alternating and alternating[0].sender == Sender.CHARACTER.value:
        logger.warning(
            "Conversation starts with AI message",
            extra={"context": {"first_message_id": alternating[0].id}},
        )

    return alternating


def combine_consecutive_user_messages(
    user_messages: list[ChatMessage],
) -> ChatMessage | None:
    """Merge a run of user messages into a single turn.

    Returns None for an empty run, the message itself for a single one.
    Fragments are numbered only when there are more than two of them.
    """
    if not user_messages:
        logger.warning("Empty user message run passed to combine")
        return None

    if len(user_messages) == 1:
        return user_messages[0]

    with_text = [m for m in user_messages if _has_text(m)]

    if not with_text:
        return replace(
            user_messages[0],
            content=EMPTY_COMBINED_PLACEHOLDER,
            combined_count=len(user_messages),
        )

    if len(with_text) == 1:
        return with_text[0]

    numbered = len(with_text) > 2
    fragments = [
        f"{index}. {m.content}" if numbered else m.content
        for index, m in enumerate(with_text, start=1)
    ]
    return replace(
        with_text[0],
        content="\n\n".join(fragments),
        combined_count=len(user_messages),
    )


def handle_current_message_with_history(
    alternating_messages: list[ChatMessage], current_message: ChatMessage
) -> list[ChatMessage]:
    """Append the in-flight message without breaking alternation."""
    messages = list(alternating_messages)
    last = messages[-1] if messages else None

    if last is not None and last.sender == Sender.USER.value:
        if last.content == current_message.content:
            logger.debug(
                "Current message already in history, skipping duplicate",
                extra={"context": {"message_id": current_message.id}},
            )
            return messages

        messages[-1] = replace(
            last,
            content=f"{last.content}\n\n{current_message.content}",
            combined_count=(last.combined_count or 1) + 1,
        )
        logger.debug(
            "Combined current message with last user message",
            extra={"context": {"message_id": current_message.id, "merged_into": last.id}},
        )
        return messages

    messages.append(replace(current_message, sender=Sender.USER.value))
    return messages


def validate_conversation_pattern(messages: list[ChatMessage]) -> PatternValidation:
    """Report alternation problems; never raises or rewrites anything."""
    validation = PatternValidation()

    if not messages:
        validation.is_valid = False
        validation.issues.append("No messages to validate")
        return validation

    run_start = 0
    for index in range(1, len(messages) + 1):
        run_ended = (
            index == len(messages)
            or messages[index].sender != messages[run_start].sender
        )
        if run_ended:
            if index - run_start >= 2:
                validation.issues.append(
                    f"Multiple consecutive messages from {messages[run_start].sender} "
                    f"starting at index {run_start}"
                )
            run_start = index

    for index, message in enumerate(messages):
        if not message.content or len(message.content.strip()) < 2:
            validation.issues.append(f"Very short or empty message at index {index}")

    user_count = sum(1 for m in messages if m.sender == Sender.USER.value)
    ai_count = sum(1 for m in messages if m.sender == Sender.CHARACTER.value)
    ratio = user_count / max(ai_count, 1)

    if ratio > 3:
        validation.suggestions.append(
            "Many user messages without AI responses - conversation may be imbalanced"
        )
    elif ratio < 0.5:
        validation.suggestions.append(
            "Many AI messages without user input - check for proper user engagement"
        )

    validation.is_valid = not validation.issues
    return validation


def to_inference_messages(messages: list[ChatMessage]) -> list[dict]:
    """Map formatted turns to provider role/content dicts."""
    return [
        {
            "role": _INFERENCE_ROLES[m.sender],
            "content": m.content if _has_text(m) else NON_TEXT_PLACEHOLDER,
        }
        for m in messages
        if m.sender in _INFERENCE_ROLES
    ]


def get_conversation_stats(messages: list[ChatMessage]) -> dict:
    """Length and balance statistics for a formatted conversation."""
    user_lengths = [len(m.content or "") for m in messages if m.sender == Sender.USER.value]
    ai_lengths = [
        len(m.content or "") for m in messages if m.sender == Sender.CHARACTER.value
    ]

    stats = {
        "total_messages": len(messages),
        "user_messages": len(user_lengths),
        "ai_messages": len(ai_lengths),
        "combined_messages": sum(1 for m in messages if m.combined_count),
        "average_user_length": round(sum(user_lengths) / len(user_lengths)) if user_lengths else 0,
        "average_ai_length": round(sum(ai_lengths) / len(ai_lengths)) if ai_lengths else 0,
        "longest_user_message": max(user_lengths, default=0),
        "longest_ai_message": max(ai_lengths, default=0),
        "conversation_span": None,
    }

    timestamps = sorted(m.timestamp for m in messages if m.timestamp)
    if len(timestamps) >= 2:
        span = (timestamps[-1] - timestamps[0]).total_seconds()
        stats["conversation_span"] = {
            "seconds": span,
            "minutes": round(span / 60),
            "hours": round(span / 3600),
        }
    return stats

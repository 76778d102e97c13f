"""Conversation module."""

from .coordinator import (
    IMessageCoordinator,
    IntakeResult,
    IntakeStatus,
    MessageCoordinator,
    RetryResult,
)

__all__ = [
    "IMessageCoordinator",
    "IntakeResult",
    "IntakeStatus",
    "MessageCoordinator",
    "RetryResult",
]

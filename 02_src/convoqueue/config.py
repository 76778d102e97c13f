"""Project-level configuration and path helpers."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Union

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DATA_DIR = PROJECT_ROOT / "03_data"
LOGS_DIR = PROJECT_ROOT / "04_logs"
DEFAULT_DB_PATH = DATA_DIR / "convoqueue.db"
DEFAULT_LOG_PATH = LOGS_DIR / "app.log"

DATA_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)

STATE_KEY_PREFIX = "conversation_state:"


PathLike = Union[str, Path]


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve DATABASE_URL to an absolute path."""
    if not env_value:
        return DEFAULT_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


@dataclass(frozen=True)
class QueueConfig:
    """Limits and timings for conversation queuing (seconds where applicable)."""

    max_queue_size: int = 10
    message_ttl: int = 300
    processing_timeout: int = 120
    cleanup_interval: int = 60
    state_ttl: int = 3600
    max_retries: int = 3

    @classmethod
    def from_env(cls) -> "QueueConfig":
        """Build config from environment variables, falling back to defaults."""
        defaults = cls()
        return cls(
            max_queue_size=int(os.getenv("MAX_QUEUE_SIZE", defaults.max_queue_size)),
            message_ttl=int(os.getenv("MESSAGE_TTL", defaults.message_ttl)),
            processing_timeout=int(
                os.getenv("PROCESSING_TIMEOUT", defaults.processing_timeout)
            ),
            cleanup_interval=int(
                os.getenv("CLEANUP_INTERVAL", defaults.cleanup_interval)
            ),
            state_ttl=int(os.getenv("STATE_TTL", defaults.state_ttl)),
            max_retries=int(os.getenv("MAX_RETRIES", defaults.max_retries)),
        )

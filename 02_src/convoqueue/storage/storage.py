"""SQLite storage for chat message history."""

import json
from datetime import timezone
from pathlib import Path
from typing import Protocol

import aiosqlite

from ..clock import parse_datetime, to_iso
from ..config import resolve_db_path
from ..errors import MessageNotFoundError
from ..models import ChatMessage

_COLUMNS = (
    "id, conversation_id, sender, content, type, timestamp, status, "
    "reply_to_message_id, has_llm_error, error_type, error_timestamp, "
    "retry_count, likes, metadata"
)


class IStorage(Protocol):
    """Durable store for chat messages."""

    async def init(self) -> None:
        """Initialize database and create tables."""
        ...

    async def close(self) -> None:
        """Close database connection."""
        ...

    async def save_message(self, message: ChatMessage) -> None:
        """Insert or replace a message."""
        ...

    async def get_message(self, message_id: str) -> ChatMessage | None:
        """Get a message by ID."""
        ...

    async def get_messages(
        self, conversation_id: str, limit: int | None = None
    ) -> list[ChatMessage]:
        """Get a conversation's messages in timestamp order (latest `limit`)."""
        ...

    async def update_message(self, message: ChatMessage) -> None:
        """Overwrite an existing message."""
        ...

    async def set_like(self, message_id: str, liker_id: str, is_liked: bool) -> ChatMessage:
        """Record or withdraw a like."""
        ...

    async def clear(self) -> None:
        """Clear all data."""
        ...


class Storage:
    """SQLite storage implementation."""

    def __init__(self, db_path: str | Path | None = None):
        self._db_path = resolve_db_path(db_path)
        self._conn: aiosqlite.Connection | None = None

    async def init(self) -> None:
        """Initialize database and create tables."""
        self._conn = await aiosqlite.connect(self._db_path)

        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await self._conn.executescript(schema_sql)
        await self._conn.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("Storage not initialized")
        return self._conn

    async def save_message(self, message: ChatMessage) -> None:
        conn = self._require_conn()
        await conn.execute(
            f"INSERT OR REPLACE INTO messages ({_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            self._to_row(message),
        )
        await conn.commit()

    async def get_message(self, message_id: str) -> ChatMessage | None:
        conn = self._require_conn()
        cursor = await conn.execute(
            f"SELECT {_COLUMNS} FROM messages WHERE id = ?", (message_id,)
        )
        row = await cursor.fetchone()
        return self._from_row(row) if row else None

    async def get_messages(
        self, conversation_id: str, limit: int | None = None
    ) -> list[ChatMessage]:
        conn = self._require_conn()

        if limit:
            # Newest `limit` rows, returned oldest first
            cursor = await conn.execute(
                f"""
                SELECT {_COLUMNS} FROM (
                    SELECT {_COLUMNS}, rowid AS seq FROM messages
                    WHERE conversation_id = ?
                    ORDER BY timestamp DESC, rowid DESC
                    LIMIT ?
                ) ORDER BY timestamp ASC, seq ASC
                """,
                (conversation_id, limit),
            )
        else:
            cursor = await conn.execute(
                f"""
                SELECT {_COLUMNS} FROM messages
                WHERE conversation_id = ?
                ORDER BY timestamp ASC, rowid ASC
                """,
                (conversation_id,),
            )

        rows = await cursor.fetchall()
        return [self._from_row(row) for row in rows]

    async def update_message(self, message: ChatMessage) -> None:
        conn = self._require_conn()
        cursor = await conn.execute(
            """
            UPDATE messages SET
                content = ?, status = ?, reply_to_message_id = ?,
                has_llm_error = ?, error_type = ?, error_timestamp = ?,
                retry_count = ?, likes = ?, metadata = ?
            WHERE id = ?
            """,
            (
                message.content,
                message.status,
                message.reply_to_message_id,
                int(message.has_llm_error),
                message.error_type,
                to_iso(message.error_timestamp),
                message.retry_count,
                json.dumps(message.likes),
                json.dumps(message.metadata),
                message.id,
            ),
        )
        await conn.commit()
        if cursor.rowcount == 0:
            raise MessageNotFoundError(f"Message {message.id} not found")

    async def set_like(self, message_id: str, liker_id: str, is_liked: bool) -> ChatMessage:
        message = await self.get_message(message_id)
        if message is None:
            raise MessageNotFoundError(f"Message {message_id} not found")

        if is_liked:
            message.likes[liker_id] = True
        else:
            message.likes.pop(liker_id, None)
        await self.update_message(message)
        return message

    async def clear(self) -> None:
        conn = self._require_conn()
        await conn.execute("DELETE FROM messages")
        await conn.commit()

    @staticmethod
    def _to_row(message: ChatMessage) -> tuple:
        return (
            message.id,
            message.conversation_id,
            message.sender,
            message.content,
            message.type,
            # UTC so lexical order of the stored text matches time order
            message.timestamp.astimezone(timezone.utc).isoformat(timespec="microseconds"),
            message.status,
            message.reply_to_message_id,
            int(message.has_llm_error),
            message.error_type,
            to_iso(message.error_timestamp),
            message.retry_count,
            json.dumps(message.likes),
            json.dumps(message.metadata),
        )

    @staticmethod
    def _from_row(row) -> ChatMessage:
        return ChatMessage(
            id=row[0],
            conversation_id=row[1],
            sender=row[2],
            content=row[3],
            type=row[4],
            timestamp=parse_datetime(row[5]),
            status=row[6],
            reply_to_message_id=row[7],
            has_llm_error=bool(row[8]),
            error_type=row[9],
            error_timestamp=parse_datetime(row[10]),
            retry_count=row[11],
            likes=json.loads(row[12]),
            metadata=json.loads(row[13]),
        )

"""Shared key-value stores with per-key TTL."""

from pathlib import Path
from typing import Protocol

import aiosqlite
import redis.asyncio as redis

from ..clock import Clock, utc_now
from ..config import resolve_db_path
from ..logging_config import get_logger

logger = get_logger(__name__)


class IKeyValueStore(Protocol):
    """String key-value store where every key carries a TTL."""

    async def init(self) -> None:
        """Open connections / create tables."""
        ...

    async def close(self) -> None:
        """Release connections."""
        ...

    async def get(self, key: str) -> str | None:
        """Return the value, or None when absent or expired."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Write the value and (re)start its TTL."""
        ...

    async def delete(self, key: str) -> None:
        """Remove a key if present."""
        ...

    async def keys(self, prefix: str) -> list[str]:
        """List live keys starting with prefix."""
        ...

    async def clear(self, prefix: str = "") -> None:
        """Remove every key starting with prefix."""
        ...


class SqliteKeyValueStore:
    """SQLite-backed TTL store for single-host deployments and tests."""

    def __init__(self, db_path: str | Path | None = None, clock: Clock = utc_now):
        self._db_path = resolve_db_path(db_path)
        self._clock = clock
        self._conn: aiosqlite.Connection | None = None

    async def init(self) -> None:
        self._conn = await aiosqlite.connect(self._db_path)
        await self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv_entries (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                expires_at REAL NOT NULL
            )
            """
        )
        await self._conn.commit()

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _now(self) -> float:
        return self._clock().timestamp()

    def _require_conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("Key-value store not initialized")
        return self._conn

    async def get(self, key: str) -> str | None:
        conn = self._require_conn()
        cursor = await conn.execute(
            "SELECT value, expires_at FROM kv_entries WHERE key = ?", (key,)
        )
        row = await cursor.fetchone()
        if not row:
            return None

        if row[1] <= self._now():
            await conn.execute("DELETE FROM kv_entries WHERE key = ?", (key,))
            await conn.commit()
            return None
        return row[0]

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        conn = self._require_conn()
        await conn.execute(
            """
            INSERT OR REPLACE INTO kv_entries (key, value, expires_at)
            VALUES (?, ?, ?)
            """,
            (key, value, self._now() + ttl_seconds),
        )
        await conn.commit()

    async def delete(self, key: str) -> None:
        conn = self._require_conn()
        await conn.execute("DELETE FROM kv_entries WHERE key = ?", (key,))
        await conn.commit()

    async def keys(self, prefix: str) -> list[str]:
        conn = self._require_conn()
        # substr instead of LIKE: prefixes contain "_" which LIKE treats as a wildcard
        cursor = await conn.execute(
            """
            SELECT key FROM kv_entries
            WHERE substr(key, 1, ?) = ? AND expires_at > ?
            ORDER BY key
            """,
            (len(prefix), prefix, self._now()),
        )
        rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def clear(self, prefix: str = "") -> None:
        conn = self._require_conn()
        await conn.execute(
            "DELETE FROM kv_entries WHERE substr(key, 1, ?) = ?", (len(prefix), prefix)
        )
        await conn.commit()


class RedisKeyValueStore:
    """Redis-backed TTL store shared by several worker processes."""

    def __init__(self, url: str, socket_timeout: float = 5.0):
        self._url = url
        self._socket_timeout = socket_timeout
        self._client: redis.Redis | None = None

    async def init(self) -> None:
        self._client = redis.from_url(
            self._url,
            decode_responses=True,
            socket_timeout=self._socket_timeout,
        )
        await self._client.ping()
        logger.info("Redis key-value store connected")

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _require_client(self) -> redis.Redis:
        if not self._client:
            raise RuntimeError("Key-value store not initialized")
        return self._client

    async def get(self, key: str) -> str | None:
        return await self._require_client().get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._require_client().setex(key, ttl_seconds, value)

    async def delete(self, key: str) -> None:
        await self._require_client().delete(key)

    async def keys(self, prefix: str) -> list[str]:
        client = self._require_client()
        # SCAN rather than KEYS so large keyspaces don't block the server
        return [key async for key in client.scan_iter(match=f"{prefix}*", count=500)]

    async def clear(self, prefix: str = "") -> None:
        client = self._require_client()
        async for key in client.scan_iter(match=f"{prefix}*", count=500):
            await client.delete(key)

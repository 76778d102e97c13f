"""Shared key-value store module."""

from .kv_store import IKeyValueStore, RedisKeyValueStore, SqliteKeyValueStore

__all__ = ["IKeyValueStore", "RedisKeyValueStore", "SqliteKeyValueStore"]

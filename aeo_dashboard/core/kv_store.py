# aeo_dashboard/core/kv_store.py
"""
Durable key-value tiers behind the cache store.

A tier stores opaque strings by key and may refuse a write when it runs out
of room; that refusal is always raised as StorageQuotaExceededError so the
cache store can evict and retry without knowing which backend it talks to.

Backends:
- MemoryKeyValueStore: process-local, optional byte quota (tests, single worker)
- PostgresKeyValueStore: aeo_cache_entries table via the shared DatabaseManager
"""

import logging
from typing import Dict, List, Optional, Protocol

import asyncpg

from .database import DatabaseManager, db_manager

logger = logging.getLogger(__name__)

__all__ = [
    'StorageQuotaExceededError',
    'KeyValueStore',
    'MemoryKeyValueStore',
    'PostgresKeyValueStore',
]


class StorageQuotaExceededError(Exception):
    """The durable tier has no room for the write."""


class KeyValueStore(Protocol):
    async def get_item(self, key: str) -> Optional[str]: ...

    async def set_item(self, key: str, value: str) -> None: ...

    async def remove_item(self, key: str) -> None: ...

    async def keys(self) -> List[str]: ...


class MemoryKeyValueStore:
    """
    In-process durable tier.

    ``quota_bytes`` caps the summed length of keys and values; a write that
    would cross it raises StorageQuotaExceededError and leaves the store
    unchanged.
    """

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes
        self._items: Dict[str, str] = {}

    def _size_with(self, key: str, value: str) -> int:
        size = sum(len(k) + len(v) for k, v in self._items.items() if k != key)
        return size + len(key) + len(value)

    async def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        if self.quota_bytes is not None and self._size_with(key, value) > self.quota_bytes:
            raise StorageQuotaExceededError(f"quota of {self.quota_bytes} bytes exceeded writing {key}")
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    async def keys(self) -> List[str]:
        return list(self._items)


# Postgres errors that mean "no room"; connection limits are not among them
QUOTA_ERRORS = (
    asyncpg.exceptions.DiskFullError,
    asyncpg.exceptions.OutOfMemoryError,
)


class PostgresKeyValueStore:
    """Durable tier stored in Postgres, one row per cache key."""

    def __init__(self, db: Optional[DatabaseManager] = None):
        self.db = db or db_manager

    @staticmethod
    def get_migration_sql() -> str:
        """Return SQL to create the cache table"""
        return """
        CREATE TABLE IF NOT EXISTS aeo_cache_entries (
            cache_key TEXT PRIMARY KEY,
            payload TEXT NOT NULL,
            stored_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
        """

    async def ensure_schema(self) -> None:
        await self.db.execute(self.get_migration_sql())

    async def get_item(self, key: str) -> Optional[str]:
        row = await self.db.fetch_one(
            "SELECT payload FROM aeo_cache_entries WHERE cache_key = $1", key
        )
        return row["payload"] if row else None

    async def set_item(self, key: str, value: str) -> None:
        try:
            await self.db.execute(
                """
                INSERT INTO aeo_cache_entries (cache_key, payload, stored_at)
                VALUES ($1, $2, now())
                ON CONFLICT (cache_key)
                DO UPDATE SET payload = EXCLUDED.payload, stored_at = now()
                """,
                key, value
            )
        except QUOTA_ERRORS as e:
            raise StorageQuotaExceededError(str(e)) from e

    async def remove_item(self, key: str) -> None:
        await self.db.execute("DELETE FROM aeo_cache_entries WHERE cache_key = $1", key)

    async def keys(self) -> List[str]:
        rows = await self.db.fetch_all("SELECT cache_key FROM aeo_cache_entries")
        return [row["cache_key"] for row in rows]

# aeo_dashboard/core/cache_store.py
"""
Two-tier cache for Google API report data.

Tiers:
1. Memory - per-instance dict, authoritative when present, lost on restart
2. Durable - any KeyValueStore (Postgres in production), capped at max_entries

Reads return a CacheResult. Stale entries are still returned with their data
so callers can serve them immediately and refresh in the background
(stale-while-revalidate). Writes never raise: quota exhaustion evicts the
oldest entries and retries once, then falls back to memory only.

Key format: ``{prefix}:{type}:{subjectId}:{rangeStart}:{rangeEnd}[:{extra}]``

Usage:
    cache = CacheStore(PostgresKeyValueStore())
    key = cache.cache_key("gscQueries", site_url, start, end)
    result = await cache.get(key, TTL["gscQueries"])
    if result.is_miss:
        await cache.set(key, await fetch())
"""

import copy
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from .kv_store import KeyValueStore, MemoryKeyValueStore, StorageQuotaExceededError
from .safe_logger import log_summary

logger = logging.getLogger(__name__)

__all__ = [
    'TTL',
    'DEFAULT_TTL_MS',
    'CacheEntry',
    'CacheResult',
    'CacheStats',
    'CacheStore',
]

MINUTE_MS = 60 * 1000

# Fixed per-type freshness windows (milliseconds)
TTL: Dict[str, int] = {
    'gscQueries': 10 * MINUTE_MS,
    'gscPages': 10 * MINUTE_MS,
    'gscDates': 10 * MINUTE_MS,
    'ga4Traffic': 10 * MINUTE_MS,
    'ga4Pages': 10 * MINUTE_MS,
    'ga4Trend': 10 * MINUTE_MS,
    'gscProperties': 30 * MINUTE_MS,
    'ga4Properties': 30 * MINUTE_MS,
    'default': 5 * MINUTE_MS,
}
DEFAULT_TTL_MS = TTL['default']

DEFAULT_MAX_ENTRIES = 50
QUOTA_EVICTION_COUNT = 10


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class CacheEntry:
    key: str
    data: Any
    stored_at: int

    def to_json(self) -> str:
        return json.dumps({'data': self.data, 'stored_at': self.stored_at}, separators=(',', ':'))

    @classmethod
    def from_json(cls, key: str, raw: str) -> 'CacheEntry':
        """Parse a durable payload; raises ValueError when it is not a cache entry."""
        parsed = json.loads(raw)
        if not isinstance(parsed, dict) or 'data' not in parsed:
            raise ValueError("not a cache entry")
        stored_at = parsed.get('stored_at')
        if isinstance(stored_at, bool) or not isinstance(stored_at, (int, float)):
            raise ValueError("missing stored_at")
        return cls(key=key, data=parsed['data'], stored_at=int(stored_at))


@dataclass(frozen=True)
class CacheResult:
    data: Any
    is_stale: bool
    is_miss: bool

    @classmethod
    def miss(cls) -> 'CacheResult':
        return cls(data=None, is_stale=False, is_miss=True)


@dataclass(frozen=True)
class CacheStats:
    memory_entries: int
    durable_entries: int
    total_size_kb: int

    def to_dict(self) -> Dict[str, int]:
        return {
            'memory_entries': self.memory_entries,
            'durable_entries': self.durable_entries,
            'total_size_kb': self.total_size_kb,
        }


class CacheStore:
    """
    Memory + durable cache scoped to one key prefix.

    Instances are independent: each owns its memory tier, and two stores
    sharing a durable tier only ever touch keys under their own prefix.
    """

    def __init__(
        self,
        durable: Optional[KeyValueStore] = None,
        prefix: str = 'aeo-cache',
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], int] = _now_ms,
    ):
        self.durable = durable if durable is not None else MemoryKeyValueStore()
        self.prefix = prefix.rstrip(':')
        self.max_entries = max_entries
        self.clock = clock
        self._memory: Dict[str, CacheEntry] = {}

    @property
    def key_prefix(self) -> str:
        return f"{self.prefix}:"

    def cache_key(self, type_: str, *parts: Any) -> str:
        """Build ``{prefix}:{type}:{part1}:{part2}...``"""
        return ':'.join([self.prefix, type_, *(str(p) for p in parts)])

    def owns(self, key: str) -> bool:
        return key.startswith(self.key_prefix)

    # =========================================================================
    # Reads
    # =========================================================================

    async def get(self, key: str, ttl_ms: Optional[int] = None) -> CacheResult:
        """
        Look up ``key`` in memory, then in the durable tier.

        A durable hit is copied into memory so later reads stay in-process.
        Unreadable durable values behave as a miss. A ``ttl_ms`` of None or 0
        means the 5 minute default.
        """
        ttl = ttl_ms or DEFAULT_TTL_MS

        entry = self._memory.get(key)
        if entry is None:
            entry = await self._read_durable(key)
            if entry is None:
                return CacheResult.miss()
            self._memory[key] = entry

        age = self.clock() - entry.stored_at
        return CacheResult(data=entry.data, is_stale=age >= ttl, is_miss=False)

    async def _read_durable(self, key: str) -> Optional[CacheEntry]:
        try:
            raw = await self.durable.get_item(key)
        except Exception as e:
            logger.warning(f"⚠️ Durable cache read failed for {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return CacheEntry.from_json(key, raw)
        except (ValueError, TypeError) as e:
            logger.warning(f"⚠️ Corrupt cache entry treated as miss: {key} ({e})")
            return None

    # =========================================================================
    # Writes
    # =========================================================================

    async def set(self, key: str, data: Any) -> None:
        """Write to both tiers. Durable failures are logged, never raised."""
        entry = CacheEntry(key=key, data=copy.deepcopy(data), stored_at=self.clock())
        self._memory[key] = entry
        payload = entry.to_json()

        try:
            await self.durable.set_item(key, payload)
        except StorageQuotaExceededError:
            evicted = await self._evict_oldest(QUOTA_EVICTION_COUNT, keep=key)
            try:
                await self.durable.set_item(key, payload)
            except StorageQuotaExceededError:
                logger.warning(f"⚠️ Durable cache full after evicting {evicted} entries, using memory cache only for {key}")
                return
            except Exception as e:
                logger.warning(f"⚠️ Durable cache write failed for {key}, using memory cache only: {e}")
                return
        except Exception as e:
            logger.warning(f"⚠️ Durable cache write failed for {key}, using memory cache only: {e}")
            return

        try:
            await self._prune()
        except Exception as e:
            logger.warning(f"⚠️ Durable cache prune failed: {e}")

    async def _durable_ages(self) -> List[Tuple[int, str]]:
        """(stored_at, key) for every prefixed durable entry; corrupt entries are age 0."""
        ages = []
        for key in await self.durable.keys():
            if not self.owns(key):
                continue
            try:
                raw = await self.durable.get_item(key)
                stored_at = CacheEntry.from_json(key, raw).stored_at if raw is not None else 0
            except (ValueError, TypeError):
                stored_at = 0
            ages.append((stored_at, key))
        ages.sort()
        return ages

    async def _prune(self) -> None:
        ages = await self._durable_ages()
        overflow = len(ages) - self.max_entries
        if overflow <= 0:
            return
        for _, key in ages[:overflow]:
            await self.durable.remove_item(key)
        log_summary("Cache pruned", {"removed": overflow, "kept": self.max_entries}, logger_name=__name__, level="debug")

    async def _evict_oldest(self, count: int, keep: Optional[str] = None) -> int:
        """Drop the ``count`` oldest prefixed entries from both tiers."""
        try:
            ages = await self._durable_ages()
        except Exception as e:
            logger.warning(f"⚠️ Could not list durable cache for eviction: {e}")
            return 0
        victims = [key for _, key in ages if key != keep][:count]
        for key in victims:
            await self.durable.remove_item(key)
            self._memory.pop(key, None)
        return len(victims)

    # =========================================================================
    # Invalidation
    # =========================================================================

    async def clear(self, key: str) -> None:
        self._memory.pop(key, None)
        try:
            await self.durable.remove_item(key)
        except Exception as e:
            logger.warning(f"⚠️ Durable cache delete failed for {key}: {e}")

    async def clear_all(self) -> None:
        """Remove every entry under this prefix from both tiers."""
        await self._clear_matching(lambda key: True)

    async def clear_by_subject(self, subject_id: str) -> None:
        """Remove prefixed entries whose key contains ``subject_id``."""
        await self._clear_matching(lambda key: subject_id in key)

    async def _clear_matching(self, predicate: Callable[[str], bool]) -> None:
        for key in [k for k in self._memory if self.owns(k) and predicate(k)]:
            del self._memory[key]
        try:
            for key in await self.durable.keys():
                if self.owns(key) and predicate(key):
                    await self.durable.remove_item(key)
        except Exception as e:
            logger.warning(f"⚠️ Durable cache clear failed: {e}")

    # =========================================================================
    # Stats
    # =========================================================================

    async def stats(self) -> CacheStats:
        durable_entries = 0
        total_size = 0
        try:
            for key in await self.durable.keys():
                if not self.owns(key):
                    continue
                durable_entries += 1
                total_size += len(await self.durable.get_item(key) or '')
        except Exception as e:
            logger.warning(f"⚠️ Durable cache stats unavailable: {e}")

        return CacheStats(
            memory_entries=sum(1 for k in self._memory if self.owns(k)),
            durable_entries=durable_entries,
            total_size_kb=round(total_size / 1024),
        )

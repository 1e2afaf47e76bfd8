"""Tests for the two-tier cache store"""

import asyncio
import json

import asyncpg
import pytest

from aeo_dashboard.core.cache_store import TTL, CacheStore
from aeo_dashboard.core.kv_store import MemoryKeyValueStore, PostgresKeyValueStore, StorageQuotaExceededError

from .conftest import FakeClock, FullStore, ItemLimitedStore

MINUTE = 60 * 1000


def test_empty_cache_is_a_miss(clock):
    async def run():
        cache = CacheStore(clock=clock)
        result = await cache.get(cache.cache_key('gscQueries', 'https://a.com/', '2024-01-01', '2024-01-28'))
        assert result.is_miss
        assert result.data is None
        assert not result.is_stale

    asyncio.run(run())


def test_fresh_then_stale_after_ttl(clock):
    async def run():
        cache = CacheStore(clock=clock)
        key = cache.cache_key('gscQueries', 'site', 'a', 'b')
        await cache.set(key, {'rows': [1, 2]})

        clock.advance(TTL['gscQueries'] - 1)
        fresh = await cache.get(key, TTL['gscQueries'])
        assert not fresh.is_miss and not fresh.is_stale
        assert fresh.data == {'rows': [1, 2]}

        clock.advance(1)
        stale = await cache.get(key, TTL['gscQueries'])
        assert stale.is_stale
        assert stale.data == {'rows': [1, 2]}

    asyncio.run(run())


def test_default_ttl_is_five_minutes(clock):
    async def run():
        cache = CacheStore(clock=clock)
        await cache.set('aeo-cache:other:x', 1)
        clock.advance(5 * MINUTE - 1)
        assert not (await cache.get('aeo-cache:other:x')).is_stale
        assert not (await cache.get('aeo-cache:other:x', ttl_ms=0)).is_stale
        clock.advance(1)
        assert (await cache.get('aeo-cache:other:x')).is_stale
        assert (await cache.get('aeo-cache:other:x', ttl_ms=0)).is_stale

    asyncio.run(run())


def test_durable_tier_survives_a_new_instance(clock):
    async def run():
        durable = MemoryKeyValueStore()
        first = CacheStore(durable, clock=clock)
        key = first.cache_key('ga4Traffic', '123', '2024-01-01', '2024-01-28')
        await first.set(key, {'sessions': 5})

        second = CacheStore(durable, clock=clock)
        result = await second.get(key, TTL['ga4Traffic'])
        assert not result.is_miss
        assert result.data == {'sessions': 5}
        assert (await second.stats()).memory_entries == 1

    asyncio.run(run())


def test_corrupt_durable_entries_read_as_miss(clock):
    async def run():
        durable = MemoryKeyValueStore()
        await durable.set_item('aeo-cache:gscQueries:bad', '{not json')
        await durable.set_item('aeo-cache:gscQueries:shape', json.dumps({'unexpected': True}))
        cache = CacheStore(durable, clock=clock)

        assert (await cache.get('aeo-cache:gscQueries:bad')).is_miss
        assert (await cache.get('aeo-cache:gscQueries:shape')).is_miss

    asyncio.run(run())


def test_returned_data_is_a_snapshot(clock):
    async def run():
        cache = CacheStore(clock=clock)
        payload = {'rows': [{'clicks': 1}]}
        await cache.set('aeo-cache:t:k', payload)
        payload['rows'].append({'clicks': 2})

        assert (await cache.get('aeo-cache:t:k')).data == {'rows': [{'clicks': 1}]}

    asyncio.run(run())


def test_prefixes_isolate_stores_sharing_a_durable_tier(clock):
    async def run():
        durable = MemoryKeyValueStore()
        aeo = CacheStore(durable, prefix='aeo-cache', clock=clock)
        other = CacheStore(durable, prefix='other-app', clock=clock)
        await aeo.set(aeo.cache_key('gscQueries', 's'), 1)
        await other.set(other.cache_key('gscQueries', 's'), 2)
        await durable.set_item('unrelated', 'x')

        await aeo.clear_all()

        assert sorted(await durable.keys()) == ['other-app:gscQueries:s', 'unrelated']
        assert (await other.get('other-app:gscQueries:s')).data == 2
        assert (await aeo.get('aeo-cache:gscQueries:s')).is_miss

    asyncio.run(run())


def test_clear_by_subject_only_touches_that_subject(clock):
    async def run():
        cache = CacheStore(clock=clock)
        a = cache.cache_key('gscQueries', 'https://a.com/', '2024-01-01', '2024-01-28')
        a_pages = cache.cache_key('gscPages', 'https://a.com/', '2024-01-01', '2024-01-28')
        b = cache.cache_key('gscQueries', 'https://b.com/', '2024-01-01', '2024-01-28')
        for key in (a, a_pages, b):
            await cache.set(key, key)

        await cache.clear_by_subject('https://a.com/')

        assert (await cache.get(a)).is_miss
        assert (await cache.get(a_pages)).is_miss
        assert (await cache.get(b)).data == b

    asyncio.run(run())


def test_quota_error_evicts_oldest_and_retries(clock):
    async def run():
        durable = ItemLimitedStore(max_items=12)
        cache = CacheStore(durable, clock=clock)
        for i in range(12):
            await cache.set(f"aeo-cache:t:{i:02d}", i)
            clock.advance(1)

        await cache.set('aeo-cache:t:new', 'new')

        keys = sorted(await durable.keys())
        assert keys == ['aeo-cache:t:10', 'aeo-cache:t:11', 'aeo-cache:t:new']
        # evicted from memory as well
        assert (await cache.get('aeo-cache:t:00')).is_miss
        assert (await cache.get('aeo-cache:t:new')).data == 'new'

    asyncio.run(run())


def test_full_durable_tier_falls_back_to_memory(clock):
    async def run():
        cache = CacheStore(FullStore(), clock=clock)
        await cache.set('aeo-cache:t:k', {'ok': True})

        result = await cache.get('aeo-cache:t:k')
        assert result.data == {'ok': True}
        stats = await cache.stats()
        assert stats.memory_entries == 1
        assert stats.durable_entries == 0

    asyncio.run(run())


def test_durable_tier_is_pruned_to_max_entries(clock):
    async def run():
        durable = MemoryKeyValueStore()
        cache = CacheStore(durable, max_entries=3, clock=clock)
        for i in range(5):
            await cache.set(f"aeo-cache:t:{i}", i)
            clock.advance(1)

        assert sorted(await durable.keys()) == ['aeo-cache:t:2', 'aeo-cache:t:3', 'aeo-cache:t:4']

    asyncio.run(run())


def test_corrupt_entries_are_pruned_first():
    async def run():
        clock = FakeClock()
        durable = MemoryKeyValueStore()
        await durable.set_item('aeo-cache:t:corrupt', 'garbage')
        cache = CacheStore(durable, max_entries=2, clock=clock)
        await cache.set('aeo-cache:t:a', 'a')
        clock.advance(1)
        await cache.set('aeo-cache:t:b', 'b')

        assert sorted(await durable.keys()) == ['aeo-cache:t:a', 'aeo-cache:t:b']

    asyncio.run(run())


def test_stats_count_only_own_prefix(clock):
    async def run():
        durable = MemoryKeyValueStore()
        await durable.set_item('someone-else', 'x' * 4096)
        cache = CacheStore(durable, clock=clock)
        await cache.set('aeo-cache:t:k', 'v')

        stats = (await cache.stats()).to_dict()
        assert stats['memory_entries'] == 1
        assert stats['durable_entries'] == 1
        assert stats['total_size_kb'] == 0

    asyncio.run(run())


class RefusingDatabase:
    """DatabaseManager stand-in whose writes fail with ``error``."""

    def __init__(self, error):
        self.error = error

    async def execute(self, query, *args):
        raise self.error


@pytest.mark.parametrize('error', [
    asyncpg.exceptions.DiskFullError("could not extend file"),
    asyncpg.exceptions.OutOfMemoryError("out of memory"),
])
def test_postgres_space_errors_become_quota_errors(error):
    store = PostgresKeyValueStore(RefusingDatabase(error))
    with pytest.raises(StorageQuotaExceededError):
        asyncio.run(store.set_item('aeo-cache:x', '{}'))


def test_postgres_connection_limit_is_not_a_quota_error():
    error = asyncpg.exceptions.TooManyConnectionsError("too many clients")
    store = PostgresKeyValueStore(RefusingDatabase(error))
    with pytest.raises(asyncpg.exceptions.TooManyConnectionsError):
        asyncio.run(store.set_item('aeo-cache:x', '{}'))

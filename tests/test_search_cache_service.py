import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

from search_cache_service import InMemorySearchCache, RedisSearchCache, build_search_cache_key


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_cache_key_is_order_independent_and_sensitive_to_values():
    a = build_search_cache_key({'query': 'jazz', 'offset': 0, 'types': ['events']})
    b = build_search_cache_key({'types': ['events'], 'offset': 0, 'query': 'jazz'})
    c = build_search_cache_key({'query': 'jazz', 'offset': 20, 'types': ['events']})

    assert a == b
    assert a != c
    assert a.startswith('search:')


@pytest.mark.asyncio
async def test_memory_cache_hit_and_expiry():
    clock = FakeClock()
    cache = InMemorySearchCache(clock=clock)

    await cache.put('k', '{"a": 1}', ttl=300)
    assert await cache.get('k') == '{"a": 1}'

    clock.now += 299
    assert await cache.get('k') == '{"a": 1}'

    clock.now += 1
    assert await cache.get('k') is None

    await cache.put('k', '{"a": 2}', ttl=300)
    assert await cache.get('k') == '{"a": 2}'


@pytest.mark.asyncio
async def test_memory_cache_evicts_expired_entries_first():
    clock = FakeClock()
    cache = InMemorySearchCache(max_size=2, clock=clock)

    await cache.put('short', 'x', ttl=10)
    await cache.put('long', 'y', ttl=300)
    clock.now += 20
    await cache.put('new', 'z', ttl=300)

    assert await cache.get('long') == 'y'
    assert await cache.get('new') == 'z'
    assert cache.get_stats()['total_entries'] == 2


@pytest.mark.asyncio
async def test_memory_cache_evicts_oldest_when_full():
    cache = InMemorySearchCache(max_size=2, clock=FakeClock())

    await cache.put('first', '1')
    await cache.put('second', '2')
    await cache.put('third', '3')

    assert await cache.get('first') is None
    assert await cache.get('second') == '2'
    assert await cache.get('third') == '3'


@pytest_asyncio.fixture
async def redis_cache():
    client = FakeRedis(decode_responses=True)
    try:
        yield RedisSearchCache(redis_client=client)
    finally:
        await client.flushall()


@pytest.mark.asyncio
async def test_redis_cache_round_trip_with_ttl(redis_cache):
    await redis_cache.put('search:abc', '{"query": "jazz"}', ttl=300)

    assert await redis_cache.get('search:abc') == '{"query": "jazz"}'
    ttl = await redis_cache.redis.ttl('search:abc')
    assert 0 < ttl <= 300
    assert await redis_cache.get('search:missing') is None

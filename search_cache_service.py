"""
Search result caching
Whole search responses are cached for a short TTL (default 5 minutes) under a
hash of the normalized request. Responses are stored serialized, so a cache hit
is byte-identical to the response that was stored and callers cannot mutate a
shared copy.

Backends:
- memory: per-process, bounded by SEARCH_CACHE_MAX_SIZE
- redis: shared between instances (SEARCH_CACHE_BACKEND=redis, REDIS_URL)

Cache failures are logged and treated as misses.
"""

import hashlib
import json
import logging
import os
import time
from typing import Any, Callable, Dict, Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)

SEARCH_CACHE_TTL_SECONDS = int(os.getenv('SEARCH_CACHE_TTL_SECONDS', '300'))
SEARCH_CACHE_MAX_SIZE = int(os.getenv('SEARCH_CACHE_MAX_SIZE', '1000'))
SEARCH_CACHE_BACKEND = os.getenv('SEARCH_CACHE_BACKEND', 'memory').lower()
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')


def build_search_cache_key(params: Dict[str, Any]) -> str:
    """
    Generate a cache key from normalized search parameters

    Any difference in query text, types, filters, options or requesting user
    yields a different key.
    """
    params_str = json.dumps(params, sort_keys=True, default=str)
    key_hash = hashlib.md5(params_str.encode()).hexdigest()
    return f"search:{key_hash}"


class SearchCache:
    """Cache interface: values are serialized response strings"""

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def put(self, key: str, value: str, ttl: int = SEARCH_CACHE_TTL_SECONDS) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class InMemorySearchCache(SearchCache):
    """Process-local cache with TTL expiry and a max-size bound"""

    def __init__(self, max_size: int = SEARCH_CACHE_MAX_SIZE, clock: Callable[[], float] = time.time):
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._max_size = max_size
        self._clock = clock
        logger.info(f"Search cache initialized (memory) with max_size={self._max_size}")

    async def get(self, key: str) -> Optional[str]:
        entry = self._cache.get(key)
        if entry is None:
            logger.debug(f"Search cache MISS: {key}")
            return None
        if self._clock() >= entry['expires_at']:
            # Left in place, the next put for this key overwrites it
            logger.debug(f"Search cache EXPIRED: {key}")
            return None
        logger.debug(f"Search cache HIT: {key}")
        return entry['value']

    async def put(self, key: str, value: str, ttl: int = SEARCH_CACHE_TTL_SECONDS) -> None:
        now = self._clock()
        if key not in self._cache and len(self._cache) >= self._max_size:
            self._evict(now)
        self._cache.pop(key, None)
        self._cache[key] = {
            'value': value,
            'created_at': now,
            'expires_at': now + ttl,
        }

    def _evict(self, now: float):
        expired = [k for k, entry in self._cache.items() if now >= entry['expires_at']]
        for k in expired:
            del self._cache[k]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired search cache entries")

        # Dicts keep insertion order, so the first key is the oldest write
        while len(self._cache) >= self._max_size:
            oldest = next(iter(self._cache))
            del self._cache[oldest]
            logger.debug(f"Evicted oldest search cache entry {oldest}")

    def clear(self):
        count = len(self._cache)
        self._cache.clear()
        logger.info(f"Cleared search cache ({count} entries)")

    def get_stats(self) -> Dict[str, Any]:
        now = self._clock()
        valid = sum(1 for entry in self._cache.values() if now < entry['expires_at'])
        return {
            'backend': 'memory',
            'total_entries': len(self._cache),
            'valid_entries': valid,
            'expired_entries': len(self._cache) - valid,
            'max_size': self._max_size,
        }


class RedisSearchCache(SearchCache):
    """Shared cache for multi-instance deployments"""

    def __init__(self, redis_client: Optional[redis.Redis] = None, url: str = REDIS_URL):
        self.redis = redis_client or redis.from_url(url, decode_responses=True)
        logger.info("Search cache initialized (redis)")

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await self.redis.get(key)
        except redis.RedisError as e:
            logger.warning(f"Search cache get failed for {key}: {e}")
            return None
        if value is None:
            logger.debug(f"Search cache MISS: {key}")
            return None
        logger.debug(f"Search cache HIT: {key}")
        return value.decode() if isinstance(value, bytes) else value

    async def put(self, key: str, value: str, ttl: int = SEARCH_CACHE_TTL_SECONDS) -> None:
        try:
            await self.redis.set(key, value, ex=ttl)
        except redis.RedisError as e:
            logger.warning(f"Search cache put failed for {key}: {e}")

    async def close(self) -> None:
        try:
            await self.redis.aclose()
        except redis.RedisError as e:
            logger.warning(f"Error closing search cache connection: {e}")


_search_cache: Optional[SearchCache] = None


def get_search_cache() -> SearchCache:
    """Get or create the search cache for the configured backend"""
    global _search_cache
    if _search_cache is None:
        if SEARCH_CACHE_BACKEND == 'redis':
            _search_cache = RedisSearchCache()
        else:
            _search_cache = InMemorySearchCache()
    return _search_cache


async def close_search_cache():
    global _search_cache
    if _search_cache is not None:
        await _search_cache.close()
        _search_cache = None

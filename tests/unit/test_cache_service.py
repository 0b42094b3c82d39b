"""
Unit tests for the report cache.
"""

from decimal import Decimal
from fnmatch import fnmatch

from redis.exceptions import ConnectionError

from nota.services.cache_service import CacheService


class InMemoryRedis:
    """Just the Redis calls the cache makes."""

    def __init__(self, fail=False):
        self.store = {}
        self.ttls = {}
        self.fail = fail

    def _check(self):
        if self.fail:
            raise ConnectionError('redis down')

    def get(self, key):
        self._check()
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self._check()
        self.store[key] = value
        self.ttls[key] = ttl

    def scan_iter(self, match=None, count=None):
        self._check()
        return [key for key in list(self.store) if fnmatch(key, match)]

    def delete(self, *keys):
        self._check()
        for key in keys:
            self.store.pop(key, None)


class TestCacheService:

    def test_memoize_loads_once_and_keeps_decimals(self):
        cache = CacheService(InMemoryRedis(), prefix='nota', default_ttl=60)
        calls = []

        def loader():
            calls.append(1)
            return {'total_revenue': Decimal('14475.5000')}

        assert cache.memoize('reports', 'sales:a', loader) == {'total_revenue': Decimal('14475.5000')}
        assert cache.memoize('reports', 'sales:a', loader) == {'total_revenue': Decimal('14475.5000')}
        assert len(calls) == 1
        assert cache.client.ttls['nota:reports:sales:a'] == 60

    def test_invalidate_module_only_touches_module(self):
        client = InMemoryRedis()
        cache = CacheService(client, prefix='nota')
        cache.memoize('reports', 'sales:a', lambda: 1, ttl=300)
        cache.memoize('reports', 'sales:b', lambda: 2)
        cache.memoize('other', 'x', lambda: 3)

        assert cache.invalidate_module('reports') == 2
        assert list(client.store) == ['nota:other:x']

    def test_redis_failure_falls_back_to_loader(self):
        cache = CacheService(InMemoryRedis(fail=True))
        assert cache.memoize('reports', 'sales:a', lambda: 'fresh') == 'fresh'
        assert cache.invalidate_module('reports') == 0

    def test_disabled_cache(self):
        cache = CacheService.from_config({'CACHE_ENABLED': False})
        assert cache.enabled is False
        assert cache.memoize('reports', 'k', lambda: 7) == 7

"""
Report cache backed by Redis.

Only sales summaries are cached. A Redis failure never reaches the caller:
reads turn into misses and writes are skipped, so reports always fall back
to the database.
"""

import logging
import json
from decimal import Decimal
from typing import Any, Callable, Optional

import redis
from redis.exceptions import RedisError
from flask import Flask

logger = logging.getLogger(__name__)


def _encode(value: Any) -> str:
    def default(obj):
        if isinstance(obj, Decimal):
            return {'__decimal__': str(obj)}
        raise TypeError(f'{type(obj).__name__} is not cacheable')
    return json.dumps(value, default=default)


def _decode(raw: str) -> Any:
    return json.loads(raw, object_hook=lambda d: Decimal(d['__decimal__']) if '__decimal__' in d else d)


class CacheService:
    """Keys are ``{prefix}:{module}:{key}``; values are JSON with exact Decimals."""

    def __init__(self, client: Optional[redis.Redis] = None, prefix: str = 'nota', default_ttl: int = 60):
        self.client = client
        self.prefix = prefix
        self.default_ttl = default_ttl

    @classmethod
    def from_config(cls, config) -> 'CacheService':
        """Connect to REDIS_URL; a disabled or unreachable Redis gives a no-op cache."""
        service = cls(prefix=config.get('CACHE_KEY_PREFIX', 'nota'),
                      default_ttl=config.get('CACHE_DEFAULT_TTL', 60))
        if not config.get('CACHE_ENABLED', True):
            logger.info("[CACHE] disabled via config")
            return service

        url = config.get('REDIS_URL', 'redis://localhost:6379/0')
        try:
            client = redis.from_url(url, decode_responses=True,
                                    socket_connect_timeout=3, socket_timeout=3,
                                    retry_on_timeout=True, health_check_interval=30)
            client.ping()
        except RedisError as e:
            logger.warning(f"[CACHE] Redis unreachable at {url}: {e}; reports read from the database")
            return service

        logger.info(f"[CACHE] Redis connected: {url}")
        service.client = client
        return service

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def _key(self, module: str, key: str) -> str:
        return f"{self.prefix}:{module}:{key}"

    def memoize(self, module: str, key: str, loader: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """Return the cached value, or call ``loader`` and store its result."""
        if not self.enabled:
            return loader()

        full_key = self._key(module, key)
        try:
            raw = self.client.get(full_key)
            if raw is not None:
                return _decode(raw)
        except (RedisError, ValueError) as e:
            logger.warning(f"[CACHE] read {full_key} failed: {e}")

        value = loader()
        try:
            self.client.setex(full_key, ttl or self.default_ttl, _encode(value))
        except (RedisError, TypeError) as e:
            logger.warning(f"[CACHE] write {full_key} failed: {e}")
        return value

    def invalidate_module(self, module: str) -> int:
        """Delete every key under ``module``; returns how many were removed."""
        if not self.enabled:
            return 0
        try:
            keys = list(self.client.scan_iter(match=self._key(module, '*'), count=100))
            if keys:
                self.client.delete(*keys)
                logger.info(f"[CACHE] invalidated {module} ({len(keys)} keys)")
            return len(keys)
        except RedisError as e:
            logger.warning(f"[CACHE] invalidate {module} failed: {e}")
            return 0


_cache_service: Optional[CacheService] = None


def init_cache(app: Flask) -> None:
    global _cache_service
    _cache_service = CacheService.from_config(app.config)
    app.extensions['cache'] = _cache_service


def get_cache() -> CacheService:
    if _cache_service is None:
        raise RuntimeError("Cache not initialized.")
    return _cache_service


def invalidate_reports() -> None:
    """Drop cached report summaries after sales change; never fails the caller."""
    if _cache_service is not None:
        _cache_service.invalidate_module('reports')

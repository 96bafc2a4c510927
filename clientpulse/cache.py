"""
ClientPulse - Redis Cache

Read-through cache for API views (client detail, client lists, analytics).
Every operation is best-effort: a Redis outage makes reads miss and
writes/invalidations no-ops, never an error for the caller.
"""

import json
import logging
from typing import Any, Optional

from redis import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

# Key layout
CLIENT_KEY = 'client:{client_id}'
CLIENT_LIST_PATTERN = 'clients:*'
ANALYTICS_PATTERN = 'analytics:*'

DEFAULT_TTL_SECONDS = 300


class RedisCache:
    """JSON values in Redis with TTLs"""

    def __init__(self, redis_conn: Redis):
        self.redis = redis_conn

    @classmethod
    def from_url(cls, url: str) -> 'RedisCache':
        return cls(Redis.from_url(url, socket_timeout=2, socket_connect_timeout=2))

    def get(self, key: str) -> Optional[Any]:
        try:
            data = self.redis.get(key)
            return json.loads(data) if data else None
        except (RedisError, ValueError) as e:
            logger.warning(f"Cache get error for {key}: {e}")
            return None

    def set(self, key: str, data: Any, ttl: int = DEFAULT_TTL_SECONDS) -> bool:
        try:
            self.redis.setex(key, ttl, json.dumps(data, default=str))
            return True
        except (RedisError, TypeError) as e:
            logger.warning(f"Cache set error for {key}: {e}")
            return False

    def invalidate(self, pattern: str) -> bool:
        """Delete every key matching a glob pattern (or a single exact key)."""
        try:
            keys = list(self.redis.scan_iter(match=pattern, count=500))
            if keys:
                self.redis.delete(*keys)
            return True
        except RedisError as e:
            logger.warning(f"Cache invalidate error for {pattern}: {e}")
            return False


class NullCache:
    """Used when caching is disabled"""

    def get(self, key: str) -> Optional[Any]:
        return None

    def set(self, key: str, data: Any, ttl: int = DEFAULT_TTL_SECONDS) -> bool:
        return False

    def invalidate(self, pattern: str) -> bool:
        return False


def invalidate_client_views(cache, client_id: str) -> None:
    """Drop the cached client detail plus every fleet-level view."""
    if cache is None:
        return
    for pattern in (CLIENT_KEY.format(client_id=client_id), CLIENT_LIST_PATTERN, ANALYTICS_PATTERN):
        try:
            cache.invalidate(pattern)
        except Exception as e:
            logger.warning(f"Ignoring cache invalidation failure for {pattern}: {e}")


def get_cache(app_config):
    """Build the cache configured for this process."""
    if not app_config.CACHE_ENABLED:
        logger.info("Cache disabled - running without Redis cache")
        return NullCache()
    return RedisCache.from_url(app_config.REDIS_URL)

"""
Tests for the Redis view cache
"""

import json
from unittest.mock import Mock, patch

from redis.exceptions import ConnectionError as RedisConnectionError

from clientpulse.cache import (
    RedisCache, NullCache, get_cache, invalidate_client_views,
)


class TestRedisCache:

    def test_get_hit(self):
        redis_conn = Mock()
        redis_conn.get.return_value = json.dumps({'score': 71})
        assert RedisCache(redis_conn).get('client:c1') == {'score': 71}

    def test_get_miss(self):
        redis_conn = Mock()
        redis_conn.get.return_value = None
        assert RedisCache(redis_conn).get('client:c1') is None

    def test_set_uses_ttl(self):
        redis_conn = Mock()
        assert RedisCache(redis_conn).set('clients:all:1:10', {'total': 3}, ttl=60)
        key, ttl, payload = redis_conn.setex.call_args.args
        assert (key, ttl) == ('clients:all:1:10', 60)
        assert json.loads(payload) == {'total': 3}

    def test_invalidate_deletes_matching_keys(self):
        redis_conn = Mock()
        redis_conn.scan_iter.return_value = iter([b'clients:all:1:10', b'clients:Healthy:1:10'])

        assert RedisCache(redis_conn).invalidate('clients:*')

        redis_conn.scan_iter.assert_called_once_with(match='clients:*', count=500)
        redis_conn.delete.assert_called_once_with(b'clients:all:1:10', b'clients:Healthy:1:10')

    def test_invalidate_nothing_to_delete(self):
        redis_conn = Mock()
        redis_conn.scan_iter.return_value = iter([])
        RedisCache(redis_conn).invalidate('analytics:*')
        redis_conn.delete.assert_not_called()

    def test_redis_outage_is_not_an_error(self):
        redis_conn = Mock()
        redis_conn.get.side_effect = RedisConnectionError('down')
        redis_conn.setex.side_effect = RedisConnectionError('down')
        redis_conn.scan_iter.side_effect = RedisConnectionError('down')
        cache = RedisCache(redis_conn)

        assert cache.get('client:c1') is None
        assert cache.set('client:c1', {}) is False
        assert cache.invalidate('client:c1') is False


class TestInvalidateClientViews:

    def test_patterns(self):
        cache = Mock()
        invalidate_client_views(cache, 'c9')
        assert [c.args[0] for c in cache.invalidate.call_args_list] == [
            'client:c9', 'clients:*', 'analytics:*',
        ]

    def test_no_cache(self):
        invalidate_client_views(None, 'c9')

    def test_keeps_going_after_failure(self):
        cache = Mock()
        cache.invalidate.side_effect = [RuntimeError('boom'), True, True]
        invalidate_client_views(cache, 'c9')
        assert cache.invalidate.call_count == 3


class TestGetCache:

    def test_disabled(self):
        assert isinstance(get_cache(Mock(CACHE_ENABLED=False)), NullCache)

    @patch('clientpulse.cache.Redis')
    def test_enabled(self, mock_redis):
        cache = get_cache(Mock(CACHE_ENABLED=True, REDIS_URL='redis://cache:6379/2'))
        assert isinstance(cache, RedisCache)
        assert mock_redis.from_url.call_args.args == ('redis://cache:6379/2',)

    def test_null_cache(self):
        cache = NullCache()
        assert cache.get('x') is None
        assert cache.set('x', 1) is False
        assert cache.invalidate('x') is False

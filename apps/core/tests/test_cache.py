"""
Tests for the cache service wrapper.
"""
from unittest.mock import patch, MagicMock

import pytest

from apps.core.cache import CacheKeys, CacheService, CacheTTL, NullCache


class TestCacheKeys:

    def test_format_user_permissions_key(self):
        key = CacheKeys.format(CacheKeys.USER_EFFECTIVE_PERMISSIONS, user_id='abc')
        assert key == 'rbac:user_effective_permissions:abc'

    def test_default_ttl_is_fifteen_minutes(self):
        assert CacheTTL.RBAC_PERMISSIONS == 900


class TestCacheService:

    def test_set_then_get(self):
        service = CacheService()
        assert service.set('k1', ['view-patients'], ttl=60) is True
        assert service.get('k1') == ['view-patients']

    def test_get_missing_returns_default(self):
        assert CacheService().get('missing', default='fallback') == 'fallback'

    def test_delete_many_removes_keys(self):
        service = CacheService()
        service.set('a', 1)
        service.set('b', 2)

        assert service.delete_many(['a', 'b']) is True
        assert service.get('a') is None
        assert service.get('b') is None

    def test_delete_many_with_no_keys(self):
        assert CacheService().delete_many([]) is True

    def test_backend_errors_are_swallowed(self):
        broken = MagicMock()
        broken.get.side_effect = ConnectionError('redis down')
        broken.set.side_effect = ConnectionError('redis down')
        broken.delete_many.side_effect = ConnectionError('redis down')

        service = CacheService()
        with patch.object(CacheService, 'backend', new=broken):
            assert service.get('k', default='miss') == 'miss'
            assert service.set('k', 'v') is False
            assert service.delete_many(['k']) is False


class TestNullCache:

    @pytest.mark.parametrize('key', ['a', 'rbac:user_effective_permissions:1'])
    def test_never_stores(self, key):
        cache = NullCache()
        cache.set(key, 'value')
        assert cache.get(key) is None

    def test_delete_many_is_a_no_op(self):
        assert NullCache().delete_many(['a', 'b']) is True

"""
Caching utilities for permission resolution.

Provides centralized cache key templates, TTLs, and a thin cache service
that never lets a cache outage break a request. Anything that caches is
handed a CacheService instance (or NullCache in tests) instead of reaching
for the global django cache directly.
"""
import logging
from typing import Any, Optional
from django.conf import settings
from django.core.cache import caches

logger = logging.getLogger(__name__)


class CacheKeys:
    """Centralized cache key definitions with consistent naming."""

    # Effective permission set per user (TTL: 15 minutes)
    USER_EFFECTIVE_PERMISSIONS = "rbac:user_effective_permissions:{user_id}"

    @classmethod
    def format(cls, key_template: str, **kwargs) -> str:
        """Format a cache key with provided parameters."""
        return key_template.format(**kwargs)


class CacheTTL:
    """Cache TTL (Time To Live) constants in seconds."""

    RBAC_PERMISSIONS = 900  # 15 minutes


class CacheService:
    """
    Cache access with consistent logging and error handling.

    Wraps one configured Django cache alias. Every operation swallows backend
    errors and logs them: a failed read is a miss, a failed write is a no-op,
    and a failed delete returns False so the caller can report it.
    """

    def __init__(self, alias: Optional[str] = None):
        self.alias = alias or getattr(settings, 'RBAC_PERMISSION_CACHE_ALIAS', 'default')

    @property
    def backend(self):
        return caches[self.alias]

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get value from cache.

        Args:
            key: Cache key
            default: Default value if key not found

        Returns:
            Cached value or default
        """
        try:
            value = self.backend.get(key, default)
            if value is not None:
                logger.debug(f"Cache HIT: {key}")
            else:
                logger.debug(f"Cache MISS: {key}")
            return value
        except Exception as e:
            logger.error(f"Cache get error for key {key}: {str(e)}")
            return default

    def set(self, key: str, value: Any, ttl: int = None) -> bool:
        """
        Set value in cache.

        Returns:
            True if successful, False otherwise
        """
        try:
            self.backend.set(key, value, timeout=ttl)
            logger.debug(f"Cache SET: {key} (TTL: {ttl}s)")
            return True
        except Exception as e:
            logger.error(f"Cache set error for key {key}: {str(e)}")
            return False

    def delete_many(self, keys) -> bool:
        keys = list(keys)
        if not keys:
            return True
        try:
            self.backend.delete_many(keys)
            logger.debug(f"Cache DELETE_MANY: {len(keys)} keys")
            return True
        except Exception as e:
            logger.error(f"Cache delete_many error for {len(keys)} keys: {str(e)}")
            return False


class NullCache:
    """
    Cache that stores nothing.

    Drop-in replacement for CacheService when a caller wants every lookup
    computed from the database.
    """

    def get(self, key, default=None):
        return default

    def set(self, key, value, ttl=None):
        return True

    def delete_many(self, keys):
        return True

"""Result caches keyed by operation, provider and parameter hash."""

from __future__ import annotations

import structlog

from kio_gateway.cache.base import Cache, CacheEntry, CacheStats, CacheTTL
from kio_gateway.cache.memory_cache import MemoryCache
from kio_gateway.cache.redis_cache import RedisCache
from kio_gateway.config import CacheConfig
from kio_gateway.errors import ConfigError

logger = structlog.get_logger()


def create_cache(config: CacheConfig) -> Cache:
    """Build the configured backend."""
    if config.backend == "redis":
        if not config.redis_url:
            raise ConfigError("KIO_CACHE_BACKEND=redis requires KIO_REDIS_URL")
        logger.info("cache_backend", backend="redis", prefix=config.key_prefix)
        return RedisCache(
            url=config.redis_url,
            key_prefix=config.key_prefix,
            default_ttl=config.search_ttl,
        )
    logger.info("cache_backend", backend="memory", max_entries=config.max_entries)
    return MemoryCache(
        max_entries=config.max_entries,
        shards=config.shards,
        default_ttl=config.search_ttl,
        sweep_interval=config.sweep_interval,
        key_prefix=config.key_prefix,
    )


def ttl_from_config(config: CacheConfig) -> CacheTTL:
    return CacheTTL(search=config.search_ttl, detail=config.detail_ttl, health=config.health_ttl)


__all__ = [
    "Cache",
    "CacheEntry",
    "CacheStats",
    "CacheTTL",
    "MemoryCache",
    "RedisCache",
    "create_cache",
    "ttl_from_config",
]

"""
Redis-backed cache for deployments that share results between processes.

Values are stored as JSON under ``<prefix>:<key>`` with a native Redis TTL,
so expiry is enforced by the server. Backend failures surface as CacheError;
the orchestrator decides whether to degrade.
"""

from __future__ import annotations

import json
from typing import Any, Optional

import structlog
from redis import asyncio as redis_asyncio
from redis.exceptions import RedisError

from kio_gateway.cache.base import CacheStats
from kio_gateway.errors import CacheError

logger = structlog.get_logger()

# Lone surrogates in keys or values fail in the client encoder, not in Redis
_BACKEND_ERRORS = (RedisError, UnicodeError)


class RedisCache:
    def __init__(
        self,
        url: Optional[str] = None,
        key_prefix: str = "kio",
        default_ttl: float = 15 * 60,
        client: Optional[Any] = None,
    ) -> None:
        if client is None and not url:
            raise ValueError("RedisCache needs a url or a client")
        self._url = url
        self._prefix = key_prefix
        self.default_ttl = default_ttl
        self._client = client
        self._hits = 0
        self._misses = 0

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = redis_asyncio.from_url(self._url, decode_responses=True)
        return self._client

    def _full_key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self._get_client().get(self._full_key(key))
        except _BACKEND_ERRORS as e:
            raise CacheError(f"redis get failed: {e}") from e
        if raw is None:
            self._misses += 1
            return None
        try:
            value = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("cache_entry_corrupt", key=key)
            self._misses += 1
            return None
        self._hits += 1
        return value

    async def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        try:
            payload = json.dumps(value, ensure_ascii=False, default=str)
        except (TypeError, ValueError) as e:
            raise CacheError(f"value for {key} is not JSON-serializable") from e
        # Redis TTLs are whole seconds; never round a short TTL down to "no expiry"
        ttl = max(1, int(round(self.default_ttl if ttl_seconds is None else ttl_seconds)))
        try:
            await self._get_client().set(self._full_key(key), payload, ex=ttl)
        except _BACKEND_ERRORS as e:
            raise CacheError(f"redis set failed: {e}") from e

    async def delete(self, key: str) -> bool:
        try:
            removed = await self._get_client().delete(self._full_key(key))
        except _BACKEND_ERRORS as e:
            raise CacheError(f"redis delete failed: {e}") from e
        return bool(removed)

    async def has(self, key: str) -> bool:
        try:
            return bool(await self._get_client().exists(self._full_key(key)))
        except _BACKEND_ERRORS as e:
            raise CacheError(f"redis exists failed: {e}") from e

    async def clear(self) -> None:
        """Delete only this cache's keys; other tenants of the database are untouched."""
        client = self._get_client()
        try:
            batch: list[str] = []
            async for key in client.scan_iter(match=f"{self._prefix}:*", count=500):
                batch.append(key)
                if len(batch) >= 500:
                    await client.delete(*batch)
                    batch = []
            if batch:
                await client.delete(*batch)
        except _BACKEND_ERRORS as e:
            raise CacheError(f"redis clear failed: {e}") from e
        self._hits = 0
        self._misses = 0

    def stats(self) -> CacheStats:
        # Counting prefixed keys would need a full SCAN; size is not reported
        return CacheStats(hits=self._hits, misses=self._misses, size=0)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

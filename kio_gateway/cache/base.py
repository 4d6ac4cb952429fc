"""Cache contract shared by the memory and Redis backends."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, computed_field


class CacheStats(BaseModel):
    hits: int = 0
    misses: int = 0
    size: int = 0

    @computed_field
    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    created_at: float
    expires_at: float
    # Insertion sequence number, used for capacity eviction order
    sequence: int = 0


@dataclass(frozen=True)
class CacheTTL:
    """TTL classes in seconds."""

    search: float = 15 * 60
    detail: float = 7 * 24 * 60 * 60
    health: float = 60


@runtime_checkable
class Cache(Protocol):
    """Async key-value cache with per-entry TTL.

    Values are JSON-compatible structures. ``get`` returns None for missing or
    expired keys and never returns an expired value. ``ttl_seconds=None``
    means the backend's default TTL.
    """

    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def has(self, key: str) -> bool: ...

    async def clear(self) -> None: ...

    def stats(self) -> CacheStats: ...

    async def close(self) -> None: ...

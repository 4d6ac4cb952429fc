"""Content hashing helpers for cache keys and audit entries."""

from __future__ import annotations

import hashlib
from typing import Any


def sha256(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def short_hash(content: str) -> str:
    """First 16 hex chars of SHA-256; enough to correlate log lines."""
    return sha256(content)[:16]


def cache_key(operation: str, provider: str, *parts: Any) -> str:
    """Deterministic cache key from every parameter that affects the result.

    The readable ``operation:provider`` head keeps keys greppable in a shared
    backend; the remaining parts are hashed. ``None`` and ``""`` hash alike.
    """
    normalized = ":".join("" if p is None else str(getattr(p, "value", p)) for p in parts)
    return f"{operation}:{provider}:{sha256(normalized)}"

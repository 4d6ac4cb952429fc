"""
Bounded in-memory audit trail.

Every admitted, rejected, cached and failed operation leaves an AuditEvent.
Events are also emitted through structlog so they reach the log pipeline even
after they have been evicted from memory. Raw query text is only retained
when the trail is built with ``include_sensitive=True``; otherwise the event
carries a short hash of it.
"""

from __future__ import annotations

import threading
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

from kio_gateway.hashing import short_hash
from kio_gateway.observability import metrics

logger = structlog.get_logger()


class AuditEventKind(str, Enum):
    SEARCH = "search"
    JUDGMENT_ACCESS = "judgment_access"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    DOMAIN_BLOCKED = "domain_blocked"
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    ERROR = "error"
    HEALTH_CHECK = "health_check"


class AuditEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    kind: AuditEventKind
    caller_id: Optional[str] = None
    provider: Optional[str] = None
    resource_id: Optional[str] = None
    query: Optional[str] = None
    query_hash: Optional[str] = None
    success: bool = True
    latency_ms: Optional[float] = None
    error: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AuditTrail:
    """Thread-safe ring buffer of audit events; oldest entries are evicted first."""

    def __init__(self, max_entries: int = 10000, include_sensitive: bool = False) -> None:
        self._events: deque[AuditEvent] = deque(maxlen=max_entries)
        self._lock = threading.Lock()
        self.include_sensitive = include_sensitive

    def record(self, event: AuditEvent) -> AuditEvent:
        """Append an event, redacting the raw query unless sensitive data is allowed."""
        if event.query and not self.include_sensitive:
            event = event.model_copy(
                update={"query": None, "query_hash": event.query_hash or short_hash(event.query)}
            )
        with self._lock:
            self._events.append(event)

        log = logger.info if event.success else logger.warning
        log(
            "audit_event",
            kind=event.kind.value,
            caller_id=event.caller_id,
            provider=event.provider,
            resource_id=event.resource_id,
            query_hash=event.query_hash,
            latency_ms=event.latency_ms,
            error=event.error,
        )
        metrics.record_audit_event(event.kind.value)
        return event

    # ── Convenience recorders ──

    def log_search(
        self,
        caller_id: str,
        provider: str,
        query: Optional[str],
        result_count: int,
        latency_ms: float,
    ) -> AuditEvent:
        return self.record(AuditEvent(
            kind=AuditEventKind.SEARCH,
            caller_id=caller_id,
            provider=provider,
            query=query,
            query_hash=short_hash(query) if query else None,
            latency_ms=round(latency_ms, 2),
            metadata={"result_count": result_count},
        ))

    def log_detail_access(
        self,
        caller_id: str,
        provider: str,
        resource_id: str,
        latency_ms: float,
        operation: str = "getDetail",
    ) -> AuditEvent:
        return self.record(AuditEvent(
            kind=AuditEventKind.JUDGMENT_ACCESS,
            caller_id=caller_id,
            provider=provider,
            resource_id=resource_id,
            latency_ms=round(latency_ms, 2),
            metadata={"operation": operation},
        ))

    def log_rate_limited(self, caller_id: str, operation: str) -> AuditEvent:
        return self.record(AuditEvent(
            kind=AuditEventKind.RATE_LIMIT_EXCEEDED,
            caller_id=caller_id,
            success=False,
            error="RATE_LIMIT_EXCEEDED",
            metadata={"operation": operation},
        ))

    def log_domain_rejected(self, caller_id: str, domain: str, operation: str) -> AuditEvent:
        return self.record(AuditEvent(
            kind=AuditEventKind.DOMAIN_BLOCKED,
            caller_id=caller_id,
            success=False,
            error="DOMAIN_NOT_ALLOWED",
            metadata={"domain": domain, "operation": operation},
        ))

    def log_cache_hit(self, caller_id: str, provider: str, operation: str) -> AuditEvent:
        return self.record(AuditEvent(
            kind=AuditEventKind.CACHE_HIT,
            caller_id=caller_id,
            provider=provider,
            metadata={"operation": operation},
        ))

    def log_cache_miss(self, caller_id: str, provider: str, operation: str) -> AuditEvent:
        return self.record(AuditEvent(
            kind=AuditEventKind.CACHE_MISS,
            caller_id=caller_id,
            provider=provider,
            metadata={"operation": operation},
        ))

    def log_error(
        self,
        caller_id: str,
        operation: str,
        error_code: str,
        provider: Optional[str] = None,
        latency_ms: Optional[float] = None,
    ) -> AuditEvent:
        return self.record(AuditEvent(
            kind=AuditEventKind.ERROR,
            caller_id=caller_id,
            provider=provider,
            success=False,
            error=error_code,
            latency_ms=round(latency_ms, 2) if latency_ms is not None else None,
            metadata={"operation": operation},
        ))

    def log_health_check(self, caller_id: str, available: dict[str, bool]) -> AuditEvent:
        return self.record(AuditEvent(
            kind=AuditEventKind.HEALTH_CHECK,
            caller_id=caller_id,
            success=all(available.values()) if available else True,
            metadata={"providers": dict(available)},
        ))

    # ── Queries (copies only) ──

    def recent(self, n: int = 100) -> list[AuditEvent]:
        """Most recent events, oldest first."""
        if n <= 0:
            return []
        with self._lock:
            events = list(self._events)[-n:]
        return [e.model_copy(deep=True) for e in events]

    def by_type(self, kind: AuditEventKind, n: int = 100) -> list[AuditEvent]:
        if n <= 0:
            return []
        with self._lock:
            matches = [e for e in self._events if e.kind == kind]
        return [e.model_copy(deep=True) for e in matches[-n:]]

    def counts_by_type(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        with self._lock:
            for e in self._events:
                counts[e.kind.value] = counts.get(e.kind.value, 0) + 1
        return counts

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

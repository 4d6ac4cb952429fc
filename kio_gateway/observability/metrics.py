"""
Prometheus metrics for the KIO gateway.

All metrics are no-op when observability.metrics_enabled is False.
Exposes track_operation, track_upstream, record_cache, record_rate_limited,
record_audit_event, start_server.
"""

from __future__ import annotations

import contextlib
import threading
import time
from typing import Any

import structlog
from prometheus_client import (
    Counter,
    Histogram,
    start_http_server as prometheus_start_http_server,
)

logger = structlog.get_logger()


def _enabled() -> bool:
    from kio_gateway.config import get_settings

    return bool(get_settings().observability.metrics_enabled)


# Lazy registry: only create metrics when enabled and first used
_metrics_created = False
_create_lock = threading.Lock()


def _ensure_metrics() -> bool:
    global _metrics_created
    if _metrics_created or not _enabled():
        return _metrics_created
    with _create_lock:
        if not _metrics_created:
            _create_metrics()
            _metrics_created = True
    return True


def _create_metrics() -> None:
    """Create all Prometheus metrics (called once when enabled)."""
    # Tool operations
    _operation_duration = Histogram(
        "kio_operation_duration_seconds",
        "End-to-end tool operation latency",
        ["operation", "outcome"],
        buckets=[0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30],
    )
    _operation_errors = Counter(
        "kio_operation_errors_total",
        "Tool operations that returned an error envelope",
        ["operation", "code"],
    )

    # Upstream
    _upstream_duration = Histogram(
        "kio_upstream_request_duration_seconds",
        "Upstream HTTP latency",
        ["provider", "kind"],
        buckets=[0.1, 0.25, 0.5, 1, 2, 5, 10, 30],
    )
    _upstream_requests = Counter(
        "kio_upstream_requests_total",
        "Upstream HTTP requests by status",
        ["provider", "status"],
    )

    # Cache / admission
    _cache_lookups = Counter(
        "kio_cache_lookups_total",
        "Cache lookups",
        ["operation", "result"],
    )
    _rate_limited = Counter(
        "kio_rate_limited_total",
        "Requests rejected by the rate limiter",
        ["operation"],
    )
    _audit_events = Counter(
        "kio_audit_events_total",
        "Audit events recorded",
        ["kind"],
    )

    _registry = {
        "operation_duration": _operation_duration,
        "operation_errors": _operation_errors,
        "upstream_duration": _upstream_duration,
        "upstream_requests": _upstream_requests,
        "cache_lookups": _cache_lookups,
        "rate_limited": _rate_limited,
        "audit_events": _audit_events,
    }
    setattr(_MetricsCollector, "_registry", _registry)


class _MetricsCollector:
    """Collector that delegates to Prometheus when enabled, no-op otherwise."""

    _registry: dict[str, Any] = {}

    def _get(self, name: str) -> Any:
        _ensure_metrics()
        return self._registry.get(name)

    # --- Operations ---
    @contextlib.asynccontextmanager
    async def track_operation(self, operation: str):
        class Tracker:
            def __init__(self) -> None:
                self.outcome = "success"
                self.code = ""

            def fail(self, code: str) -> None:
                self.outcome = "error"
                self.code = code

        h = self._get("operation_duration")
        tracker = Tracker()
        start = time.perf_counter()
        try:
            yield tracker
        finally:
            if h:
                h.labels(operation=operation, outcome=tracker.outcome).observe(
                    time.perf_counter() - start
                )
            err = self._get("operation_errors")
            if err and tracker.outcome == "error":
                err.labels(operation=operation, code=tracker.code or "unknown").inc()

    # --- Upstream ---
    @contextlib.asynccontextmanager
    async def track_upstream(self, provider: str = "", kind: str = ""):
        h = self._get("upstream_duration")
        c = self._get("upstream_requests")
        start = time.perf_counter()
        status = "ok"
        try:
            yield
        except Exception as e:
            status = str(getattr(e, "status_code", type(e).__name__))
            raise
        finally:
            if h:
                h.labels(provider=provider or "unknown", kind=kind or "unknown").observe(
                    time.perf_counter() - start
                )
            if c:
                c.labels(provider=provider or "unknown", status=status).inc()

    # --- Cache / admission ---
    def record_cache(self, operation: str, hit: bool) -> None:
        c = self._get("cache_lookups")
        if c:
            c.labels(operation=operation, result="hit" if hit else "miss").inc()

    def record_rate_limited(self, operation: str) -> None:
        c = self._get("rate_limited")
        if c:
            c.labels(operation=operation).inc()

    def record_audit_event(self, kind: str) -> None:
        c = self._get("audit_events")
        if c:
            c.labels(kind=kind).inc()

    def start_server(self, port: int = 9464) -> None:
        if not _enabled():
            return
        _ensure_metrics()

        def run() -> None:
            try:
                prometheus_start_http_server(port, addr="0.0.0.0")
            except OSError as e:
                logger.warning("metrics_server_failed", port=port, error=str(e))

        t = threading.Thread(target=run, daemon=True)
        t.start()


metrics = _MetricsCollector()

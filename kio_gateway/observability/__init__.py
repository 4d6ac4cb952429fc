"""Observability: structlog configuration and Prometheus metrics for the KIO gateway."""

from kio_gateway.observability.logging import configure_logging
from kio_gateway.observability.metrics import metrics

__all__ = ["configure_logging", "metrics"]

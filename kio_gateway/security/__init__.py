"""Admission control and accountability: allowlist, rate limits, audit trail."""

from kio_gateway.security.allowlist import DomainAllowlist
from kio_gateway.security.audit import AuditEvent, AuditEventKind, AuditTrail
from kio_gateway.security.rate_limiter import RateLimiter, RateLimiters

__all__ = [
    "AuditEvent",
    "AuditEventKind",
    "AuditTrail",
    "DomainAllowlist",
    "RateLimiter",
    "RateLimiters",
]

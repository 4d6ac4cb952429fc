"""
Error taxonomy for the gateway.

Every failure that can reach a caller is a KioError carrying a machine-readable
code, a human-readable message, and a retryability flag. Lower layers raise
these; the orchestrator is the only place that turns them into responses.
"""

from __future__ import annotations

from typing import Any, Optional


class KioError(Exception):
    """Base for gateway errors."""

    code = "INTERNAL_ERROR"
    retryable = False

    def __init__(self, message: str, *, retryable: Optional[bool] = None) -> None:
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }


class ValidationError(KioError):
    """Input did not match the operation's shape. Never retryable."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message, retryable=False)
        self.field = field


class ProviderError(KioError):
    """Upstream failure; retryable only if the transport classified it so."""

    code = "PROVIDER_ERROR"

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: int = 503,
        retryable: bool = True,
    ) -> None:
        super().__init__(message, retryable=retryable)
        self.provider = provider
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "provider": self.provider, "status_code": self.status_code}


class ProviderUnavailableError(KioError):
    """Requested provider is not registered; raised before any network call."""

    code = "PROVIDER_UNAVAILABLE"

    def __init__(self, provider: str) -> None:
        super().__init__(f"Provider {provider} not available", retryable=False)
        self.provider = provider


class NotFoundError(KioError):
    """The upstream confirmed the resource does not exist."""

    code = "NOT_FOUND"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        super().__init__(f"{resource_type} not found: {resource_id}", retryable=False)
        self.resource_type = resource_type
        self.resource_id = resource_id


class UpstreamTimeoutError(KioError):
    """Deadline exceeded waiting for an upstream or a caller-supplied timeout."""

    code = "TIMEOUT"
    retryable = True

    def __init__(self, message: str, timeout_seconds: Optional[float] = None) -> None:
        super().__init__(message, retryable=True)
        self.timeout_seconds = timeout_seconds


class RateLimitError(KioError):
    """Admission denied by a sliding-window limiter."""

    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str, retry_after_seconds: float) -> None:
        super().__init__(message, retryable=True)
        self.retry_after_seconds = retry_after_seconds

    @property
    def retry_after_ms(self) -> int:
        return max(1, int(self.retry_after_seconds * 1000))

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "retry_after_ms": self.retry_after_ms}


class DomainRejectedError(KioError):
    """Outbound request targeted a host outside the allowlist."""

    code = "DOMAIN_NOT_ALLOWED"

    def __init__(self, domain: str) -> None:
        super().__init__(f"Domain not allowed: {domain}", retryable=False)
        self.domain = domain


class InternalError(KioError):
    """Unclassified failure; retryable as a conservative default."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        super().__init__(message, retryable=True)


class CacheError(Exception):
    """Cache backend failure. Never surfaced to callers."""


class ConfigError(Exception):
    """Invalid configuration detected at startup."""

"""
Shared HTTP transport for upstream adapters.

Wraps an httpx.AsyncClient with the outbound allowlist, a per-request
timeout, status classification and bounded retries. Adapters never touch
httpx directly; they get JSON or HTML bodies back or a KioError.

Classification:
  - 2xx             -> HttpResponse
  - 429, 5xx        -> ProviderError(retryable=True)
  - other non-2xx   -> ProviderError(retryable=False)
  - timeout         -> UpstreamTimeoutError (retryable)
  - network failure -> ProviderError(status_code=503, retryable=True)
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from kio_gateway.errors import ProviderError, UpstreamTimeoutError
from kio_gateway.observability import metrics
from kio_gateway.security.allowlist import DomainAllowlist

logger = structlog.get_logger()


def _is_retryable_upstream_error(exc: BaseException) -> bool:
    """Only retry failures the transport marked transient (5xx, 429, network)."""
    return isinstance(exc, ProviderError) and exc.retryable


@dataclass
class HttpResponse:
    data: Any
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)


class HttpTransport:
    """One upstream's HTTP client: base URL, allowlist, timeout and retry policy."""

    def __init__(
        self,
        base_url: str,
        provider: str,
        *,
        timeout: float = 30.0,
        headers: Optional[dict[str, str]] = None,
        allowlist: Optional[DomainAllowlist] = None,
        retry_attempts: int = 2,
        retry_wait_min: float = 0.5,
        retry_wait_max: float = 4.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.provider = provider
        self.timeout = timeout
        self.headers = dict(headers or {})
        self._allowlist = allowlist
        self._retry_attempts = max(1, retry_attempts)
        self._retry_wait_min = retry_wait_min
        self._retry_wait_max = retry_wait_max
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self.headers,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def build_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def get_json(self, path: str, params: Optional[dict[str, Any]] = None) -> HttpResponse:
        return await self._request(path, params, expect_json=True)

    async def get_html(self, path: str, params: Optional[dict[str, Any]] = None) -> HttpResponse:
        return await self._request(path, params, expect_json=False)

    async def _request(
        self,
        path: str,
        params: Optional[dict[str, Any]],
        *,
        expect_json: bool,
    ) -> HttpResponse:
        url = self.build_url(path)
        if self._allowlist is not None:
            self._allowlist.check_url(url)

        clean_params = {k: v for k, v in (params or {}).items() if v is not None and v != ""}

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(min=self._retry_wait_min, max=self._retry_wait_max),
            retry=retry_if_exception(_is_retryable_upstream_error),
            reraise=True,
            before_sleep=lambda rs: logger.warning(
                "upstream_retry",
                provider=self.provider,
                url=url,
                attempt=rs.attempt_number,
                error=str(rs.outcome.exception()) if rs.outcome else "unknown",
            ),
        )
        async for attempt in retrying:
            with attempt:
                return await self._send(url, clean_params, expect_json=expect_json)
        raise AssertionError("unreachable")  # pragma: no cover

    async def _send(
        self,
        url: str,
        params: dict[str, Any],
        *,
        expect_json: bool,
    ) -> HttpResponse:
        client = await self._get_client()
        accept = "application/json" if expect_json else "text/html,application/xhtml+xml"
        start = time.perf_counter()

        async with metrics.track_upstream(provider=self.provider, kind="json" if expect_json else "html"):
            try:
                response = await client.get(url, params=params or None, headers={"Accept": accept})
            except httpx.TimeoutException as e:
                logger.warning("upstream_timeout", provider=self.provider, url=url, timeout=self.timeout)
                raise UpstreamTimeoutError(
                    f"Request to {self.provider} timed out after {self.timeout:g}s",
                    timeout_seconds=self.timeout,
                ) from e
            except httpx.HTTPError as e:
                logger.warning("upstream_network_error", provider=self.provider, url=url, error=str(e))
                raise ProviderError(
                    f"Network error contacting {self.provider}: {e}",
                    provider=self.provider,
                    status_code=503,
                    retryable=True,
                ) from e

            elapsed_ms = (time.perf_counter() - start) * 1000
            status = response.status_code
            if not response.is_success:
                logger.warning(
                    "upstream_http_error",
                    provider=self.provider,
                    url=url,
                    status_code=status,
                    latency_ms=round(elapsed_ms, 1),
                )
                raise ProviderError(
                    f"HTTP {status}: {response.reason_phrase}",
                    provider=self.provider,
                    status_code=status,
                    retryable=status >= 500 or status == 429,
                )

            if expect_json:
                try:
                    data: Any = response.json()
                except ValueError as e:
                    raise ProviderError(
                        f"Invalid JSON from {self.provider}",
                        provider=self.provider,
                        status_code=status,
                        retryable=False,
                    ) from e
            else:
                data = response.text

        logger.debug(
            "upstream_request",
            provider=self.provider,
            url=url,
            status_code=status,
            latency_ms=round(elapsed_ms, 1),
        )
        return HttpResponse(data=data, status_code=status, headers=dict(response.headers))

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

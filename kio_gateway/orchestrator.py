"""
Request pipeline shared by every tool operation.

    validate -> rate limit -> resolve provider -> cache lookup
             -> dispatch (optional deadline) -> cache store -> audit -> respond

The orchestrator is the only place where exceptions become responses: every
KioError is rendered as-is, anything else is logged and rendered as a
retryable INTERNAL_ERROR. Cache and audit failures never fail a request.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, Optional, TypeVar

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from kio_gateway.cache import Cache, CacheTTL, create_cache, ttl_from_config
from kio_gateway.config import Settings, get_settings
from kio_gateway.errors import (
    DomainRejectedError,
    InternalError,
    KioError,
    ProviderUnavailableError,
    RateLimitError,
    UpstreamTimeoutError,
    ValidationError,
)
from kio_gateway.hashing import cache_key
from kio_gateway.models import DetailParams, ProviderName, SearchParams
from kio_gateway.observability import metrics
from kio_gateway.providers import JudgmentProvider, build_providers
from kio_gateway.schemas import (
    CacheHealth,
    DetailInput,
    ErrorBody,
    HealthInput,
    HealthOutput,
    Pagination,
    ProviderPreference,
    ResponseMetadata,
    SearchInput,
    SearchOutput,
    ServerInfo,
    SourceLinksInput,
    SourceLinksOutput,
    ToolFailure,
    ToolResponse,
    ToolResult,
)
from kio_gateway.security import AuditTrail, DomainAllowlist, RateLimiter, RateLimiters

logger = structlog.get_logger()

DEFAULT_CALLER = "default"

# Operation identifiers used in cache keys, audit metadata and logs
OP_SEARCH = "search"
OP_DETAIL = "getDetail"
OP_SOURCE_LINKS = "getSourceLinks"
OP_HEALTH = "healthCheck"

InputT = TypeVar("InputT", bound=BaseModel)
Handler = Callable[[Any, str, Optional[float]], Awaitable[tuple[Any, bool]]]


def _format_validation_error(exc: PydanticValidationError) -> ValidationError:
    parts = []
    first_field: Optional[str] = None
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        if first_field is None and loc:
            first_field = loc
        msg = err.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return ValidationError(f"Invalid input: {'; '.join(parts)}", field=first_field)


class Orchestrator:
    """Runs the four gateway operations against the provider registry."""

    def __init__(
        self,
        providers: dict[str, JudgmentProvider],
        cache: Cache,
        rate_limiters: RateLimiters,
        audit: AuditTrail,
        ttl: Optional[CacheTTL] = None,
        server_name: str = "kio-gateway",
        server_version: str = "0.1.0",
        cache_backend: str = "memory",
    ) -> None:
        self.providers = providers
        self.cache = cache
        self.rate_limiters = rate_limiters
        self.audit = audit
        self.ttl = ttl or CacheTTL()
        self.server_name = server_name
        self.server_version = server_version
        self.cache_backend = cache_backend
        self.started_at = datetime.now(timezone.utc)
        self._started_monotonic = time.monotonic()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> Orchestrator:
        settings = settings or get_settings()
        obs = settings.observability
        allowlist = DomainAllowlist(settings.allowed_domains, settings.allow_subdomains)
        return cls(
            providers=build_providers(settings, allowlist),
            cache=create_cache(settings.cache),
            rate_limiters=RateLimiters.from_config(settings.rate_limits),
            audit=AuditTrail(obs.audit_max_entries, include_sensitive=obs.audit_include_sensitive),
            ttl=ttl_from_config(settings.cache),
            server_name=settings.server.name,
            server_version=settings.server.version,
            cache_backend=settings.cache.backend,
        )

    # ── Public operations ──

    async def search(
        self,
        raw: Any,
        caller_id: str = DEFAULT_CALLER,
        timeout: Optional[float] = None,
    ) -> ToolResponse:
        return await self._execute(
            OP_SEARCH, raw, SearchInput, self.rate_limiters.search, caller_id, timeout, self._search
        )

    async def get_detail(
        self,
        raw: Any,
        caller_id: str = DEFAULT_CALLER,
        timeout: Optional[float] = None,
    ) -> ToolResponse:
        return await self._execute(
            OP_DETAIL, raw, DetailInput, self.rate_limiters.detail, caller_id, timeout, self._get_detail
        )

    async def get_source_links(
        self,
        raw: Any,
        caller_id: str = DEFAULT_CALLER,
        timeout: Optional[float] = None,
    ) -> ToolResponse:
        return await self._execute(
            OP_SOURCE_LINKS,
            raw,
            SourceLinksInput,
            self.rate_limiters.detail,
            caller_id,
            timeout,
            self._get_source_links,
        )

    async def health_check(
        self,
        raw: Any = None,
        caller_id: str = DEFAULT_CALLER,
        timeout: Optional[float] = None,
    ) -> ToolResponse:
        return await self._execute(
            OP_HEALTH, raw, HealthInput, self.rate_limiters.health, caller_id, timeout, self._health
        )

    async def close(self) -> None:
        for provider in self.providers.values():
            await provider.close()
        await self.cache.close()

    # ── Pipeline ──

    async def _execute(
        self,
        operation: str,
        raw: Any,
        input_model: type[InputT],
        limiter: RateLimiter,
        caller_id: str,
        timeout: Optional[float],
        handler: Handler,
    ) -> ToolResponse:
        start = time.perf_counter()
        caller_id = caller_id or DEFAULT_CALLER

        async with metrics.track_operation(operation) as tracker:
            try:
                params = self._validate(input_model, raw)
                self._admit(limiter, caller_id, operation)
                data, cached = await handler(params, caller_id, timeout)
            except KioError as e:
                error = e
            except Exception:
                logger.exception("operation_unexpected_error", operation=operation, caller_id=caller_id)
                error = InternalError()
            else:
                elapsed = round((time.perf_counter() - start) * 1000, 2)
                logger.info(
                    "operation_complete",
                    operation=operation,
                    caller_id=caller_id,
                    cached=cached,
                    duration_ms=elapsed,
                )
                return ToolResult(data=data, metadata=ResponseMetadata(query_time_ms=elapsed, cached=cached))

            tracker.fail(error.code)
            elapsed = round((time.perf_counter() - start) * 1000, 2)
            self._audit_failure(operation, caller_id, error, elapsed)
            logger.warning(
                "operation_failed",
                operation=operation,
                caller_id=caller_id,
                code=error.code,
                retryable=error.retryable,
                error=error.message,
                duration_ms=elapsed,
            )
            return ToolFailure(
                error=ErrorBody(
                    code=error.code,
                    message=error.message,
                    retryable=error.retryable,
                    retry_after_ms=error.retry_after_ms if isinstance(error, RateLimitError) else None,
                )
            )

    def _validate(self, input_model: type[InputT], raw: Any) -> InputT:
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ValidationError("Invalid input: expected an object")
        try:
            return input_model.model_validate(raw)
        except PydanticValidationError as e:
            raise _format_validation_error(e) from e

    def _admit(self, limiter: RateLimiter, caller_id: str, operation: str) -> None:
        try:
            limiter.check_limit(caller_id)
        except RateLimitError:
            metrics.record_rate_limited(operation)
            self._safe_audit(self.audit.log_rate_limited, caller_id, operation)
            raise

    def _resolve(self, name: str) -> JudgmentProvider:
        if name == ProviderPreference.AUTO.value:
            name = ProviderName.SAOS.value
        provider = self.providers.get(name)
        if provider is None:
            raise ProviderUnavailableError(name)
        return provider

    async def _dispatch(self, awaitable: Awaitable[Any], timeout: Optional[float], operation: str) -> Any:
        if timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError:
            raise UpstreamTimeoutError(
                f"{operation} exceeded deadline of {timeout:g}s", timeout_seconds=timeout
            ) from None

    async def _cache_get(self, key: str, caller_id: str, provider: str, operation: str) -> Optional[Any]:
        try:
            value = await self.cache.get(key)
        except Exception as e:  # cache failures never fail a request
            logger.warning("cache_get_failed", key=key, error=str(e))
            return None
        hit = value is not None
        metrics.record_cache(operation, hit)
        if hit:
            self._safe_audit(self.audit.log_cache_hit, caller_id, provider, operation)
        else:
            self._safe_audit(self.audit.log_cache_miss, caller_id, provider, operation)
        return value

    async def _cache_set(self, key: str, value: Any, ttl_seconds: float) -> None:
        try:
            await self.cache.set(key, value, ttl_seconds)
        except Exception as e:
            logger.warning("cache_set_failed", key=key, error=str(e))

    def _safe_audit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        try:
            fn(*args, **kwargs)
        except Exception as e:  # audit must never fail a request
            logger.warning("audit_failed", error=str(e))

    def _audit_failure(self, operation: str, caller_id: str, error: KioError, elapsed_ms: float) -> None:
        if isinstance(error, RateLimitError):
            return  # recorded at admission
        if isinstance(error, DomainRejectedError):
            self._safe_audit(self.audit.log_domain_rejected, caller_id, error.domain, operation)
            return
        self._safe_audit(
            self.audit.log_error,
            caller_id,
            operation,
            error.code,
            provider=getattr(error, "provider", None),
            latency_ms=elapsed_ms,
        )

    # ── Handlers ──

    async def _search(self, params: SearchInput, caller_id: str, timeout: Optional[float]) -> tuple[Any, bool]:
        start = time.perf_counter()
        provider = self._resolve(params.provider.value)
        key = cache_key(
            OP_SEARCH,
            provider.name,
            params.query,
            params.case_number,
            params.date_from,
            params.date_to,
            params.judgment_type,
            params.limit,
            params.page,
            params.include_snippets,
        )
        cached = await self._cache_get(key, caller_id, provider.name, OP_SEARCH)
        if cached is not None:
            return cached, True

        page = await self._dispatch(
            provider.search(SearchParams(
                query=params.query,
                case_number=params.case_number,
                date_from=params.date_from,
                date_to=params.date_to,
                judgment_type=params.judgment_type,
                limit=params.limit,
                page=params.page,
                include_snippets=params.include_snippets,
            )),
            timeout,
            OP_SEARCH,
        )
        results = page.results[: params.limit]
        output = SearchOutput(
            provider=provider.name,
            results=results,
            pagination=Pagination(
                page=params.page,
                limit=params.limit,
                total=page.total_count,
                has_more=page.next_page is not None,
                next_page=page.next_page,
            ),
        ).model_dump(mode="json")

        await self._cache_set(key, output, self.ttl.search)
        self._safe_audit(
            self.audit.log_search,
            caller_id,
            provider.name,
            params.query or params.case_number,
            len(results),
            (time.perf_counter() - start) * 1000,
        )
        return output, False

    async def _get_detail(self, params: DetailInput, caller_id: str, timeout: Optional[float]) -> tuple[Any, bool]:
        start = time.perf_counter()
        provider = self._resolve(params.provider.value)
        key = cache_key(
            OP_DETAIL,
            provider.name,
            params.provider_id,
            params.format_preference,
            params.max_chars,
            params.offset_chars,
        )
        cached = await self._cache_get(key, caller_id, provider.name, OP_DETAIL)
        if cached is not None:
            return cached, True

        result = await self._dispatch(
            provider.get_detail(DetailParams(
                provider_id=params.provider_id,
                format_preference=params.format_preference,
                max_chars=params.max_chars,
                offset_chars=params.offset_chars,
            )),
            timeout,
            OP_DETAIL,
        )
        output = result.model_dump(mode="json")

        await self._cache_set(key, output, self.ttl.detail)
        self._safe_audit(
            self.audit.log_detail_access,
            caller_id,
            provider.name,
            params.provider_id,
            (time.perf_counter() - start) * 1000,
        )
        return output, False

    async def _get_source_links(
        self, params: SourceLinksInput, caller_id: str, timeout: Optional[float]
    ) -> tuple[Any, bool]:
        start = time.perf_counter()
        provider = self._resolve(params.provider.value)
        links = provider.get_source_links(params.provider_id)
        self._safe_audit(
            self.audit.log_detail_access,
            caller_id,
            provider.name,
            params.provider_id,
            (time.perf_counter() - start) * 1000,
            operation=OP_SOURCE_LINKS,
        )
        output = SourceLinksOutput(provider=provider.name, provider_id=params.provider_id, links=links)
        return output.model_dump(mode="json"), False

    async def _health(self, params: HealthInput, caller_id: str, timeout: Optional[float]) -> tuple[Any, bool]:
        if params.provider is not None:
            targets = [self._resolve(params.provider.value)]
        else:
            targets = list(self.providers.values())

        key = f"health:{params.provider.value if params.provider else 'all'}"
        cached = await self._cache_get(key, caller_id, params.provider.value if params.provider else "all", OP_HEALTH)
        if cached is not None:
            return cached, True

        statuses = await self._dispatch(
            asyncio.gather(*(p.health_check() for p in targets)),
            timeout,
            OP_HEALTH,
        )
        output = HealthOutput(
            healthy=all(s.available for s in statuses),
            providers=list(statuses),
            cache=await self._cache_health(),
            server=ServerInfo(
                name=self.server_name,
                version=self.server_version,
                uptime_seconds=round(time.monotonic() - self._started_monotonic, 1),
                started_at=self.started_at,
            ),
        ).model_dump(mode="json")

        await self._cache_set(key, output, self.ttl.health)
        self._safe_audit(self.audit.log_health_check, caller_id, {s.provider: s.available for s in statuses})
        return output, False

    async def _cache_health(self) -> CacheHealth:
        backend = "redis" if self.cache_backend == "redis" else "memory"
        try:
            await self.cache.has("health:ping")
        except Exception as e:
            logger.warning("cache_unhealthy", backend=backend, error=str(e))
            return CacheHealth(type=backend, healthy=False)
        stats = self.cache.stats()
        return CacheHealth(type=backend, healthy=True, hits=stats.hits, misses=stats.misses, size=stats.size)

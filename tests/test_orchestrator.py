"""Tests for the request pipeline: validation, admission, caching, dispatch and envelopes."""

from typing import Any, Optional

import pytest

from conftest import FakeProvider
from kio_gateway.cache import CacheStats, CacheTTL, MemoryCache
from kio_gateway.config import Settings
from kio_gateway.errors import CacheError, NotFoundError
from kio_gateway.orchestrator import Orchestrator
from kio_gateway.schemas import ToolFailure, ToolResult
from kio_gateway.security import AuditEventKind, AuditTrail, RateLimiter, RateLimiters


class BrokenCache:
    """Cache whose backend is always down."""

    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error or CacheError("down")

    async def get(self, key: str) -> Optional[Any]:
        raise self.error

    async def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        raise self.error

    async def delete(self, key: str) -> bool:
        raise self.error

    async def has(self, key: str) -> bool:
        raise self.error

    async def clear(self) -> None:
        raise self.error

    def stats(self) -> CacheStats:
        return CacheStats()

    async def close(self) -> None:
        pass


@pytest.fixture
def build(clock):
    def _build(
        providers: Optional[dict[str, FakeProvider]] = None,
        cache: Any = None,
        search_limit: int = 100,
        detail_limit: int = 100,
        health_limit: int = 100,
    ) -> Orchestrator:
        if providers is None:
            providers = {"saos": FakeProvider("saos")}
        return Orchestrator(
            providers=providers,
            cache=cache if cache is not None else MemoryCache(sweep_interval=None, clock=clock),
            rate_limiters=RateLimiters(
                search=RateLimiter(search_limit, 60, clock),
                detail=RateLimiter(detail_limit, 60, clock),
                health=RateLimiter(health_limit, 60, clock),
            ),
            audit=AuditTrail(),
            ttl=CacheTTL(),
        )

    return _build


# ═══════════════════════════════════════════════════════════
# Search
# ═══════════════════════════════════════════════════════════


class TestSearch:
    @pytest.mark.asyncio
    async def test_limit_respected_and_dates_iso(self, build) -> None:
        orch = build()
        response = await orch.search({"query": "odwołanie", "limit": 5})
        assert isinstance(response, ToolResult)
        data = response.data
        assert data["provider"] == "saos"
        assert len(data["results"]) <= 5
        for record in data["results"]:
            assert len(record["judgment_date"]) == 10
            assert record["judgment_date"][4] == "-"
        assert data["pagination"] == {
            "page": 1,
            "limit": 5,
            "total": 10,
            "has_more": True,
            "next_page": 2,
        }
        assert response.metadata.cached is False

    @pytest.mark.asyncio
    async def test_second_identical_search_is_cached(self, build) -> None:
        provider = FakeProvider("saos")
        orch = build({"saos": provider})
        first = await orch.search({"query": "odwołanie"})
        second = await orch.search({"query": "  odwołanie  "})
        assert second.metadata.cached is True
        assert second.data == first.data
        assert provider.search_calls == 1

    @pytest.mark.asyncio
    async def test_different_params_are_not_shared(self, build) -> None:
        provider = FakeProvider("saos")
        orch = build({"saos": provider})
        await orch.search({"query": "odwołanie", "page": 1})
        await orch.search({"query": "odwołanie", "page": 2})
        assert provider.search_calls == 2

    @pytest.mark.asyncio
    async def test_search_audited_without_raw_query(self, build) -> None:
        orch = build()
        await orch.search({"query": "tajne zapytanie"})
        events = orch.audit.by_type(AuditEventKind.SEARCH)
        assert len(events) == 1
        assert events[0].query is None
        assert events[0].query_hash

    @pytest.mark.asyncio
    async def test_case_number_alone_is_enough(self, build) -> None:
        response = await build().search({"case_number": "KIO 3177/23"})
        assert response.success is True


# ═══════════════════════════════════════════════════════════
# Validation and admission
# ═══════════════════════════════════════════════════════════


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "raw",
        [
            {},
            {"query": ""},
            {"query": "x", "limit": 0},
            {"query": "x", "limit": 101},
            {"query": "x", "page": 0},
            {"query": "x", "date_from": "2023-02-30"},
            {"query": "x", "date_from": "2024-01-01", "date_to": "2023-01-01"},
            {"case_number": "3177/23"},
            {"query": "x", "unexpected": True},
            ["not", "an", "object"],
        ],
    )
    async def test_invalid_search_input(self, build, raw) -> None:
        provider = FakeProvider("saos")
        response = await build({"saos": provider}).search(raw)
        assert isinstance(response, ToolFailure)
        assert response.error.code == "VALIDATION_ERROR"
        assert response.error.retryable is False
        assert provider.search_calls == 0

    @pytest.mark.asyncio
    async def test_detail_window_bounds(self, build) -> None:
        orch = build()
        small = await orch.get_detail({"provider": "saos", "provider_id": "1", "max_chars": 999})
        negative = await orch.get_detail({"provider": "saos", "provider_id": "1", "offset_chars": -1})
        assert small.error.code == "VALIDATION_ERROR"
        assert negative.error.code == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_message_names_the_field(self, build) -> None:
        response = await build().search({"query": "x", "limit": 500})
        assert response.error.message.startswith("Invalid input:")
        assert "limit" in response.error.message

    @pytest.mark.asyncio
    async def test_validation_runs_before_rate_limit(self, build) -> None:
        orch = build(search_limit=1)
        for _ in range(3):
            response = await orch.search({"query": ""})
            assert response.error.code == "VALIDATION_ERROR"
        assert (await orch.search({"query": "ok"})).success is True

    @pytest.mark.asyncio
    async def test_rate_limited_with_retry_after(self, build) -> None:
        provider = FakeProvider("saos")
        orch = build({"saos": provider}, detail_limit=1)
        await orch.get_detail({"provider": "saos", "provider_id": "1"})
        response = await orch.get_detail({"provider": "saos", "provider_id": "2"})
        assert isinstance(response, ToolFailure)
        assert response.error.code == "RATE_LIMIT_EXCEEDED"
        assert response.error.retryable is True
        assert response.error.retry_after_ms > 0
        assert provider.detail_calls == 1
        assert len(orch.audit.by_type(AuditEventKind.RATE_LIMIT_EXCEEDED)) == 1

    @pytest.mark.asyncio
    async def test_callers_have_separate_budgets(self, build) -> None:
        orch = build(search_limit=1)
        assert (await orch.search({"query": "x"}, caller_id="a")).success is True
        assert (await orch.search({"query": "x"}, caller_id="b")).success is True
        assert (await orch.search({"query": "x"}, caller_id="a")).success is False


# ═══════════════════════════════════════════════════════════
# Detail and source links
# ═══════════════════════════════════════════════════════════


class TestDetail:
    @pytest.mark.asyncio
    async def test_second_identical_request_hits_cache(self, build) -> None:
        provider = FakeProvider("saos")
        orch = build({"saos": provider})
        request = {"provider": "saos", "provider_id": "1"}
        first = await orch.get_detail(request)
        second = await orch.get_detail(request)
        assert first.metadata.cached is False
        assert second.metadata.cached is True
        assert second.data == first.data
        assert provider.detail_calls == 1

    @pytest.mark.asyncio
    async def test_pagination_continues_from_next_offset(self, build) -> None:
        provider = FakeProvider("saos", text="".join(chr(ord("a") + i % 26) for i in range(2500)))
        orch = build({"saos": provider})
        first = await orch.get_detail({"provider": "saos", "provider_id": "1", "max_chars": 1000})
        cont = first.data["continuation"]
        assert len(first.data["content"]["text"]) == 1000
        assert cont["truncated"] is True
        assert cont["next_offset"] == 1000

        second = await orch.get_detail(
            {"provider": "saos", "provider_id": "1", "max_chars": 1000, "offset_chars": cont["next_offset"]}
        )
        assert second.metadata.cached is False
        assert second.data["content"]["text"] == provider.text[1000:2000]

        last = await orch.get_detail(
            {"provider": "saos", "provider_id": "1", "max_chars": 1000, "offset_chars": 2000}
        )
        assert len(last.data["content"]["text"]) == 500
        assert last.data["continuation"]["truncated"] is False
        assert last.data["continuation"]["next_offset"] is None

    @pytest.mark.asyncio
    async def test_unregistered_provider_fails_fast(self, build) -> None:
        provider = FakeProvider("saos")
        orch = build({"saos": provider})
        response = await orch.get_detail({"provider": "uzp", "provider_id": "1"})
        assert response.error.code == "PROVIDER_UNAVAILABLE"
        assert response.error.retryable is False
        assert provider.detail_calls == 0

    @pytest.mark.asyncio
    async def test_provider_error_passes_through(self, build) -> None:
        provider = FakeProvider("saos")
        provider.error = NotFoundError("judgment", "9")
        orch = build({"saos": provider})
        response = await orch.get_detail({"provider": "saos", "provider_id": "9"})
        assert response.error.code == "NOT_FOUND"
        assert response.error.retryable is False
        assert response.error.retry_after_ms is None
        errors = orch.audit.by_type(AuditEventKind.ERROR)
        assert errors[-1].error == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_deadline_exceeded_is_retryable_timeout(self, build) -> None:
        provider = FakeProvider("saos")
        provider.delay = 0.5
        orch = build({"saos": provider})
        response = await orch.get_detail({"provider": "saos", "provider_id": "1"}, timeout=0.01)
        assert response.error.code == "TIMEOUT"
        assert response.error.retryable is True

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_internal_error(self, build) -> None:
        provider = FakeProvider("saos")
        provider.error = RuntimeError("secret stack detail")
        orch = build({"saos": provider})
        response = await orch.get_detail({"provider": "saos", "provider_id": "1"})
        assert response.error.code == "INTERNAL_ERROR"
        assert response.error.retryable is True
        assert "secret" not in response.error.message

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, build) -> None:
        provider = FakeProvider("saos")
        provider.error = RuntimeError("boom")
        orch = build({"saos": provider})
        request = {"provider": "saos", "provider_id": "1"}
        await orch.get_detail(request)
        provider.error = None
        response = await orch.get_detail(request)
        assert response.success is True
        assert response.metadata.cached is False
        assert provider.detail_calls == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            UnicodeEncodeError("utf-8", "\ud800", 0, 1, "surrogates not allowed"),
            RuntimeError("unexpected backend failure"),
        ],
    )
    async def test_unclassified_cache_failure_is_not_fatal(self, build, error) -> None:
        provider = FakeProvider("saos")
        orch = build({"saos": provider}, cache=BrokenCache(error))
        response = await orch.get_detail({"provider": "saos", "provider_id": "1"})
        assert response.success is True
        assert response.metadata.cached is False
        health = await orch.health_check()
        assert health.data["cache"]["healthy"] is False

    @pytest.mark.asyncio
    async def test_cache_outage_degrades_to_uncached(self, build) -> None:
        provider = FakeProvider("saos")
        orch = build({"saos": provider}, cache=BrokenCache())
        request = {"provider": "saos", "provider_id": "1"}
        assert (await orch.get_detail(request)).success is True
        assert (await orch.get_detail(request)).metadata.cached is False
        assert provider.detail_calls == 2

    @pytest.mark.asyncio
    async def test_source_links(self, build) -> None:
        orch = build()
        response = await orch.get_source_links({"provider": "saos", "provider_id": "42"})
        assert response.data == {
            "provider": "saos",
            "provider_id": "42",
            "links": {
                "saos_href": "https://www.saos.org.pl/judgments/42",
                "saos_source_url": None,
                "uzp_html": None,
                "uzp_pdf": None,
            },
        }
        access = orch.audit.by_type(AuditEventKind.JUDGMENT_ACCESS)
        assert access[-1].metadata["operation"] == "getSourceLinks"


# ═══════════════════════════════════════════════════════════
# Health
# ═══════════════════════════════════════════════════════════


class TestHealth:
    @pytest.mark.asyncio
    async def test_aggregates_providers_and_reports_cache(self, build) -> None:
        saos = FakeProvider("saos")
        uzp = FakeProvider("uzp", available=False)
        orch = build({"saos": saos, "uzp": uzp})
        response = await orch.health_check()
        data = response.data
        assert data["healthy"] is False
        assert {p["provider"] for p in data["providers"]} == {"saos", "uzp"}
        assert data["cache"]["type"] == "memory"
        assert data["cache"]["healthy"] is True
        assert data["server"]["name"] == "kio-gateway"
        assert data["server"]["uptime_seconds"] >= 0

    @pytest.mark.asyncio
    async def test_health_is_cached(self, build) -> None:
        saos = FakeProvider("saos")
        orch = build({"saos": saos})
        await orch.health_check({})
        second = await orch.health_check({})
        assert second.metadata.cached is True
        assert saos.health_calls == 1

    @pytest.mark.asyncio
    async def test_single_provider(self, build) -> None:
        orch = build({"saos": FakeProvider("saos"), "uzp": FakeProvider("uzp")})
        response = await orch.health_check({"provider": "uzp"})
        assert [p["provider"] for p in response.data["providers"]] == ["uzp"]
        assert response.data["healthy"] is True

    @pytest.mark.asyncio
    async def test_cache_outage_reported(self, build) -> None:
        orch = build(cache=BrokenCache())
        response = await orch.health_check()
        assert response.data["cache"]["healthy"] is False


class TestFromSettings:
    @pytest.mark.asyncio
    async def test_wires_registry_from_settings(self) -> None:
        orch = Orchestrator.from_settings(Settings())
        assert set(orch.providers) == {"saos", "uzp"}
        assert orch.ttl.detail == 7 * 24 * 60 * 60
        await orch.close()

"""Shared pytest fixtures for KIO gateway tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, Optional

import httpx
import pytest

from kio_gateway.models import (
    CanonicalMetadata,
    CanonicalRecord,
    DetailParams,
    DetailResult,
    HealthStatus,
    JudgmentContent,
    JudgmentType,
    SearchPage,
    SearchParams,
    SourceLinks,
)
from kio_gateway.normalization import paginate
from kio_gateway.security import DomainAllowlist
from kio_gateway.transport import HttpTransport

SAOS_BASE = "https://www.saos.org.pl"
UZP_BASE = "https://orzeczenia.uzp.gov.pl"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def allowlist() -> DomainAllowlist:
    return DomainAllowlist(["saos.org.pl", "www.saos.org.pl", "uzp.gov.pl", "orzeczenia.uzp.gov.pl"])


@pytest.fixture
def make_transport(allowlist: DomainAllowlist) -> Callable[..., HttpTransport]:
    """Build an HttpTransport whose requests are answered by ``handler``."""

    def _make(
        handler: Callable[[httpx.Request], httpx.Response],
        base_url: str = SAOS_BASE,
        provider: str = "saos",
        retry_attempts: int = 1,
    ) -> HttpTransport:
        return HttpTransport(
            base_url,
            provider,
            timeout=5.0,
            headers={"User-Agent": "kio-gateway-tests"},
            allowlist=allowlist,
            retry_attempts=retry_attempts,
            retry_wait_min=0,
            retry_wait_max=0,
            transport=httpx.MockTransport(handler),
        )

    return _make


def saos_item(item_id: int = 512345, **overrides: Any) -> dict[str, Any]:
    item: dict[str, Any] = {
        "id": item_id,
        "courtType": "NATIONAL_APPEAL_CHAMBER",
        "courtCases": [{"caseNumber": "KIO 3177/23"}],
        "judgmentType": "SENTENCE",
        "judgmentDate": "2023-12-15",
        "judges": [{"name": "Anna Kowalska", "function": "PRESIDING_JUDGE"}, {"name": "Jan Nowak"}],
        "source": {"judgmentUrl": "https://orzeczenia.uzp.gov.pl/Home/Details/12345"},
        "decision": "oddala odwołanie",
        "summary": "Izba oddała odwołanie wykonawcy w postępowaniu o udzielenie zamówienia.",
        "textContent": "<p>Sygn. akt: KIO 3177/23</p><p>WYROK z dnia 15 grudnia 2023 r.</p>",
        "keywords": ["zamówienia publiczne", "odwołanie"],
        "legalBases": ["art. 226 ust. 1 pkt 5 Pzp"],
    }
    item.update(overrides)
    return item


@pytest.fixture
def saos_record() -> dict[str, Any]:
    return saos_item()


class FakeProvider:
    """In-memory provider that counts calls."""

    def __init__(
        self,
        name: str = "saos",
        text: str = "x" * 2500,
        records: Optional[list[CanonicalRecord]] = None,
        available: bool = True,
    ) -> None:
        self.name = name
        self.text = text
        self.records = records if records is not None else [
            CanonicalRecord(
                provider=name,
                provider_id=str(i),
                case_numbers=[f"KIO {i}/23"],
                judgment_date="2023-01-%02d" % (i + 1),
                judgment_type=JudgmentType.SENTENCE,
                source_url=f"{SAOS_BASE}/judgments/{i}",
            )
            for i in range(10)
        ]
        self.available = available
        self.search_calls = 0
        self.detail_calls = 0
        self.health_calls = 0
        self.error: Optional[Exception] = None
        self.delay: float = 0.0

    async def _maybe_fail(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

    async def search(self, params: SearchParams) -> SearchPage:
        self.search_calls += 1
        await self._maybe_fail()
        return SearchPage(
            results=self.records[: params.limit],
            next_page=params.page + 1 if len(self.records) > params.limit else None,
            total_count=len(self.records),
        )

    async def get_detail(self, params: DetailParams) -> DetailResult:
        self.detail_calls += 1
        await self._maybe_fail()
        page = paginate(self.text, params.max_chars, params.offset_chars)
        return DetailResult(
            metadata=CanonicalMetadata(case_numbers=["KIO 1/23"], judgment_date="2023-01-02"),
            content=JudgmentContent(text=page.text),
            continuation=page.continuation,
            source_links=self.get_source_links(params.provider_id),
        )

    def get_source_links(self, provider_id: str) -> SourceLinks:
        return SourceLinks(saos_href=f"{SAOS_BASE}/judgments/{provider_id}")

    async def health_check(self) -> HealthStatus:
        self.health_calls += 1
        return HealthStatus(provider=self.name, available=self.available, latency_ms=1.0)

    async def close(self) -> None:
        pass


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


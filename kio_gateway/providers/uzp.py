"""
UZP adapter (HTML portal at orzeczenia.uzp.gov.pl).

The portal has no search API, so search is a documented empty result; SAOS
serves discovery. Detail pages are plain HTML from which case numbers, date,
decision and judgment kind are recovered by pattern matching.
"""

from __future__ import annotations

import re
import time
from typing import Optional

import structlog

from kio_gateway.errors import KioError, NotFoundError, ProviderError
from kio_gateway.models import (
    DetailParams,
    DetailResult,
    FormatPreference,
    HealthStatus,
    JudgmentContent,
    JudgmentType,
    MetadataFragment,
    ProviderName,
    SearchPage,
    SearchParams,
    SourceLinks,
)
from kio_gateway.normalization import (
    extract_case_numbers,
    extract_judgment_date,
    extract_text,
    merge_metadata,
    paginate,
)
from kio_gateway.providers.base import KIO_COURT_NAME, elapsed_ms
from kio_gateway.transport import HttpTransport

logger = structlog.get_logger()

KIND = "KIO"

_DECISION_PATTERNS = (
    re.compile(r"orzeka[:\s]*(?:<[^>]+>)*\s*([^<.]+)", re.IGNORECASE),
    re.compile(r"postanawia[:\s]*(?:<[^>]+>)*\s*([^<.]+)", re.IGNORECASE),
    re.compile(r"Izba\s+(?:uwzględnia|oddala|umarza)[^<.]*", re.IGNORECASE),
)


class UzpClient:
    def __init__(self, transport: HttpTransport) -> None:
        self.transport = transport

    @property
    def base_url(self) -> str:
        return self.transport.base_url

    def html_url(self, provider_id: str) -> str:
        return f"{self.base_url}/Home/ContentHtml/{provider_id}?Kind={KIND}"

    def pdf_url(self, provider_id: str) -> str:
        return f"{self.base_url}/Home/PdfContent/{provider_id}?Kind={KIND}"

    async def get_content_html(self, provider_id: str) -> str:
        try:
            response = await self.transport.get_html(
                f"/Home/ContentHtml/{provider_id}", params={"Kind": KIND}
            )
        except ProviderError as e:
            if e.status_code == 404:
                raise NotFoundError("UZP judgment", provider_id) from e
            raise
        return response.data

    async def ping(self) -> None:
        await self.transport.get_html("/")


# ── Extraction ──


def extract_decision(html: str) -> Optional[str]:
    """First operative-sentence match, plain-texted, if it has a plausible length."""
    for pattern in _DECISION_PATTERNS:
        match = pattern.search(html)
        if not match:
            continue
        decision = extract_text(match.group(0)).strip()
        if 5 < len(decision) < 200:
            return decision
    return None


def infer_judgment_type(html: str) -> JudgmentType:
    lowered = html.lower()
    if "wyrok" in lowered or "orzeka" in lowered:
        return JudgmentType.SENTENCE
    if "postanowienie" in lowered or "postanawia" in lowered:
        return JudgmentType.DECISION
    if "uchwała" in lowered:
        return JudgmentType.RESOLUTION
    return JudgmentType.DECISION


def map_metadata_fragment(html: str, provider_id: str) -> MetadataFragment:
    return MetadataFragment(
        case_numbers=extract_case_numbers(html) or [provider_id],
        judgment_date=extract_judgment_date(html),
        judgment_type=infer_judgment_type(html),
        decision=extract_decision(html),
        court_name=KIO_COURT_NAME,
    )


# ── Provider ──


class UzpProvider:
    name = ProviderName.UZP.value

    def __init__(self, transport: HttpTransport) -> None:
        self.client = UzpClient(transport)

    async def search(self, params: SearchParams) -> SearchPage:
        return SearchPage(results=[], next_page=None, total_count=0)

    async def get_detail(self, params: DetailParams) -> DetailResult:
        provider_id = params.provider_id.strip()
        html = await self.client.get_content_html(provider_id)

        metadata = merge_metadata(map_metadata_fragment(html, provider_id))
        body = html if params.format_preference == FormatPreference.HTML else extract_text(html)
        page = paginate(body, params.max_chars, params.offset_chars)
        links = self.get_source_links(provider_id)
        return DetailResult(
            metadata=metadata,
            content=JudgmentContent(text=page.text, html_url=links.uzp_html, pdf_url=links.uzp_pdf),
            continuation=page.continuation,
            source_links=links,
        )

    def get_source_links(self, provider_id: str) -> SourceLinks:
        provider_id = provider_id.strip()
        return SourceLinks(
            uzp_html=self.client.html_url(provider_id),
            uzp_pdf=self.client.pdf_url(provider_id),
        )

    async def health_check(self) -> HealthStatus:
        start = time.perf_counter()
        try:
            await self.client.ping()
        except KioError as e:
            logger.warning("provider_unhealthy", provider=self.name, error=e.message)
            return HealthStatus(provider=self.name, available=False, latency_ms=elapsed_ms(start), error=e.message)
        return HealthStatus(provider=self.name, available=True, latency_ms=elapsed_ms(start))

    async def close(self) -> None:
        await self.client.transport.close()

"""
SAOS adapter (structured JSON API at saos.org.pl).

SAOS indexes judgments from every Polish court; every query here is pinned
to ``courtType=NATIONAL_APPEAL_CHAMBER`` and detail lookups reject records
from any other court. SAOS pages are 0-based, callers' pages are 1-based.
"""

from __future__ import annotations

import math
import time
from typing import Any, Optional

import structlog

from kio_gateway.errors import KioError, NotFoundError, ProviderError
from kio_gateway.models import (
    CanonicalRecord,
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
    truncate_text,
)
from kio_gateway.providers.base import KIO_COURT_NAME, elapsed_ms
from kio_gateway.transport import HttpTransport

logger = structlog.get_logger()

KIO_COURT_TYPE = "NATIONAL_APPEAL_CHAMBER"
SNIPPET_LENGTH = 300

_JUDGMENT_TYPES: dict[str, JudgmentType] = {
    "SENTENCE": JudgmentType.SENTENCE,
    "DECISION": JudgmentType.DECISION,
    "RESOLUTION": JudgmentType.RESOLUTION,
    # Written reasons are closest to a decision in the canonical set
    "REASONS": JudgmentType.DECISION,
}


# ── Client ──


class SaosClient:
    """Thin wrapper over the two SAOS endpoints the gateway uses."""

    def __init__(self, transport: HttpTransport) -> None:
        self.transport = transport

    @property
    def base_url(self) -> str:
        return self.transport.base_url

    async def search(self, query: dict[str, Any]) -> dict[str, Any]:
        """GET /api/search/judgments."""
        response = await self.transport.get_json("/api/search/judgments", params=query)
        if not isinstance(response.data, dict):
            raise ProviderError("Unexpected search payload", provider="saos", retryable=False)
        return response.data

    async def get_judgment(self, judgment_id: int) -> dict[str, Any]:
        """GET /api/judgments/{id}; the record is wrapped in ``{"data": ...}``."""
        response = await self.transport.get_json(f"/api/judgments/{judgment_id}")
        payload = response.data
        record = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(record, dict):
            raise ProviderError("Unexpected judgment payload", provider="saos", retryable=False)
        return record

    def judgment_url(self, judgment_id: int | str) -> str:
        return f"{self.base_url}/judgments/{judgment_id}"


# ── Mapping ──


def map_judgment_type(value: Optional[str]) -> JudgmentType:
    return _JUDGMENT_TYPES.get((value or "").upper(), JudgmentType.DECISION)


def build_search_query(params: SearchParams) -> dict[str, Any]:
    return {
        "courtType": KIO_COURT_TYPE,
        "pageSize": params.limit,
        "pageNumber": max(params.page - 1, 0),
        "sortingField": "JUDGMENT_DATE",
        "sortingDirection": "DESC",
        "all": params.query,
        "caseNumber": params.case_number,
        "judgmentDateFrom": params.date_from,
        "judgmentDateTo": params.date_to,
        "judgmentTypes": params.judgment_type.value if params.judgment_type else None,
    }


def _case_numbers(item: dict[str, Any]) -> list[str]:
    return [
        str(c.get("caseNumber")).strip()
        for c in item.get("courtCases") or []
        if isinstance(c, dict) and c.get("caseNumber")
    ]


def _names(entries: Any) -> list[str]:
    names: list[str] = []
    for entry in entries or []:
        if isinstance(entry, dict) and entry.get("name"):
            names.append(str(entry["name"]).strip())
        elif isinstance(entry, str) and entry.strip():
            names.append(entry.strip())
    return names


def build_snippet(item: dict[str, Any]) -> Optional[str]:
    """Summary, else thesis, else the start of the judgment text."""
    for field in ("summary", "thesis"):
        value = item.get(field)
        if isinstance(value, str) and value.strip():
            return truncate_text(extract_text(value), SNIPPET_LENGTH)
    content = item.get("textContent")
    if isinstance(content, str) and content.strip():
        return truncate_text(extract_text(content), SNIPPET_LENGTH)
    return None


def map_search_item(item: dict[str, Any], client: SaosClient, include_snippet: bool) -> CanonicalRecord:
    item_id = item.get("id")
    return CanonicalRecord(
        provider=ProviderName.SAOS.value,
        provider_id=str(item_id),
        case_numbers=_case_numbers(item),
        judgment_date=item.get("judgmentDate") or "",
        judgment_type=map_judgment_type(item.get("judgmentType")),
        decision=item.get("decision") or None,
        snippet=build_snippet(item) if include_snippet else None,
        source_url=client.judgment_url(item_id),
    )


def next_page_for(info: dict[str, Any], page: int) -> Optional[int]:
    """Caller-facing next page, or None when SAOS reports no further page."""
    total = int(info.get("totalResults") or 0)
    page_size = int(info.get("pageSize") or 0)
    if total <= 0 or page_size <= 0:
        return None
    page_number = int(info.get("pageNumber", page - 1))
    total_pages = math.ceil(total / page_size)
    return page + 1 if page_number + 1 < total_pages else None


def map_metadata_fragment(record: dict[str, Any]) -> MetadataFragment:
    return MetadataFragment(
        case_numbers=_case_numbers(record),
        judgment_date=record.get("judgmentDate"),
        judgment_type=map_judgment_type(record.get("judgmentType")),
        decision=record.get("decision") or None,
        legal_bases=[str(b).strip() for b in record.get("legalBases") or [] if b],
        judges=_names(record.get("judges")),
        keywords=[str(k).strip() for k in record.get("keywords") or [] if k],
        court_name=KIO_COURT_NAME,
    )


def text_fallback_fragment(text: str, has_case_numbers: bool) -> MetadataFragment:
    """Facts recovered from the judgment body, for records with gaps."""
    return MetadataFragment(
        case_numbers=[] if has_case_numbers else extract_case_numbers(text),
        judgment_date=extract_judgment_date(text),
    )


def build_source_links(client: SaosClient, judgment_id: int | str, record: Optional[dict[str, Any]] = None) -> SourceLinks:
    source = (record or {}).get("source") or {}
    return SourceLinks(
        saos_href=client.judgment_url(judgment_id),
        saos_source_url=source.get("judgmentUrl") or None,
    )


# ── Provider ──


class SaosProvider:
    name = ProviderName.SAOS.value

    def __init__(self, transport: HttpTransport) -> None:
        self.client = SaosClient(transport)

    async def search(self, params: SearchParams) -> SearchPage:
        data = await self.client.search(build_search_query(params))
        items = [i for i in data.get("items") or [] if isinstance(i, dict)]
        info = data.get("info") or {}

        results = [map_search_item(i, self.client, params.include_snippets) for i in items[: params.limit]]
        total = info.get("totalResults")
        logger.debug("saos_search", results=len(results), total=total, page=params.page)
        return SearchPage(
            results=results,
            next_page=next_page_for(info, params.page),
            total_count=int(total) if total is not None else None,
        )

    async def get_detail(self, params: DetailParams) -> DetailResult:
        try:
            judgment_id = int(params.provider_id.strip())
        except ValueError:
            raise NotFoundError("judgment", params.provider_id) from None

        try:
            record = await self.client.get_judgment(judgment_id)
        except ProviderError as e:
            if e.status_code == 404:
                raise NotFoundError("judgment", params.provider_id) from e
            raise

        if record.get("courtType") != KIO_COURT_TYPE:
            raise NotFoundError("KIO judgment", params.provider_id)

        raw_content = record.get("textContent") or ""
        text = extract_text(raw_content)
        structured = map_metadata_fragment(record)
        metadata = merge_metadata(
            text_fallback_fragment(text, has_case_numbers=bool(structured.case_numbers)),
            structured,
        )

        body = raw_content if params.format_preference == FormatPreference.HTML else text
        page = paginate(body, params.max_chars, params.offset_chars)
        links = build_source_links(self.client, judgment_id, record)
        return DetailResult(
            metadata=metadata,
            content=JudgmentContent(text=page.text, html_url=None, pdf_url=links.saos_source_url),
            continuation=page.continuation,
            source_links=links,
        )

    def get_source_links(self, provider_id: str) -> SourceLinks:
        # The upstream source URL needs a fetch; only the SAOS page link is derivable.
        try:
            judgment_id = int(provider_id.strip())
        except ValueError:
            return SourceLinks()
        return build_source_links(self.client, judgment_id)

    async def health_check(self) -> HealthStatus:
        start = time.perf_counter()
        try:
            await self.client.search({"courtType": KIO_COURT_TYPE, "pageSize": 1, "pageNumber": 0})
        except KioError as e:
            logger.warning("provider_unhealthy", provider=self.name, error=e.message)
            return HealthStatus(provider=self.name, available=False, latency_ms=elapsed_ms(start), error=e.message)
        return HealthStatus(provider=self.name, available=True, latency_ms=elapsed_ms(start))

    async def close(self) -> None:
        await self.client.transport.close()

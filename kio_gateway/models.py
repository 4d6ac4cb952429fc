"""
Canonical data models for the KIO gateway.

These Pydantic models are the provider-agnostic shapes that every adapter
produces and the orchestrator serves. Upstream payloads never leak past the
adapters; everything downstream speaks only these types.

Rules enforced here:
  - judgment dates are a full ISO calendar date or "" (never a partial string)
  - case-number and other array fields are ordered sets, never absent
  - continuation offsets are present exactly when content was truncated
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

UTC = timezone.utc

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _now_utc() -> datetime:
    return datetime.now(UTC)


def coerce_iso_date(value: Any) -> str:
    """Return a valid YYYY-MM-DD string or "" for anything else."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str):
        return ""
    candidate = value.strip()
    if not _ISO_DATE_RE.match(candidate):
        return ""
    try:
        return date.fromisoformat(candidate).isoformat()
    except ValueError:
        return ""


def dedupe(values: list[str]) -> list[str]:
    """Drop blanks and duplicates, keeping first-seen order."""
    seen: set[str] = set()
    out: list[str] = []
    for v in values:
        if not v or v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out


# ═══════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════


class JudgmentType(str, Enum):
    """Canonical judgment kinds."""

    SENTENCE = "SENTENCE"
    DECISION = "DECISION"
    RESOLUTION = "RESOLUTION"


class ProviderName(str, Enum):
    """Registered upstream sources."""

    SAOS = "saos"
    UZP = "uzp"


class FormatPreference(str, Enum):
    TEXT = "text"
    HTML = "html"
    AUTO = "auto"


# ═══════════════════════════════════════════════════════════
# Records
# ═══════════════════════════════════════════════════════════


class CanonicalRecord(BaseModel):
    """A single search hit from any provider."""

    provider: str
    provider_id: str
    case_numbers: list[str] = Field(default_factory=list)
    judgment_date: str = ""
    judgment_type: JudgmentType = JudgmentType.DECISION
    decision: Optional[str] = None
    snippet: Optional[str] = None
    source_url: str = ""

    @field_validator("judgment_date", mode="before")
    @classmethod
    def _valid_date(cls, v: Any) -> str:
        return coerce_iso_date(v)

    @field_validator("case_numbers")
    @classmethod
    def _unique_case_numbers(cls, v: list[str]) -> list[str]:
        return dedupe(v)


class MetadataFragment(BaseModel):
    """Partial metadata from one source; input to merge_metadata."""

    case_numbers: list[str] = Field(default_factory=list)
    judgment_date: Optional[str] = None
    judgment_type: Optional[JudgmentType] = None
    decision: Optional[str] = None
    legal_bases: list[str] = Field(default_factory=list)
    judges: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    court_name: Optional[str] = None

    @field_validator("judgment_date", mode="before")
    @classmethod
    def _valid_date(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        return coerce_iso_date(v) or None


class CanonicalMetadata(BaseModel):
    """Full metadata of one judgment."""

    case_numbers: list[str] = Field(default_factory=list)
    judgment_date: str = ""
    judgment_type: JudgmentType = JudgmentType.DECISION
    decision: Optional[str] = None
    legal_bases: list[str] = Field(default_factory=list)
    judges: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    court_name: Optional[str] = None

    @field_validator("judgment_date", mode="before")
    @classmethod
    def _valid_date(cls, v: Any) -> str:
        return coerce_iso_date(v)


class ContinuationState(BaseModel):
    """Where the next content window starts, if there is one."""

    truncated: bool
    next_offset: Optional[int] = Field(default=None, ge=0)
    total_length: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _offset_iff_truncated(self) -> ContinuationState:
        if self.truncated and self.next_offset is None:
            raise ValueError("next_offset is required when truncated")
        if not self.truncated and self.next_offset is not None:
            raise ValueError("next_offset must be empty when not truncated")
        return self


class SourceLinks(BaseModel):
    """Canonical citation URLs. A missing key means not applicable to that provider."""

    saos_href: Optional[str] = None
    saos_source_url: Optional[str] = None
    uzp_html: Optional[str] = None
    uzp_pdf: Optional[str] = None


class JudgmentContent(BaseModel):
    text: str = ""
    html_url: Optional[str] = None
    pdf_url: Optional[str] = None


# ═══════════════════════════════════════════════════════════
# Provider call shapes
# ═══════════════════════════════════════════════════════════


class SearchParams(BaseModel):
    """Canonical search parameters; pages are 1-based."""

    query: Optional[str] = None
    case_number: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    judgment_type: Optional[JudgmentType] = None
    limit: int = 20
    page: int = 1
    include_snippets: bool = True


class DetailParams(BaseModel):
    provider_id: str
    format_preference: FormatPreference = FormatPreference.TEXT
    max_chars: int = 40000
    offset_chars: int = 0


class SearchPage(BaseModel):
    results: list[CanonicalRecord] = Field(default_factory=list)
    next_page: Optional[int] = None
    total_count: Optional[int] = None


class DetailResult(BaseModel):
    metadata: CanonicalMetadata
    content: JudgmentContent
    continuation: ContinuationState
    source_links: SourceLinks


class HealthStatus(BaseModel):
    provider: str
    available: bool
    latency_ms: Optional[float] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now_utc)

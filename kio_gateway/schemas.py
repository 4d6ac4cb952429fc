"""
Operation input shapes and response envelopes.

Inputs are validated here before any admission or network work happens;
a pydantic validation failure becomes a VALIDATION_ERROR envelope. Outputs
are wrapped in ToolResult / ToolFailure so every caller sees one shape.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from kio_gateway.models import (
    CanonicalRecord,
    FormatPreference,
    HealthStatus,
    JudgmentType,
    ProviderName,
    SourceLinks,
)

_CASE_NUMBER_RE = re.compile(r"^KIO\s*\d+/\d{2,4}$", re.IGNORECASE)
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class ProviderPreference(str, Enum):
    SAOS = "saos"
    UZP = "uzp"
    AUTO = "auto"


def _check_date(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    if not _DATE_RE.match(value):
        raise ValueError("Date must be in YYYY-MM-DD format")
    try:
        date.fromisoformat(value)
    except ValueError:
        raise ValueError("Date must be a valid calendar date") from None
    return value


# ═══════════════════════════════════════════════════════════
# Inputs
# ═══════════════════════════════════════════════════════════


class _Input(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class SearchInput(_Input):
    query: Optional[str] = Field(default=None, min_length=1, max_length=500)
    case_number: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    judgment_type: Optional[JudgmentType] = None
    limit: int = Field(default=20, ge=1, le=100)
    page: int = Field(default=1, ge=1)
    provider: ProviderPreference = ProviderPreference.AUTO
    include_snippets: bool = True

    @field_validator("case_number")
    @classmethod
    def _case_number_format(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not _CASE_NUMBER_RE.match(v):
            raise ValueError("Case number must be in format KIO 123/23 or KIO 123/2023")
        return v

    @field_validator("date_from", "date_to")
    @classmethod
    def _date_format(cls, v: Optional[str]) -> Optional[str]:
        return _check_date(v)

    @model_validator(mode="after")
    def _query_or_case_number(self) -> SearchInput:
        if not self.query and not self.case_number:
            raise ValueError("Either query or case_number must be provided")
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        return self


class DetailInput(_Input):
    provider: ProviderName
    provider_id: str = Field(min_length=1)
    format_preference: FormatPreference = FormatPreference.TEXT
    max_chars: int = Field(default=40000, ge=1000, le=100000)
    offset_chars: int = Field(default=0, ge=0)


class SourceLinksInput(_Input):
    provider: ProviderName
    provider_id: str = Field(min_length=1)


class HealthInput(_Input):
    provider: Optional[ProviderName] = None


# ═══════════════════════════════════════════════════════════
# Outputs
# ═══════════════════════════════════════════════════════════


class Pagination(BaseModel):
    page: int
    limit: int
    total: Optional[int] = None
    has_more: bool
    next_page: Optional[int] = None


class SearchOutput(BaseModel):
    provider: str
    results: list[CanonicalRecord]
    pagination: Pagination


class SourceLinksOutput(BaseModel):
    provider: str
    provider_id: str
    links: SourceLinks


class CacheHealth(BaseModel):
    type: Literal["memory", "redis"]
    healthy: bool
    hits: int = 0
    misses: int = 0
    size: int = 0


class ServerInfo(BaseModel):
    name: str
    version: str
    uptime_seconds: float
    started_at: datetime


class HealthOutput(BaseModel):
    healthy: bool
    providers: list[HealthStatus]
    cache: CacheHealth
    server: ServerInfo


# ═══════════════════════════════════════════════════════════
# Envelopes
# ═══════════════════════════════════════════════════════════


class ResponseMetadata(BaseModel):
    query_time_ms: float
    cached: bool = False


class ToolResult(BaseModel):
    success: Literal[True] = True
    data: Any
    metadata: ResponseMetadata


class ErrorBody(BaseModel):
    code: str
    message: str
    retryable: bool
    retry_after_ms: Optional[int] = None


class ToolFailure(BaseModel):
    success: Literal[False] = False
    error: ErrorBody


ToolResponse = Union[ToolResult, ToolFailure]

"""
Judgment content normalization: pagination, metadata merging and
pattern-based extraction of case numbers and dates.
"""

from __future__ import annotations

import re
from datetime import date
from typing import NamedTuple, Optional

from kio_gateway.models import (
    CanonicalMetadata,
    ContinuationState,
    JudgmentType,
    MetadataFragment,
    dedupe,
)
from kio_gateway.normalization.text import extract_text


class Page(NamedTuple):
    text: str
    continuation: ContinuationState


def paginate(full_text: str, max_chars: int, offset_chars: int) -> Page:
    """Character-window pagination.

    An offset at or past the end yields an empty, untruncated window. Callers
    rely on this as the "no more content" signal, so it must not raise.
    """
    total = len(full_text)
    start = min(max(offset_chars, 0), total)
    end = min(start + max(max_chars, 0), total)
    truncated = end < total
    return Page(
        text=full_text[start:end],
        continuation=ContinuationState(
            truncated=truncated,
            next_offset=end if truncated else None,
            total_length=total,
        ),
    )


def normalize_and_paginate(html: str, max_chars: int, offset_chars: int) -> Page:
    """Normalize HTML to text, then paginate."""
    return paginate(extract_text(html, preserve_lists=True), max_chars, offset_chars)


def merge_metadata(*fragments: Optional[MetadataFragment]) -> CanonicalMetadata:
    """Merge partial metadata in argument order.

    Array fields are unioned (first-seen order, no duplicates). Scalar fields
    take the last non-empty value, so a blank never clobbers a known fact.
    """
    case_numbers: list[str] = []
    legal_bases: list[str] = []
    judges: list[str] = []
    keywords: list[str] = []
    judgment_date = ""
    judgment_type: Optional[JudgmentType] = None
    decision: Optional[str] = None
    court_name: Optional[str] = None

    for fragment in fragments:
        if fragment is None:
            continue
        case_numbers.extend(fragment.case_numbers)
        legal_bases.extend(fragment.legal_bases)
        judges.extend(fragment.judges)
        keywords.extend(fragment.keywords)
        if fragment.judgment_date:
            judgment_date = fragment.judgment_date
        if fragment.judgment_type is not None:
            judgment_type = fragment.judgment_type
        if fragment.decision:
            decision = fragment.decision
        if fragment.court_name:
            court_name = fragment.court_name

    return CanonicalMetadata(
        case_numbers=dedupe(case_numbers),
        judgment_date=judgment_date,
        judgment_type=judgment_type or JudgmentType.DECISION,
        decision=decision,
        legal_bases=dedupe(legal_bases),
        judges=dedupe(judges),
        keywords=dedupe(keywords),
        court_name=court_name,
    )


# ── Pattern extraction ──

_CASE_NUMBER_RE = re.compile(
    r"(?:Sygn\.\s*akt[:\s]+)?\bKIO\s*[/\s]\s*(\d+)\s*/\s*(\d{2,4})\b",
    re.IGNORECASE,
)

_ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")

# Genitive month names as they appear in "z dnia 15 grudnia 2023 r."
POLISH_MONTHS: dict[str, int] = {
    "stycznia": 1,
    "lutego": 2,
    "marca": 3,
    "kwietnia": 4,
    "maja": 5,
    "czerwca": 6,
    "lipca": 7,
    "sierpnia": 8,
    "września": 9,
    "października": 10,
    "listopada": 11,
    "grudnia": 12,
}

_POLISH_DATE_RE = re.compile(
    r"z\s+dnia\s+(\d{1,2})\s+([a-ząćęłńóśźż]+)\s+(\d{4})",
    re.IGNORECASE,
)


def extract_case_numbers(text: str) -> list[str]:
    """Find KIO case numbers ("KIO 3177/23", "KIO/3177/23", "Sygn. akt: KIO 3177/23").

    All forms normalize to "KIO <number>/<year>".
    """
    found = [f"KIO {m.group(1)}/{m.group(2)}" for m in _CASE_NUMBER_RE.finditer(text)]
    return dedupe(found)


def _safe_date(year: int, month: int, day: int) -> Optional[str]:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def extract_judgment_date(text: str) -> Optional[str]:
    """First ISO date, else a Polish long-form date; None if nothing valid."""
    for m in _ISO_DATE_RE.finditer(text):
        iso = _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        if iso:
            return iso

    for m in _POLISH_DATE_RE.finditer(text):
        month = POLISH_MONTHS.get(m.group(2).lower())
        if month is None:
            continue
        iso = _safe_date(int(m.group(3)), month, int(m.group(1)))
        if iso:
            return iso
    return None


def truncate_text(text: str, max_length: int) -> str:
    """Truncate with an ellipsis, preferring a word boundary near the end."""
    if len(text) <= max_length:
        return text
    cut = text[:max_length]
    last_space = cut.rfind(" ")
    if last_space > max_length * 0.8:
        return cut[:last_space] + "..."
    return cut + "..."

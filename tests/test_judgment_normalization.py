"""Tests for pagination, metadata merging and pattern extraction."""

import pytest
from pydantic import ValidationError

from kio_gateway.models import ContinuationState, JudgmentType, MetadataFragment
from kio_gateway.normalization import (
    extract_case_numbers,
    extract_judgment_date,
    merge_metadata,
    normalize_and_paginate,
    paginate,
    truncate_text,
)


class TestPaginate:
    def test_first_window_truncated(self) -> None:
        page = paginate("abcdef", 4, 0)
        assert page.text == "abcd"
        assert page.continuation.truncated is True
        assert page.continuation.next_offset == 4
        assert page.continuation.total_length == 6

    def test_last_window(self) -> None:
        page = paginate("abcdef", 4, 4)
        assert page.text == "ef"
        assert page.continuation.truncated is False
        assert page.continuation.next_offset is None
        assert page.continuation.total_length == 6

    def test_exact_fit_is_not_truncated(self) -> None:
        page = paginate("abcd", 4, 0)
        assert page.text == "abcd"
        assert page.continuation.truncated is False

    def test_offset_past_end_is_empty_not_error(self) -> None:
        page = paginate("abcdef", 4, 100)
        assert page.text == ""
        assert page.continuation.truncated is False
        assert page.continuation.total_length == 6

    def test_negative_offset_clamped(self) -> None:
        assert paginate("abcdef", 2, -5).text == "ab"

    def test_windows_reassemble_full_text(self) -> None:
        text = "".join(chr(ord("a") + i % 26) for i in range(2500))
        pieces = []
        offset = 0
        while True:
            page = paginate(text, 1000, offset)
            pieces.append(page.text)
            if not page.continuation.truncated:
                break
            offset = page.continuation.next_offset
        assert "".join(pieces) == text
        assert len(pieces) == 3

    def test_normalize_then_paginate(self) -> None:
        page = normalize_and_paginate("<p>Hello</p><p>World</p>", 5, 0)
        assert page.text == "Hello"
        assert page.continuation.next_offset == 5
        assert page.continuation.total_length == len("Hello\n\nWorld")


class TestContinuationState:
    def test_truncated_requires_offset(self) -> None:
        with pytest.raises(ValidationError):
            ContinuationState(truncated=True)

    def test_offset_forbidden_when_complete(self) -> None:
        with pytest.raises(ValidationError):
            ContinuationState(truncated=False, next_offset=10)


class TestMergeMetadata:
    def test_arrays_union_in_first_seen_order(self) -> None:
        merged = merge_metadata(
            MetadataFragment(case_numbers=["KIO 1/23", "KIO 2/23"], judges=["A"]),
            MetadataFragment(case_numbers=["KIO 2/23", "KIO 3/23"], judges=["B", "A"]),
        )
        assert merged.case_numbers == ["KIO 1/23", "KIO 2/23", "KIO 3/23"]
        assert merged.judges == ["A", "B"]

    def test_scalars_last_non_empty_wins(self) -> None:
        merged = merge_metadata(
            MetadataFragment(judgment_date="2023-01-01", decision="oddala", court_name="KIO"),
            MetadataFragment(judgment_date="2023-02-02", decision="", court_name=None),
        )
        assert merged.judgment_date == "2023-02-02"
        assert merged.decision == "oddala"
        assert merged.court_name == "KIO"

    def test_invalid_date_does_not_clobber(self) -> None:
        merged = merge_metadata(
            MetadataFragment(judgment_date="2023-01-01"),
            MetadataFragment(judgment_date="2023-13-45"),
        )
        assert merged.judgment_date == "2023-01-01"

    def test_empty_and_missing_fragments_are_no_ops(self) -> None:
        base = MetadataFragment(case_numbers=["KIO 1/23"], judgment_type=JudgmentType.SENTENCE)
        merged = merge_metadata(None, base, MetadataFragment(), None)
        assert merged.case_numbers == ["KIO 1/23"]
        assert merged.judgment_type == JudgmentType.SENTENCE

    def test_type_defaults_to_decision(self) -> None:
        merged = merge_metadata()
        assert merged.judgment_type == JudgmentType.DECISION
        assert merged.judgment_date == ""
        assert merged.legal_bases == []
        assert merged.keywords == []


class TestPatternExtraction:
    def test_case_number_forms_normalized(self) -> None:
        text = "Sygn. akt: KIO 3177/23. Zob. też KIO/45/2024 oraz kio 3177/23."
        assert extract_case_numbers(text) == ["KIO 3177/23", "KIO 45/2024"]

    def test_no_case_numbers(self) -> None:
        assert extract_case_numbers("brak sygnatury") == []

    def test_polish_long_date(self) -> None:
        assert extract_judgment_date("WYROK z dnia 15 grudnia 2023 r.") == "2023-12-15"

    def test_iso_date_preferred(self) -> None:
        assert extract_judgment_date("z dnia 1 marca 2024, data 2024-02-10") == "2024-02-10"

    def test_invalid_iso_falls_back_to_polish(self) -> None:
        assert extract_judgment_date("2024-02-30; z dnia 1 marca 2024") == "2024-03-01"

    def test_invalid_dates_yield_none(self) -> None:
        assert extract_judgment_date("z dnia 31 lutego 2023") is None
        assert extract_judgment_date("bez daty") is None

    def test_truncate_short_text_unchanged(self) -> None:
        assert truncate_text("krótki", 300) == "krótki"

    def test_truncate_at_word_boundary(self) -> None:
        text = "słowo " * 100
        out = truncate_text(text, 50)
        assert out.endswith("...")
        assert not out[:-3].endswith(" ")
        assert len(out) <= 53

    def test_truncate_without_spaces(self) -> None:
        assert truncate_text("x" * 60, 50) == "x" * 50 + "..."

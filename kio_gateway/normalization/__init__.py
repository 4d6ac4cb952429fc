"""Text normalization, pagination and metadata merging."""

from kio_gateway.normalization.judgment import (
    Page,
    extract_case_numbers,
    extract_judgment_date,
    merge_metadata,
    normalize_and_paginate,
    paginate,
    truncate_text,
)
from kio_gateway.normalization.text import (
    decode_entities,
    extract_meta_description,
    extract_text,
    extract_title,
    normalize_whitespace,
)

__all__ = [
    "Page",
    "decode_entities",
    "extract_case_numbers",
    "extract_judgment_date",
    "extract_meta_description",
    "extract_text",
    "extract_title",
    "merge_metadata",
    "normalize_and_paginate",
    "normalize_whitespace",
    "paginate",
    "truncate_text",
]

"""Capability contract every upstream adapter implements."""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable

from kio_gateway.models import (
    DetailParams,
    DetailResult,
    HealthStatus,
    SearchPage,
    SearchParams,
    SourceLinks,
)

KIO_COURT_NAME = "Krajowa Izba Odwoławcza"


@runtime_checkable
class JudgmentProvider(Protocol):
    """An upstream source of KIO judgments.

    ``get_source_links`` is pure (no network). ``health_check`` reports
    failures in its result instead of raising.
    """

    name: str

    async def search(self, params: SearchParams) -> SearchPage: ...

    async def get_detail(self, params: DetailParams) -> DetailResult: ...

    def get_source_links(self, provider_id: str) -> SourceLinks: ...

    async def health_check(self) -> HealthStatus: ...

    async def close(self) -> None: ...


def elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 1)

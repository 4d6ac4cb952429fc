"""KIO gateway MCP server: judgment search and retrieval tools over stdio."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Optional

import structlog
from mcp.server.fastmcp import Context, FastMCP

from kio_gateway.config import get_settings
from kio_gateway.observability import configure_logging, metrics
from kio_gateway.orchestrator import DEFAULT_CALLER, Orchestrator

logger = structlog.get_logger()

# ---------------------------------------------------------------------------
# Lifespan: one orchestrator per server process
# ---------------------------------------------------------------------------


@dataclass
class AppContext:
    orchestrator: Orchestrator


@asynccontextmanager
async def app_lifespan(app: FastMCP) -> AsyncIterator[AppContext]:
    orchestrator = Orchestrator.from_settings()
    logger.info("server_started", providers=sorted(orchestrator.providers))
    try:
        yield AppContext(orchestrator=orchestrator)
    finally:
        await orchestrator.close()
        logger.info("server_stopped")


mcp = FastMCP(
    "kio-gateway",
    instructions=(
        "Access to judgments of the Polish National Appeal Chamber (KIO, Krajowa Izba "
        "Odwoławcza). kio_search finds judgments by query or case number (SAOS), "
        "kio_get_judgment returns metadata and paginated text (use continuation.next_offset "
        "as offset_chars to read on), kio_get_source_links returns citation URLs, "
        "kio_health reports upstream availability."
    ),
    lifespan=app_lifespan,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _orchestrator(ctx: Context) -> Orchestrator:
    return ctx.request_context.lifespan_context.orchestrator


def _args(**kwargs: Any) -> dict[str, Any]:
    """Drop unset tool arguments so input defaults apply."""
    return {k: v for k, v in kwargs.items() if v is not None}


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool()
async def kio_search(
    query: Optional[str] = None,
    case_number: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    judgment_type: Optional[str] = None,
    limit: int = 20,
    page: int = 1,
    provider: str = "auto",
    include_snippets: bool = True,
    ctx: Context = None,
) -> dict[str, Any]:
    """Search KIO judgments.

    Args:
        query: Full-text query (1-500 chars). Either query or case_number is required.
        case_number: Case signature, e.g. "KIO 3177/23".
        date_from: Earliest judgment date, YYYY-MM-DD.
        date_to: Latest judgment date, YYYY-MM-DD.
        judgment_type: SENTENCE, DECISION or RESOLUTION.
        limit: Results per page (1-100).
        page: 1-based page number.
        provider: saos, uzp or auto.
        include_snippets: Include a short text excerpt per result.
    """
    response = await _orchestrator(ctx).search(
        _args(
            query=query,
            case_number=case_number,
            date_from=date_from,
            date_to=date_to,
            judgment_type=judgment_type,
            limit=limit,
            page=page,
            provider=provider,
            include_snippets=include_snippets,
        ),
        caller_id=DEFAULT_CALLER,
    )
    return response.model_dump(mode="json")


@mcp.tool()
async def kio_get_judgment(
    provider: str,
    provider_id: str,
    format_preference: str = "text",
    max_chars: int = 40000,
    offset_chars: int = 0,
    ctx: Context = None,
) -> dict[str, Any]:
    """Fetch one judgment's metadata and a window of its text.

    Args:
        provider: saos or uzp.
        provider_id: Identifier from kio_search results.
        format_preference: text, html or auto.
        max_chars: Window size (1000-100000).
        offset_chars: Window start; pass continuation.next_offset to continue.
    """
    response = await _orchestrator(ctx).get_detail(
        _args(
            provider=provider,
            provider_id=provider_id,
            format_preference=format_preference,
            max_chars=max_chars,
            offset_chars=offset_chars,
        ),
        caller_id=DEFAULT_CALLER,
    )
    return response.model_dump(mode="json")


@mcp.tool()
async def kio_get_source_links(
    provider: str,
    provider_id: str,
    ctx: Context = None,
) -> dict[str, Any]:
    """Canonical citation URLs (SAOS page, UZP HTML and PDF) for a judgment."""
    response = await _orchestrator(ctx).get_source_links(
        _args(provider=provider, provider_id=provider_id),
        caller_id=DEFAULT_CALLER,
    )
    return response.model_dump(mode="json")


@mcp.tool()
async def kio_health(provider: Optional[str] = None, ctx: Context = None) -> dict[str, Any]:
    """Availability and latency of the upstream providers, plus cache and server status."""
    response = await _orchestrator(ctx).health_check(_args(provider=provider), caller_id=DEFAULT_CALLER)
    return response.model_dump(mode="json")


def run() -> None:
    """Serve over stdio. Logs go to stderr."""
    obs = get_settings().observability
    configure_logging(obs.log_level, json_logs=obs.log_json)
    metrics.start_server(obs.metrics_port)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    run()

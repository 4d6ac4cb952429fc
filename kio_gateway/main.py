"""
KIO Gateway command line.

Usage:
    kio-gateway search "zamówienie publiczne" --limit 5
    kio-gateway search --case-number "KIO 3177/23"
    kio-gateway judgment saos 512345 --max-chars 5000 --offset 5000
    kio-gateway links uzp 12345
    kio-gateway health
    kio-gateway serve
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from kio_gateway.config import get_settings
from kio_gateway.observability import configure_logging
from kio_gateway.orchestrator import Orchestrator
from kio_gateway.schemas import ToolFailure, ToolResponse

console = Console(highlight=False)


def _print_failure(response: ToolFailure) -> None:
    err = response.error
    retry = f"  retry after {err.retry_after_ms} ms" if err.retry_after_ms else ""
    console.print(
        f"[bold #dc2626]✗ {err.code}[/bold #dc2626]  {err.message}"
        f"  [#64748b](retryable={err.retryable}){retry}[/#64748b]"
    )


def _display_search(data: dict[str, Any], elapsed_ms: float, cached: bool) -> None:
    table = Table(title="KIO Search Results", border_style="#ea580c", title_style="bold #ea580c")
    table.add_column("ID", style="bold #94a3b8")
    table.add_column("Case", style="#e2e8f0")
    table.add_column("Date")
    table.add_column("Type")
    table.add_column("Snippet", style="#64748b", overflow="fold")
    for r in data["results"]:
        table.add_row(
            r["provider_id"],
            ", ".join(r["case_numbers"]) or "-",
            r["judgment_date"] or "-",
            r["judgment_type"],
            (r.get("snippet") or "")[:160],
        )
    console.print(table)
    p = data["pagination"]
    console.print(
        f"  page {p['page']}  total {p['total'] if p['total'] is not None else '?'}  "
        f"next {p['next_page'] or '-'}  [#64748b]{elapsed_ms:.0f} ms{' (cached)' if cached else ''}[/#64748b]"
    )


def _display_detail(data: dict[str, Any], elapsed_ms: float, cached: bool) -> None:
    meta = data["metadata"]
    mt = Table(title="Judgment", border_style="#64748b", title_style="#94a3b8")
    mt.add_column("Field", style="bold")
    mt.add_column("Value")
    mt.add_row("Case numbers", ", ".join(meta["case_numbers"]) or "-")
    mt.add_row("Date", meta["judgment_date"] or "-")
    mt.add_row("Type", meta["judgment_type"])
    mt.add_row("Court", meta.get("court_name") or "-")
    mt.add_row("Decision", meta.get("decision") or "-")
    mt.add_row("Judges", ", ".join(meta["judges"]) or "-")
    mt.add_row("Legal bases", "; ".join(meta["legal_bases"]) or "-")
    console.print(mt)

    cont = data["continuation"]
    title = f"Text ({cont.get('total_length')} chars total)"
    if cont["truncated"]:
        title += f", continue with --offset {cont['next_offset']}"
    console.print(Panel(data["content"]["text"] or "(empty)", title=title, border_style="#ea580c"))
    console.print(f"  [#64748b]{elapsed_ms:.0f} ms{' (cached)' if cached else ''}[/#64748b]")


def _display_links(data: dict[str, Any]) -> None:
    table = Table(title=f"Source links: {data['provider']} {data['provider_id']}", border_style="#64748b")
    table.add_column("Link", style="bold")
    table.add_column("URL")
    for name, url in data["links"].items():
        if url:
            table.add_row(name, url)
    console.print(table)


def _display_health(data: dict[str, Any]) -> None:
    table = Table(title="Provider Health", border_style="#ea580c", title_style="bold #ea580c")
    table.add_column("Provider", style="bold")
    table.add_column("Available")
    table.add_column("Latency", justify="right")
    table.add_column("Error", style="#dc2626")
    for p in data["providers"]:
        ok = "[#22c55e]yes[/#22c55e]" if p["available"] else "[#dc2626]no[/#dc2626]"
        latency = f"{p['latency_ms']:.0f} ms" if p.get("latency_ms") is not None else "-"
        table.add_row(p["provider"], ok, latency, p.get("error") or "")
    console.print(table)
    cache = data["cache"]
    console.print(
        f"  cache {cache['type']} healthy={cache['healthy']} hits={cache['hits']} "
        f"misses={cache['misses']} size={cache['size']}"
    )


async def _run(args: argparse.Namespace) -> int:
    orchestrator = Orchestrator.from_settings()
    try:
        if args.command == "search":
            raw: dict[str, Any] = {"limit": args.limit, "page": args.page, "provider": args.provider}
            if args.query:
                raw["query"] = args.query
            if args.case_number:
                raw["case_number"] = args.case_number
            if args.date_from:
                raw["date_from"] = args.date_from
            if args.date_to:
                raw["date_to"] = args.date_to
            if args.judgment_type:
                raw["judgment_type"] = args.judgment_type
            response: ToolResponse = await orchestrator.search(raw, timeout=args.timeout)
        elif args.command == "judgment":
            response = await orchestrator.get_detail(
                {
                    "provider": args.provider,
                    "provider_id": args.provider_id,
                    "format_preference": args.format,
                    "max_chars": args.max_chars,
                    "offset_chars": args.offset,
                },
                timeout=args.timeout,
            )
        elif args.command == "links":
            response = await orchestrator.get_source_links(
                {"provider": args.provider, "provider_id": args.provider_id}
            )
        else:
            raw = {"provider": args.provider} if args.provider else {}
            response = await orchestrator.health_check(raw, timeout=args.timeout)
    finally:
        await orchestrator.close()

    if args.json:
        console.print_json(json.dumps(response.model_dump(mode="json"), ensure_ascii=False))
        return 0 if response.success else 1
    if isinstance(response, ToolFailure):
        _print_failure(response)
        return 1

    elapsed = response.metadata.query_time_ms
    cached = response.metadata.cached
    if args.command == "search":
        _display_search(response.data, elapsed, cached)
    elif args.command == "judgment":
        _display_detail(response.data, elapsed, cached)
    elif args.command == "links":
        _display_links(response.data)
    else:
        _display_health(response.data)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="KIO judgment gateway")
    parser.add_argument("--json", action="store_true", help="Print the raw response envelope")
    parser.add_argument("--timeout", type=float, default=None, help="Per-call deadline in seconds")
    sub = parser.add_subparsers(dest="command")

    s = sub.add_parser("search", help="Search KIO judgments")
    s.add_argument("query", nargs="?", help="Full-text query")
    s.add_argument("--case-number", help='Case signature, e.g. "KIO 3177/23"')
    s.add_argument("--date-from", help="YYYY-MM-DD")
    s.add_argument("--date-to", help="YYYY-MM-DD")
    s.add_argument("--judgment-type", choices=["SENTENCE", "DECISION", "RESOLUTION"])
    s.add_argument("--limit", type=int, default=20)
    s.add_argument("--page", type=int, default=1)
    s.add_argument("--provider", default="auto", choices=["saos", "uzp", "auto"])

    j = sub.add_parser("judgment", help="Fetch a judgment's metadata and text window")
    j.add_argument("provider", choices=["saos", "uzp"])
    j.add_argument("provider_id")
    j.add_argument("--format", default="text", choices=["text", "html", "auto"])
    j.add_argument("--max-chars", type=int, default=40000)
    j.add_argument("--offset", type=int, default=0, help="Start offset (continuation.next_offset)")

    lk = sub.add_parser("links", help="Show canonical source links")
    lk.add_argument("provider", choices=["saos", "uzp"])
    lk.add_argument("provider_id")

    h = sub.add_parser("health", help="Check upstream availability")
    h.add_argument("--provider", choices=["saos", "uzp"])

    sub.add_parser("serve", help="Run the MCP server over stdio")
    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    if args.command == "serve":
        from kio_gateway.server import run

        run()
        return
    if args.command is None:
        parser.print_help()
        return

    obs = get_settings().observability
    configure_logging(obs.log_level, json_logs=False)
    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()

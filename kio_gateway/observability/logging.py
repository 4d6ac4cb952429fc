"""
structlog configuration.

Logs always go to stderr: in ``serve`` mode stdout carries the MCP stdio
protocol and a single stray line would corrupt it. Two renderers are
available, JSON lines for machines and a Rich console renderer for people.
"""

from __future__ import annotations

import logging
import sys

import structlog
from rich.console import Console
from rich.theme import Theme

_THEME = Theme({
    "log.info":    "dim white",
    "log.warning": "bold #f59e0b",
    "log.error":   "bold #dc2626",
    "log.debug":   "dim #64748b",
    "log.key":     "#64748b",
    "log.val":     "#94a3b8",
})

_stderr_console = Console(stderr=True, theme=_THEME, highlight=False)


class _RichStructlogRenderer:
    """Renders one event per line on stderr via Rich."""

    _SKIP_KEYS = frozenset({"event", "level", "timestamp", "_record"})

    def __call__(self, logger_: object, method: str, event_dict: dict) -> str:  # noqa: ARG002
        event = event_dict.get("event", "")
        level = event_dict.get("level", "info").lower()

        kv_parts = []
        for k, v in event_dict.items():
            if k in self._SKIP_KEYS:
                continue
            vs = str(v)
            if len(vs) > 120:
                vs = vs[:117] + "…"
            kv_parts.append(f"[log.key]{k}[/log.key]=[log.val]{vs}[/log.val]")
        kv_str = "  ".join(kv_parts)

        if level == "warning":
            prefix, style = "⚠", "log.warning"
        elif level in ("error", "critical"):
            prefix, style = "✗", "log.error"
        elif level == "debug":
            prefix, style = "·", "log.debug"
        else:
            prefix, style = "▪", "log.info"

        _stderr_console.print(f"  [{style}]{prefix} {event}[/{style}]  {kv_str}")
        raise structlog.DropEvent()


def configure_logging(level: str = "INFO", json_logs: bool = True) -> None:
    """Configure structlog for the whole process. Safe to call more than once."""
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if json_logs:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(_RichStructlogRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )

"""Upstream adapters and registry construction."""

from __future__ import annotations

from typing import Optional

from kio_gateway.config import Settings
from kio_gateway.providers.base import JudgmentProvider
from kio_gateway.providers.saos import SaosProvider
from kio_gateway.providers.uzp import UzpProvider
from kio_gateway.security.allowlist import DomainAllowlist
from kio_gateway.transport import HttpTransport


def build_transport(
    settings: Settings,
    provider: str,
    base_url: str,
    allowlist: Optional[DomainAllowlist] = None,
    extra_headers: Optional[dict[str, str]] = None,
) -> HttpTransport:
    cfg = settings.providers
    headers = {"User-Agent": cfg.user_agent, **(extra_headers or {})}
    return HttpTransport(
        base_url,
        provider,
        timeout=cfg.request_timeout,
        headers=headers,
        allowlist=allowlist,
        retry_attempts=cfg.retry_attempts,
        retry_wait_min=cfg.retry_wait_min,
        retry_wait_max=cfg.retry_wait_max,
    )


def build_providers(
    settings: Settings,
    allowlist: Optional[DomainAllowlist] = None,
) -> dict[str, JudgmentProvider]:
    """Registry of every configured provider, keyed by name."""
    if allowlist is None:
        allowlist = DomainAllowlist(settings.allowed_domains, settings.allow_subdomains)
    saos = SaosProvider(build_transport(settings, "saos", settings.providers.saos_base_url, allowlist))
    uzp = UzpProvider(build_transport(
        settings,
        "uzp",
        settings.providers.uzp_base_url,
        allowlist,
        extra_headers={"Accept-Language": "pl-PL,pl;q=0.9"},
    ))
    return {saos.name: saos, uzp.name: uzp}


__all__ = [
    "JudgmentProvider",
    "SaosProvider",
    "UzpProvider",
    "build_providers",
    "build_transport",
]

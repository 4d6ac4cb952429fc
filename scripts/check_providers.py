#!/usr/bin/env python3
"""
Check that the configured upstreams are reachable.

Loads settings the same way the server does (.env, .env.local, environment,
config/domain_policies.yaml), then runs each provider's health check and a
one-item SAOS search. Use this before starting the server to catch a wrong
base URL, a blocked domain or an unreachable Redis.

Usage:
    python scripts/check_providers.py
"""

from __future__ import annotations

import asyncio
import sys

from kio_gateway.cache import create_cache
from kio_gateway.config import get_settings
from kio_gateway.errors import CacheError, ConfigError, KioError
from kio_gateway.models import SearchParams
from kio_gateway.providers import build_providers
from kio_gateway.security import DomainAllowlist


async def check_cache() -> tuple[bool, str]:
    settings = get_settings()
    try:
        cache = create_cache(settings.cache)
    except ConfigError as e:
        return False, str(e)
    try:
        await cache.set("check:ping", {"ok": True}, 5)
        value = await cache.get("check:ping")
        await cache.delete("check:ping")
    except CacheError as e:
        return False, str(e)
    finally:
        await cache.close()
    return (True, "OK") if value == {"ok": True} else (False, "value did not round-trip")


async def main() -> int:
    settings = get_settings()
    allowlist = DomainAllowlist(settings.allowed_domains, settings.allow_subdomains)
    providers = build_providers(settings, allowlist)

    print("Allowed domains:", ", ".join(allowlist.domains))
    print()

    failed = 0
    try:
        for name, provider in providers.items():
            status = await provider.health_check()
            label = "[OK]  " if status.available else "[FAIL]"
            print(f"  {label} {name} health ({status.latency_ms} ms)")
            if not status.available:
                failed += 1
                print(f"         → {status.error}")

        try:
            page = await providers["saos"].search(SearchParams(query="zamówienie", limit=1))
            print(f"  [OK]   saos search (total {page.total_count})")
        except KioError as e:
            failed += 1
            print("  [FAIL] saos search")
            print(f"         → {e.code}: {e.message}")
    finally:
        for provider in providers.values():
            await provider.close()

    ok, msg = await check_cache()
    print(f"  {'[OK]  ' if ok else '[FAIL]'} cache ({settings.cache.backend})")
    if not ok:
        failed += 1
        print(f"         → {msg}")

    print()
    if failed:
        print("Fix the failing checks above (base URLs, domain_policies.yaml, KIO_REDIS_URL).")
        return 1
    print("All upstreams reachable.")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))

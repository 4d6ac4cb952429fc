"""
Outbound domain allowlist.

Every upstream URL is checked before a request leaves the process, so a
misconfigured base URL can never turn the gateway into an open fetcher.
"""

from __future__ import annotations

from collections.abc import Iterable
from urllib.parse import urlparse

from kio_gateway.errors import DomainRejectedError


class DomainAllowlist:
    """Restricts external requests to approved hosts."""

    def __init__(self, domains: Iterable[str], allow_subdomains: bool = True) -> None:
        self._domains = frozenset(d.lower().strip() for d in domains if d.strip())
        self._allow_subdomains = allow_subdomains

    @property
    def domains(self) -> list[str]:
        return sorted(self._domains)

    def _matches(self, hostname: str) -> bool:
        if hostname in self._domains:
            return True
        if self._allow_subdomains:
            return any(hostname.endswith(f".{d}") for d in self._domains)
        return False

    def check_url(self, url: str) -> None:
        """Raise DomainRejectedError unless the URL's host is allowed."""
        hostname = (urlparse(url).hostname or "").lower()
        if not hostname or not self._matches(hostname):
            raise DomainRejectedError(hostname or url)

    def is_allowed(self, url: str) -> bool:
        try:
            self.check_url(url)
        except DomainRejectedError:
            return False
        return True

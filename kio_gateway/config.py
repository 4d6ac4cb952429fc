"""
Centralized configuration for the KIO gateway.

All settings are loaded from environment variables with sensible defaults.
Pydantic Settings provides validation and type coercion; the outbound domain
allowlist is read from config/domain_policies.yaml when present.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

# Load .env then .env.local (so .env.local overrides), without clobbering the shell.
_repo_root = Path(__file__).resolve().parent.parent
load_dotenv(_repo_root / ".env")
_env_local = _repo_root / ".env.local"
if _env_local.exists():
    load_dotenv(_env_local, override=True)

DEFAULT_ALLOWED_DOMAINS: tuple[str, ...] = (
    "saos.org.pl",
    "www.saos.org.pl",
    "uzp.gov.pl",
    "orzeczenia.uzp.gov.pl",
)


class ServerConfig(BaseSettings):
    """Identity reported by the health check and the tool server."""

    name: str = Field(default="kio-gateway", alias="KIO_SERVER_NAME")
    version: str = Field(default="0.1.0", alias="KIO_SERVER_VERSION")


class ProviderConfig(BaseSettings):
    """Upstream endpoints and HTTP behaviour."""

    saos_base_url: str = Field(default="https://www.saos.org.pl", alias="KIO_SAOS_BASE_URL")
    uzp_base_url: str = Field(default="https://orzeczenia.uzp.gov.pl", alias="KIO_UZP_BASE_URL")
    request_timeout: float = Field(default=30.0, alias="KIO_REQUEST_TIMEOUT")  # seconds
    # Attempts per upstream call; only 5xx/429/network failures are retried
    retry_attempts: int = Field(default=2, alias="KIO_RETRY_ATTEMPTS")
    retry_wait_min: float = 0.5
    retry_wait_max: float = 4.0
    user_agent: str = "kio-gateway/0.1.0"


class CacheConfig(BaseSettings):
    """Cache backend selection and TTL classes (seconds)."""

    backend: Literal["memory", "redis"] = Field(default="memory", alias="KIO_CACHE_BACKEND")
    redis_url: Optional[str] = Field(default=None, alias="KIO_REDIS_URL")
    key_prefix: str = Field(default="kio", alias="KIO_CACHE_PREFIX")
    max_entries: int = Field(default=10000, alias="KIO_CACHE_MAX_ENTRIES")
    shards: int = 16
    sweep_interval: Optional[float] = 60.0
    search_ttl: float = Field(default=15 * 60, alias="KIO_SEARCH_CACHE_TTL")
    detail_ttl: float = Field(default=7 * 24 * 60 * 60, alias="KIO_DETAIL_CACHE_TTL")
    health_ttl: float = Field(default=60, alias="KIO_HEALTH_CACHE_TTL")


class RateLimitConfig(BaseSettings):
    """Per-operation sliding-window budgets."""

    window_seconds: float = Field(default=60.0, alias="KIO_RATE_LIMIT_WINDOW")
    search_per_window: int = Field(default=60, alias="KIO_SEARCH_RATE_LIMIT")
    detail_per_window: int = Field(default=20, alias="KIO_DETAIL_RATE_LIMIT")
    health_per_window: int = Field(default=10, alias="KIO_HEALTH_RATE_LIMIT")


class ObservabilityConfig(BaseSettings):
    """Logging, Prometheus metrics and the audit trail."""

    log_level: str = Field(default="INFO", alias="KIO_LOG_LEVEL")
    log_json: bool = Field(default=True, alias="KIO_LOG_JSON")
    metrics_enabled: bool = Field(default=False, alias="KIO_METRICS_ENABLED")
    metrics_port: int = Field(default=9464, alias="KIO_METRICS_PORT")
    audit_max_entries: int = Field(default=10000, alias="KIO_AUDIT_MAX_ENTRIES")
    # Raw query text is kept in audit entries only when this is set
    audit_include_sensitive: bool = Field(default=False, alias="KIO_AUDIT_INCLUDE_SENSITIVE")


class YAMLConfigLoader:
    """Loads YAML config files from a configurable directory."""

    def __init__(self, config_dir: str | Path = "config") -> None:
        self._dir = _repo_root / config_dir

    def load(self, filename: str) -> dict[str, Any]:
        """Load a YAML file; returns empty dict if the file is missing or not a mapping."""
        path = self._dir / filename
        if not path.exists():
            return {}
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}


class Settings(BaseSettings):
    """Root settings container; access all config from one object."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    providers: ProviderConfig = Field(default_factory=ProviderConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    rate_limits: RateLimitConfig = Field(default_factory=RateLimitConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    # YAML-loaded config (populated in get_settings)
    domain_policies: dict[str, Any] = Field(default_factory=dict)

    @property
    def allowed_domains(self) -> list[str]:
        domains = self.domain_policies.get("allowed_domains")
        if isinstance(domains, list) and domains:
            return [str(d) for d in domains]
        return list(DEFAULT_ALLOWED_DOMAINS)

    @property
    def allow_subdomains(self) -> bool:
        return bool(self.domain_policies.get("allow_subdomains", True))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton settings instance. Cached after first call."""
    settings = Settings()
    settings.domain_policies = YAMLConfigLoader().load("domain_policies.yaml")
    return settings

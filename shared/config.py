"""
Shared configuration management for the Inventory Cache Layer.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="INVENTORY_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Upstream reporting API
    upstream_api_key: str = Field(default="")
    upstream_api_secret: str = Field(default="")
    upstream_base_url: str = Field(default="http://localhost:8090")
    upstream_report_path: str = Field(default="/report/inventory")
    upstream_timeout_seconds: float = Field(default=30.0, gt=0)
    upstream_retry_backoff_seconds: float = Field(default=0.5, ge=0)
    upstream_min_interval_seconds: float = Field(default=0.5, ge=0)

    # Key-value store
    store_connection_string: str = Field(default="redis://localhost:6379/0")
    store_timeout_seconds: float = Field(default=2.0, gt=0)

    # Cache policy
    cache_default_ttl_minutes: int = Field(default=15, ge=1)
    cache_min_ttl_minutes: int = Field(default=1, ge=1)
    cache_stale_retention_factor: int = Field(default=10, ge=1)
    cache_warm_on_startup: bool = Field(default=False)

    # Query defaults
    search_max_results: int = Field(default=100, ge=1)

    @property
    def cache_default_ttl_seconds(self) -> int:
        return self.cache_default_ttl_minutes * 60

    @property
    def cache_min_ttl_seconds(self) -> int:
        return self.cache_min_ttl_minutes * 60


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)


def redact_url(url: Optional[str]) -> Optional[str]:
    """Strip credentials from a connection URL before it is logged."""
    if not url or "@" not in url:
        return url
    scheme, _, rest = url.partition("://")
    return f"{scheme}://***@{rest.split('@', 1)[1]}"

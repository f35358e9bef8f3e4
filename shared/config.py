"""
Shared configuration management for the RedditView access layer.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="FORWARDER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Listener
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3001)


class ForwarderConfig(BaseConfig):
    """Forwarding cache service configuration."""

    # Routing
    api_prefix: str = Field(default="/api")
    search_prefix: str = Field(default="/search/")
    search_endpoint: str = Field(default="/search")

    # Upstream hosts
    api_base_url: str = Field(default="https://www.reddit.com")
    legacy_base_url: str = Field(default="https://old.reddit.com")
    user_agent: str = Field(default="redditview/1.0")
    upstream_timeout_seconds: float = Field(default=10.0, gt=0)

    # Cache
    cache_ttl_seconds: float = Field(default=60, gt=0)

    # Rate limit recovery
    retry_max_attempts: int = Field(default=3, ge=0)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0)
    retry_after_seconds: int = Field(default=60, ge=0)


def get_config(**overrides) -> ForwarderConfig:
    """Get configuration for the forwarding service."""
    return ForwarderConfig(**overrides)

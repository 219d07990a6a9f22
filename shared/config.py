"""
Shared configuration management for the RetroLens access layer.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="RETROLENS_",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Backend API
    api_base_url: str = Field(default="http://localhost:8000")
    api_timeout: float = Field(default=10.0, gt=0)
    health_check_timeout: float = Field(default=5.0, gt=0)

    # Query cache (seconds)
    cache_stale_time: float = Field(default=300.0, ge=0)
    cache_gc_time: float = Field(default=600.0, ge=0)
    cache_retry: int = Field(default=1, ge=0)
    cache_retry_base_delay: float = Field(default=1.0, ge=0)
    cache_retry_max_delay: float = Field(default=30.0, ge=0)
    cache_sweep_interval: float = Field(default=60.0, gt=0)

    # Circuit breaker
    circuit_failure_threshold: int = Field(default=5, ge=1)
    circuit_recovery_timeout: float = Field(default=30.0, ge=0)


class ClientConfig(BaseConfig):
    """Client-specific configuration."""

    service_name: str = "session"


def get_config(service_name: str = "session", **overrides) -> ClientConfig:
    """Get configuration for a client component."""
    return ClientConfig(service_name=service_name, **overrides)

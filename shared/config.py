"""
Shared configuration management for the rollout services.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ROLLOUT_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Configuration store
    redis_url: str = Field(default="redis://localhost:6379/0")

    # External eligibility service
    eligibility_service_url: Optional[str] = Field(default=None)
    eligibility_timeout_seconds: float = Field(default=2.0)
    eligibility_failure_threshold: int = Field(default=3)
    eligibility_recovery_timeout: float = Field(default=30.0)

    # Result publication
    result_publisher: str = Field(default="log")
    publish_in_background: bool = Field(default=True)
    publisher_workers: int = Field(default=2)
    publisher_max_pending: int = Field(default=1000)
    result_ttl_seconds: int = Field(default=7 * 24 * 3600)

    # Unconditional sampling stream; None seeds from the OS
    sampler_seed: Optional[int] = Field(default=None)

    # Observability
    enable_console_tracing: bool = Field(default=False)


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

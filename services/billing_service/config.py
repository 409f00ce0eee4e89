"""Configuration for the billing gRPC service."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BillingServiceSettings(BaseSettings):
    """Runtime configuration for the billing gRPC server."""

    host: str = Field(
        default="0.0.0.0", description="Interface the gRPC server binds to"
    )
    port: int = Field(
        default=9001, ge=0, le=65535, description="Port the gRPC server listens on"
    )
    log_level: str = Field(default="INFO", description="Minimum log level")
    shutdown_grace: float = Field(
        default=5.0,
        ge=0.0,
        description="Seconds in-flight RPCs get to finish on shutdown",
    )

    model_config = SettingsConfigDict(
        env_prefix="BILLING_SERVICE_",
        env_file=".env",
        extra="ignore",
    )

    @property
    def bind_address(self) -> str:
        return f"{self.host}:{self.port}"


@lru_cache
def get_settings() -> BillingServiceSettings:
    """Return cached billing service settings."""

    return BillingServiceSettings()


__all__ = ["BillingServiceSettings", "get_settings"]

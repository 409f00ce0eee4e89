"""Configuration for the patient service."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PatientServiceSettings(BaseSettings):
    """Runtime configuration for the patient HTTP service."""

    database_url: str | None = Field(
        default=None,
        description=(
            "SQLAlchemy async database URL. When unset patients are kept in memory."
        ),
    )
    create_schema: bool = Field(
        default=True,
        description="Create the patient table on startup when using a database",
    )
    billing_enabled: bool = Field(
        default=True,
        description="Open a billing account for each newly registered patient",
    )
    billing_address: str = Field(
        default="localhost:9001",
        description="host:port of the billing gRPC service",
    )
    billing_timeout: float = Field(
        default=5.0,
        gt=0.0,
        description="Deadline in seconds for each billing RPC attempt",
    )
    billing_retry_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts made for transient billing failures",
    )
    host: str = Field(default="0.0.0.0", description="HTTP bind interface")
    port: int = Field(default=8002, ge=1, le=65535, description="HTTP bind port")
    log_level: str = Field(default="INFO", description="Minimum log level")

    model_config = SettingsConfigDict(
        env_prefix="PATIENT_SERVICE_",
        env_file=".env",
        extra="ignore",
    )


@lru_cache
def get_settings() -> PatientServiceSettings:
    """Return cached patient service settings."""

    return PatientServiceSettings()


__all__ = ["PatientServiceSettings", "get_settings"]

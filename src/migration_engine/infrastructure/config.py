"""Configuration management for the migration engine."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from migration_engine.domain.value_objects import DurabilityMode, RetryPolicy


class StoreConfig(BaseModel):
    """Store configuration."""

    path: Path = Field(default=Path("data/store.db"), description="Store file path")
    durability: Literal["full", "normal"] = Field(
        default="full", description="Store-wide commit durability"
    )
    busy_timeout_ms: int = Field(
        default=0, ge=0, description="Engine-level busy wait; the gate's retry policy does the waiting"
    )

    @property
    def durability_mode(self) -> DurabilityMode:
        return DurabilityMode(self.durability)

    def ensure_directory(self) -> None:
        """Ensure the store's parent directory exists."""
        self.path.parent.mkdir(parents=True, exist_ok=True)


class RetryConfig(BaseModel):
    """Write-lock retry policy. Every field is required; there is no implied default."""

    max_attempts: int = Field(ge=1, description="Total lock attempts, including the first")
    base_delay_seconds: float = Field(ge=0, description="Wait before the second attempt")
    multiplier: float = Field(ge=1, description="Backoff factor applied per attempt")
    max_total_wait_seconds: float = Field(ge=0, description="Bound on the cumulative wait")

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay_seconds,
            multiplier=self.multiplier,
            max_total_wait=self.max_total_wait_seconds,
        )


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Log level"
    )
    log_format: Literal["json", "console"] = Field(default="json", description="Log format")
    otel_endpoint: str | None = Field(
        default=None, description="OpenTelemetry collector endpoint"
    )
    otel_service_name: str = Field(
        default="migration_engine", description="Service name for tracing"
    )
    metrics_port: int | None = Field(
        default=None, ge=1, le=65535, description="Prometheus metrics port (disabled if unset)"
    )


class Config(BaseSettings):
    """Main configuration for the migration engine."""

    model_config = SettingsConfigDict(
        env_prefix="MIGRATION_ENGINE_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    store: StoreConfig = Field(default_factory=StoreConfig)
    retry: RetryConfig | None = Field(default=None, description="Write-lock retry policy")
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    def retry_policy(self) -> RetryPolicy:
        """Return the configured retry policy.

        Raises:
            ValueError: If no retry policy is configured.
        """
        if self.retry is None:
            raise ValueError(
                "No write-lock retry policy configured; set MIGRATION_ENGINE_RETRY__MAX_ATTEMPTS, "
                "__BASE_DELAY_SECONDS, __MULTIPLIER and __MAX_TOTAL_WAIT_SECONDS"
            )
        return self.retry.to_policy()


@lru_cache
def get_config() -> Config:
    """Get the global configuration instance."""
    config = Config()
    config.store.ensure_directory()
    return config

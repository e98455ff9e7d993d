"""
sitewatch.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for all layers.
- Hold the health thresholds and polling cadence used by monitoring.
- Hide secrets from repr/logging (e.g., JWT secret).
- Offer a cached settings instance for dependency injection.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Threshold(BaseModel):
    # soft breach -> warning, hard breach -> critical
    soft: float
    hard: float

    @model_validator(mode="after")
    def _ordered(self) -> Threshold:
        if self.hard < self.soft:
            raise ValueError("hard threshold must not be below soft threshold")
        return self


class HealthThresholds(BaseModel):
    cpu_percent: Threshold = Threshold(soft=70, hard=90)
    memory_mb: Threshold = Threshold(soft=500, hard=1000)
    response_time_ms: Threshold = Threshold(soft=2000, hard=5000)
    error_rate_per_min: Threshold = Threshold(soft=10, hard=20)
    # Battery is a floor, not a ceiling: below this level is a soft breach.
    battery_low_percent: float = 20


class Settings(BaseSettings):
    """
    Env-driven configuration:
    - Defaults safe for local dev
    - Single settings object injected across layers
    """

    model_config = SettingsConfigDict(
        env_prefix="SITEWATCH_", env_nested_delimiter="__", case_sensitive=False
    )

    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "sitewatch"
    log_level: str = "INFO"

    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Auth
    jwt_alg: str = "HS256"
    jwt_issuer: str = "sitewatch"
    jwt_audience: str = "sitewatch-api"
    jwt_secret: str = Field(default="dev-secret-change-me", repr=False)
    permission_cache_ttl_seconds: float = Field(default=300, ge=0)

    # Persistence
    database_url: str = "sqlite+aiosqlite:///./sitewatch.db"
    store_retry_attempts: int = Field(default=3, ge=1)
    store_retry_wait_seconds: float = Field(default=0.5, ge=0)

    # Telemetry
    telemetry_environment: Literal["development", "staging", "production"] = "development"

    # Monitoring
    health_poll_interval_seconds: float = Field(default=60, ge=0)
    health_check_timeout_seconds: float = Field(default=10, gt=0)
    error_feed_default_limit: int = Field(default=10, ge=1)
    activity_window_limit: int = Field(default=100, ge=1)
    thresholds: HealthThresholds = Field(default_factory=HealthThresholds)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for each request dependency.
    return Settings()

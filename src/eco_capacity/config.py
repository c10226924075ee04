"""Application settings loaded from environment variables (``ECO_CAPACITY_*``)."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide settings. Construct once at start-up and pass along."""

    model_config = SettingsConfigDict(
        env_prefix="ECO_CAPACITY_",
        env_file=".env",
        extra="ignore",
    )

    app_name: str = "eco-capacity"
    app_env: str = "local"
    debug: bool = False

    # Persistence
    data_dir: Path = Path("data")
    database_url: str | None = None
    redis_url: str | None = None

    # Weather provider
    weather_api_url: str = "https://api.open-meteo.com/v1/forecast"
    provider_timeout: float = Field(default=10.0, gt=0)

    # Weather cache / freshness
    weather_cache_ttl_seconds: int = Field(default=600, gt=0)
    weather_freshness_hours: float = Field(default=6.0, gt=0)

    # Batch retrieval (upstream rate limits)
    batch_size: int = Field(default=5, ge=1)
    batch_delay_seconds: float = Field(default=0.1, ge=0)

    # Monitor
    monitor_interval_hours: float = Field(default=6.0, gt=0)

    # Broadcast
    broadcast_channel: str = "eco-capacity:events"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

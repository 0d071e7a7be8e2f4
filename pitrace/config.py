"""
Application configuration using pydantic-settings.
Loads from environment variables / .env file.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "pi-trace"
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # API Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Database (Postgres via asyncpg in production)
    database_url: str = "sqlite+aiosqlite:///./pi_trace.db"

    # Redis (rate limits when backend=redis, Celery broker)
    redis_url: str = "redis://localhost:6379/0"

    # Signed credentials
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_issuer: str = "pi-trace"
    jwt_expires_days: int = 7

    # Rate limiting: (max requests, window seconds) per endpoint class
    auth_rate_limit_max: int = 5
    auth_rate_limit_window_seconds: int = 15 * 60
    api_rate_limit_max: int = 100
    api_rate_limit_window_seconds: int = 60 * 60
    rate_limit_backend: Literal["memory", "redis"] = "memory"
    rate_limit_sweep_seconds: int = 60

    # Payments
    payment_ttl_minutes: int = 15
    payment_max_retries: int = 3
    cas_max_attempts: int = 3
    store_timeout_seconds: float = 5.0
    metadata_max_bytes: int = 4096
    webhook_max_attempts: int = 5
    default_memo: str = "PI TRACE Payment"

    # Wallet network callbacks. Empty means the status endpoint is open.
    webhook_secret: str = ""

    # Expiry reaper
    reaper_interval_seconds: int = 60
    reaper_batch_size: int = 500

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()

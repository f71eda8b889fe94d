"""Settings management.

WHAT:
    One pydantic-settings model for the whole backend, loaded from the
    environment or a local `.env` file.

WHY:
    - Database, crypto keys and Shopify knobs live in one place.
    - `get_settings()` is cached so every module sees the same instance;
      tests clear the cache after changing environment variables.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    APP_NAME: str = "StorePulse"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = "sqlite:///./storepulse.db"
    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"

    # Auth + crypto
    JWT_SECRET: str = ""
    JWT_ALGORITHM: str = "HS256"
    # URL-safe base64-encoded 32-byte Fernet key
    TOKEN_ENCRYPTION_KEY: str = ""

    # Shopify Admin REST API
    SHOPIFY_API_VERSION: str = "2024-01"
    SHOPIFY_WEBHOOK_SECRET: Optional[str] = None
    SHOPIFY_REQUEST_TIMEOUT: float = 30.0
    SHOPIFY_PAGE_SIZE: int = 250

    # Sync pipeline
    SYNC_MAX_PAGES: int = 40
    SYNC_INTERVAL_MINUTES: int = 15
    SYNC_LOG_RETENTION_DAYS: int = 7
    SCHEDULER_ENABLED: bool = True

    # Error tracking
    SENTRY_DSN: Optional[str] = None
    RELEASE_VERSION: Optional[str] = None

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]

"""
eCFR Analyzer - Configuration

Settings are read from the process environment (and an optional env file
named by ENV_FILE). Access them through get_settings(); tests call
reset_settings() after patching the environment.

Database:
  DATABASE_URL             - Postgres connection string (preferred)
  DB_HOST/DB_PORT/DB_USER/DB_PASSWORD/DB_NAME
                           - Component fallback when DATABASE_URL is unset

Upstream sources:
  ECFR_BASE_URL            - eCFR API root (default https://www.ecfr.gov)
  ECFR_BULK_BASE_URL       - govinfo bulk archive root
  ECFR_API_TIMEOUT         - seconds per API call (default 30)
  ECFR_BULK_TIMEOUT        - seconds per bulk download (default 60)

Pipeline:
  ECFR_CONTENT_WORKERS     - content download pool size (default 5)
  ECFR_HISTORY_MONTHS      - months of historical backfill (default 24)
  ECFR_HISTORY_TITLE_DELAY - pause between structure calls (default 0.1s)
  ECFR_HISTORY_MONTH_DELAY - pause between months (default 0.5s)
  ECFR_REFRESH_INTERVAL_MINUTES
                           - >0 schedules a periodic full refresh
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Literal
from urllib.parse import quote, urlparse

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=os.environ.get("ENV_FILE"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # =========================================================================
    # DATABASE
    # =========================================================================

    DATABASE_URL: str = Field(
        default="",
        description="Primary Postgres connection string (preferred)",
    )
    DB_HOST: str = Field(default="localhost")
    DB_PORT: int = Field(default=5432)
    DB_USER: str = Field(default="ecfr")
    DB_PASSWORD: str = Field(default="")
    DB_NAME: str = Field(default="ecfr")
    DB_POOL_MIN_SIZE: int = Field(default=2, ge=1)
    DB_POOL_MAX_SIZE: int = Field(default=10, ge=1)

    # =========================================================================
    # ENVIRONMENT CONTROL
    # =========================================================================

    ENVIRONMENT: Literal["dev", "staging", "prod"] = Field(
        default="dev",
        description="Deployment environment",
    )
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )
    LOG_JSON: bool = Field(
        default=False,
        description="Emit structured JSON log lines (always on in prod)",
    )

    # =========================================================================
    # UPSTREAM SOURCES
    # =========================================================================

    ECFR_BASE_URL: str = Field(default="https://www.ecfr.gov")
    ECFR_BULK_BASE_URL: str = Field(default="https://www.govinfo.gov/bulkdata/ECFR")
    ECFR_API_TIMEOUT: float = Field(default=30.0, gt=0)
    ECFR_BULK_TIMEOUT: float = Field(default=60.0, gt=0)

    # =========================================================================
    # PIPELINE
    # =========================================================================

    ECFR_CONTENT_WORKERS: int = Field(default=5, ge=1)
    ECFR_HISTORY_MONTHS: int = Field(default=24, ge=1)
    ECFR_HISTORY_TITLE_DELAY: float = Field(default=0.1, ge=0)
    ECFR_HISTORY_MONTH_DELAY: float = Field(default=0.5, ge=0)
    ECFR_REFRESH_INTERVAL_MINUTES: int = Field(default=0, ge=0)

    # =========================================================================
    # SERVER CONFIGURATION
    # =========================================================================

    ECFR_CORS_ORIGINS: str = Field(default="*")
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8080)

    # =========================================================================
    # PROPERTY ALIASES
    # =========================================================================

    @property
    def database_url(self) -> str:
        """Effective DSN: DATABASE_URL if set, otherwise built from DB_* parts."""
        if self.DATABASE_URL and self.DATABASE_URL.strip():
            return self.DATABASE_URL.strip()
        password = f":{quote(self.DB_PASSWORD, safe='')}" if self.DB_PASSWORD else ""
        return (
            f"postgresql://{quote(self.DB_USER, safe='')}{password}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    @property
    def database_host(self) -> str | None:
        try:
            return urlparse(self.database_url).hostname
        except ValueError:
            return None

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "prod"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "dev"

    @property
    def cors_allowed_origins(self) -> list[str]:
        raw = (self.ECFR_CORS_ORIGINS or "").replace(",", " ")
        origins = [o.strip().rstrip("/") for o in raw.split() if o.strip()]
        return origins or ["*"]

    @property
    def scheduler_enabled(self) -> bool:
        return self.ECFR_REFRESH_INTERVAL_MINUTES > 0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]


def reset_settings() -> None:
    """Clear the cached settings (for testing or environment switch)."""
    get_settings.cache_clear()


def configure_logging(settings: Settings | None = None) -> None:
    """
    Configure application logging based on settings.

    In production (or with LOG_JSON=true) uses structured JSON lines,
    otherwise a compact console format.
    """
    if settings is None:
        settings = get_settings()

    from .utils.logging import setup_logging

    setup_logging(
        level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
        json_output=settings.LOG_JSON or settings.is_production,
    )

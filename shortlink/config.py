"""Configuration management for the shortlink service.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Import**::
    from shortlink.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    retries = settings.SHORT_CODE_MAX_RETRIES

**Step 3 — Override in the environment**::
    ANALYTICS_SERVICE_URL=http://localhost:3002 uvicorn shortlink.main:app

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- Code length bounds are checked once, at construction time.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "shortlink"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://shortlink:shortlink@db:5432/shortlink"

    # Redis link cache (read-through, never authoritative)
    REDIS_URL: str = "redis://redis:6379/0"
    LINK_CACHE_ENABLED: bool = True
    LINK_CACHE_TTL_SECONDS: int = 3600

    # Cache stampede protection
    CACHE_LOCK_TTL_SECONDS: int = 3
    CACHE_LOCK_RETRY_COUNT: int = 3
    CACHE_LOCK_RETRY_DELAY_SECONDS: float = 0.05

    # Short code space
    SHORT_CODE_DEFAULT_LENGTH: int = 6
    SHORT_CODE_MAX_LENGTH: int = 8
    SHORT_CODE_MAX_RETRIES: int = 10

    # Link policy
    DEDUPLICATE_TARGETS: bool = True
    MAX_EXPIRES_IN_DAYS: int = 365
    EXPIRY_SWEEP_INTERVAL_SECONDS: int = 0
    REDIRECT_STATUS_CODE: int = 307

    # Analytics collaborator
    ANALYTICS_SERVICE_URL: str = "http://analytics:3002"
    ANALYTICS_TIMEOUT_SECONDS: float = 5.0
    ANALYTICS_HEALTH_TIMEOUT_SECONDS: float = 3.0
    ANALYTICS_MAX_RETRIES: int = 3
    ANALYTICS_BASE_DELAY_SECONDS: float = 1.0
    ANALYTICS_MAX_BATCH_SIZE: int = 1000
    ANALYTICS_QUEUE_SIZE: int = 10000
    ANALYTICS_WORKERS: int = 4
    ANALYTICS_COALESCE_BATCHES: bool = False
    ANALYTICS_DRAIN_TIMEOUT_SECONDS: float = 5.0

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        # Deployment files also carry compose-only variables.
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_code_lengths(self) -> "Settings":
        if not 1 <= self.SHORT_CODE_DEFAULT_LENGTH <= self.SHORT_CODE_MAX_LENGTH:
            raise ValueError("SHORT_CODE_DEFAULT_LENGTH must be between 1 and SHORT_CODE_MAX_LENGTH")
        if self.SHORT_CODE_MAX_RETRIES < 1 or self.ANALYTICS_MAX_RETRIES < 1:
            raise ValueError("retry budgets must be at least 1")
        return self


@lru_cache()
def get_settings() -> Settings:
    return Settings()

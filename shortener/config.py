"""Configuration management for the short-link service.

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
    from shortener.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    retries = settings.MAX_RETRIES

**Step 3 — Override for tests**::
    settings = Settings(DATABASE_URL="sqlite+aiosqlite:///./test.db", CACHE_ENABLED=False)
    app = create_app(settings)

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- DEFAULT_CODE_LENGTH is bounded to the generator's [4, 12] range at load time.
- The service never reads settings from a global at request time; the instance
  built at startup is threaded through the service container.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "shortener"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://shortener:shortener@db:5432/shortener"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10
    STORE_TIMEOUT_SECONDS: float = 5.0

    # Redis link cache
    REDIS_URL: str = "redis://redis:6379/0"
    CACHE_ENABLED: bool = True
    CACHE_TTL_SECONDS: int = 3600

    # Short code generation
    MAX_RETRIES: int = Field(default=5, ge=1)
    DEFAULT_CODE_LENGTH: int = Field(default=7, ge=4, le=12)
    MAX_CUSTOM_CODE_LENGTH: int = Field(default=50, ge=2)
    COLLISION_THRESHOLD: int = Field(default=3, ge=1)

    # Click analytics
    ENABLE_ANALYTICS: bool = True
    ANONYMIZE_IPS: bool = True
    RESPECT_DNT: bool = True
    CLICK_TIMEOUT_SECONDS: float = 5.0
    CLICK_WORKERS: int = Field(default=4, ge=1)
    CLICK_QUEUE_SIZE: int = Field(default=1000, ge=1)

    # Kafka click stream
    KAFKA_ENABLED: bool = False
    KAFKA_BOOTSTRAP_SERVERS: str = "kafka:9092"
    KAFKA_CLICK_TOPIC: str = "click_events"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()

# api/app/config.py
from __future__ import annotations

from datetime import timedelta
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized application configuration.

    Loads environment variables from `.env` and provides
    typed access across API, worker, and services.
    """

    # ─────────────────────────────────────────────
    # Pydantic Settings Config
    # ─────────────────────────────────────────────
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ─────────────────────────────────────────────
    # Database
    # ─────────────────────────────────────────────
    database_url: str = "postgresql+asyncpg://localhost/tradebuddy"
    database_pool_size: int = 10
    database_max_overflow: int = 20

    # ─────────────────────────────────────────────
    # OpenAI (downstream analysis API)
    # ─────────────────────────────────────────────
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str | None = None

    # ─────────────────────────────────────────────
    # Worker pool / queue
    # ─────────────────────────────────────────────
    worker_concurrency: int = 3
    worker_poll_min_ms: int = 250
    worker_poll_max_ms: int = 1000

    rate_limit_max: int = 5
    rate_limit_window_ms: int = 1000

    max_attempts: int = 3
    backoff_base_ms: int = 2000

    handler_timeout_ms: int = 60_000
    lease_duration_ms: int = 90_000

    # Hint for the external cleanup job; the core never deletes jobs.
    retain_succeeded_count: int = 50

    @model_validator(mode="after")
    def _check_queue_settings(self) -> "Settings":
        if self.worker_concurrency < 1:
            raise ValueError("WORKER_CONCURRENCY must be at least 1")
        if self.rate_limit_max < 1 or self.rate_limit_window_ms <= 0:
            raise ValueError("RATE_LIMIT_MAX and RATE_LIMIT_WINDOW_MS must be positive")
        if self.max_attempts < 1:
            raise ValueError("MAX_ATTEMPTS must be at least 1")
        if self.worker_poll_min_ms > self.worker_poll_max_ms:
            raise ValueError("WORKER_POLL_MIN_MS must not exceed WORKER_POLL_MAX_MS")
        # a lease shorter than the handler timeout gets reclaimed mid-run
        if self.lease_duration_ms <= self.handler_timeout_ms:
            raise ValueError("LEASE_DURATION_MS must exceed HANDLER_TIMEOUT_MS")
        return self

    # ─────────────────────────────────────────────
    # Derived Properties
    # ─────────────────────────────────────────────
    @property
    def rate_limit_window(self) -> timedelta:
        return timedelta(milliseconds=self.rate_limit_window_ms)

    @property
    def backoff_base(self) -> timedelta:
        return timedelta(milliseconds=self.backoff_base_ms)

    @property
    def handler_timeout(self) -> timedelta:
        return timedelta(milliseconds=self.handler_timeout_ms)

    @property
    def lease_duration(self) -> timedelta:
        return timedelta(milliseconds=self.lease_duration_ms)

    @property
    def idle_wait_range(self) -> tuple[float, float]:
        return self.worker_poll_min_ms / 1000, self.worker_poll_max_ms / 1000


# ─────────────────────────────────────────────
# Cached Settings Instance
# ─────────────────────────────────────────────
@lru_cache
def get_settings() -> Settings:
    """
    Returns a cached Settings instance so config
    is only loaded once per process.
    """
    return Settings()

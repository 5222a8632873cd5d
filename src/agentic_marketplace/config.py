"""Application configuration via pydantic-settings.

Reads from a .env file or environment variables. Marketplace policy
(platform fee, auto-release window, auto-resolve threshold) lives here as
named settings so the engine never hard-codes them.

Usage:
    from agentic_marketplace.config import get_settings
    settings = get_settings()
    print(settings.platform_fee_percent)
"""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the Agentic Marketplace."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database ---
    database_url: str = "sqlite+aiosqlite:///./agentic_marketplace.db"
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"
    redis_idempotency_ttl_seconds: int = 86400  # 24 hours

    # --- Marketplace policy ---
    platform_fee_percent: Decimal = Field(default=Decimal("10"), ge=0, lt=100)
    auto_release_window_hours: int = Field(default=168, gt=0)  # 7 days
    auto_release_claim_ttl_seconds: int = 300
    outbox_claim_ttl_seconds: int = 300
    auto_resolve_confidence_threshold: int = Field(default=85, ge=0, le=100)
    auto_resolve_after_arbitration: bool = False
    dispute_reason_min_length: int = 10
    resolution_notes_min_length: int = 10

    # --- Wallets ---
    platform_wallet: str = "0x0000000000000000000000000000000000000001"
    escrow_custody_wallet: str = "0x0000000000000000000000000000000000000002"

    # --- Settlement ---
    settlement_simulate: bool = True
    settlement_api_url: str = "http://localhost:8402"
    settlement_api_key: str = ""
    settlement_timeout_seconds: int = 30

    # --- Arbitration / LiteLLM ---
    # Any LiteLLM-compatible model string, e.g. "gemini/gemini-2.0-flash" or "gpt-4o".
    openai_api_key: str = ""
    gemini_api_key: str = ""
    litellm_model: str = "gemini/gemini-2.0-flash"
    litellm_fallback_models: str = "gemini/gemini-1.5-flash"
    litellm_max_tokens: int = 1024
    litellm_temperature: float = 0.0
    arbitration_timeout_seconds: float = 60.0

    # --- Webhooks ---
    webhook_timeout_seconds: float = 10.0
    webhook_max_attempts: int = 3
    webhook_retry_delays: str = "1,5,15"

    # --- Access ---
    admin_api_key: str = ""
    cron_secret: str = ""

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def litellm_fallback_model_list(self) -> list[str]:
        """Parse comma-separated fallback models into a list."""
        if not self.litellm_fallback_models:
            return []
        return [m.strip() for m in self.litellm_fallback_models.split(",") if m.strip()]

    @property
    def webhook_retry_delay_list(self) -> list[float]:
        """Delays before each webhook attempt after the first."""
        if not self.webhook_retry_delays:
            return []
        return [float(d) for d in self.webhook_retry_delays.split(",") if d.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()

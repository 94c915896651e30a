"""Application configuration settings."""
from __future__ import annotations

import os
from decimal import Decimal
from functools import lru_cache

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Runtime environment: "dev" | "test" | "staging" | "prod"
ENV = os.getenv("GIGPAY_ENV", "dev").lower()

# Legacy shared key, tolerated in dev only
DEV_API_KEY = os.getenv("DEV_API_KEY") or os.getenv("API_KEY") or "dev-secret-key"
DEV_API_KEY_ALLOWED = ENV in {"dev", "local", "test"}

API_SCOPES = {"user", "support", "admin"}


class Settings(BaseSettings):
    """Environment configuration for the gigpay backend."""

    app_env: str = ENV
    database_url: str = "sqlite:///gigpay.db"
    ALLOW_DB_CREATE_ALL: bool = False
    SECRET_KEY: str = "change-me"
    DEV_API_KEY: str | None = Field(
        default=DEV_API_KEY,
        validation_alias=AliasChoices("DEV_API_KEY", "API_KEY"),
    )
    CORS_ALLOW_ORIGINS: list[str] = [
        "http://localhost:3000",
    ]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = False
    LOG_LEVEL: str = "INFO"

    # --- Money ----------------------------------------------------------
    CURRENCY: str = "ZAR"
    PAYMENT_INTENT_TTL_MINUTES: int = 30
    FEE_CONFIG_CACHE_TTL_SECONDS: int = 300
    MAX_RATE_AMOUNT: Decimal = Decimal("100000")

    # --- Withdrawals ------------------------------------------------------
    WITHDRAWAL_MIN_AMOUNT: Decimal = Decimal("50")
    WITHDRAWAL_MAX_AMOUNT: Decimal = Decimal("50000")
    WITHDRAWAL_MAX_REQUESTS_PER_WINDOW: int = 3
    WITHDRAWAL_WINDOW_HOURS: int = 24

    # --- Card/EFT gateway (Paystack) ----------------------------------------
    PAYSTACK_SECRET_KEY: str | None = None
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    PAYSTACK_CALLBACK_URL: str | None = None

    # --- Escrow gateway (TradeSafe) -----------------------------------------
    TRADESAFE_CLIENT_ID: str | None = None
    TRADESAFE_CLIENT_SECRET: str | None = None
    TRADESAFE_AUTH_URL: str = "https://auth.tradesafe.co.za/oauth/token"
    TRADESAFE_API_URL: str = "https://api-developer.tradesafe.dev/graphql"
    TRADESAFE_AGENT_TOKEN: str | None = None

    GATEWAY_TIMEOUT_SECONDS: float = 15.0

    # --- External trigger -------------------------------------------------
    CRON_SECRET: str | None = None

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8"
    )

    @field_validator(
        "PAYSTACK_SECRET_KEY",
        "TRADESAFE_CLIENT_SECRET",
        "CRON_SECRET",
    )
    @classmethod
    def _strip_empty_secret(cls, value: str | None) -> str | None:
        """Normalise empty secrets to ``None`` for easier validation."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None


class AppInfo(BaseModel):
    name: str = "gigpay-backend"
    version: str = "0.1.0"


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return settings


__all__ = [
    "ENV",
    "DEV_API_KEY",
    "DEV_API_KEY_ALLOWED",
    "API_SCOPES",
    "Settings",
    "AppInfo",
    "settings",
    "get_settings",
]

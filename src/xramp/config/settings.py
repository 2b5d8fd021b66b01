"""
Settings - Pydantic-based Configuration Management

Provides centralized configuration management using Pydantic Settings.
Supports environment variables and a .env file with validation.

Files that USE this module:
- xramp.app (loads settings for engine wiring and bot configuration)
- xramp.application.* (conversion limits, cache TTLs, transfer timeouts)
- xramp.adapters.* (API keys, base URLs, HTTP timeouts)

Files that this module USES:
- xramp.shared.validators (validation functions for settings)
"""

from __future__ import annotations  # Enable postponed evaluation of annotations

from decimal import Decimal  # Exact values for money-related settings
from pathlib import Path  # Object-oriented filesystem paths
from typing import Optional  # Type hints for optional values

from pydantic import Field, field_validator, model_validator  # Data validation and field configuration
from pydantic_settings import BaseSettings, SettingsConfigDict  # Settings management with Pydantic

from xramp.shared.validators import (
    validate_bot_token,  # Validate Telegram bot token format
    validate_chat_id,  # Validate Telegram chat ID format
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # --- Conversion limits ---
    min_transaction_usd: Decimal = Field(default=Decimal("10"), alias="MIN_TRANSACTION_USD", gt=0)
    max_transaction_usd: Decimal = Field(default=Decimal("10000"), alias="MAX_TRANSACTION_USD", gt=0)
    min_profit_margin: Decimal = Field(default=Decimal("0.08"), alias="MIN_PROFIT_MARGIN")

    # --- On-ramp orders ---
    onramp_min_usd: Decimal = Field(default=Decimal("30"), alias="ONRAMP_MIN_USD", gt=0)
    onramp_fee_estimate: Decimal = Field(default=Decimal("0.04"), alias="ONRAMP_FEE_ESTIMATE", ge=0, lt=1)

    # --- Market rate cache ---
    market_rate_ttl_seconds: int = Field(default=300, alias="MARKET_RATE_TTL_SECONDS", ge=1, le=86400)
    market_rate_fallback: Decimal = Field(default=Decimal("1.0"), alias="MARKET_RATE_FALLBACK", gt=0)
    rate_feed_timeout_seconds: float = Field(default=5.0, alias="RATE_FEED_TIMEOUT_SECONDS", gt=0, le=60)

    # --- HTTP Settings ---
    http_timeout_seconds: int = Field(default=10, alias="HTTP_TIMEOUT_SECONDS", ge=1, le=60)

    # --- Transfer dispatch ---
    transfer_timeout_seconds: float = Field(default=30.0, alias="TRANSFER_TIMEOUT_SECONDS", gt=0, le=600)
    transfer_max_attempts: int = Field(default=3, alias="TRANSFER_MAX_ATTEMPTS", ge=1, le=10)
    auto_complete_on_dispatch: bool = Field(default=True, alias="AUTO_COMPLETE_ON_DISPATCH")
    default_network: str = Field(default="TRC20", alias="DEFAULT_NETWORK")

    # --- Payment providers ---
    stripe_secret_key: str = Field(default="", alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str = Field(default="", alias="STRIPE_WEBHOOK_SECRET")
    transak_webhook_secret: str = Field(default="", alias="TRANSAK_WEBHOOK_SECRET")

    # --- Exchange (USDT withdrawals) ---
    binance_api_key: str = Field(default="", alias="BINANCE_API_KEY")
    binance_api_secret: str = Field(default="", alias="BINANCE_API_SECRET")
    binance_base_url: str = Field(default="https://api.binance.com", alias="BINANCE_BASE_URL")

    # --- Telegram (notifications and admin commands) ---
    bot_token: str = Field(default="", alias="BOT_TOKEN")
    notify_chat_id: str = Field(default="", alias="NOTIFY_CHAT_ID")
    admin_username: str = Field(default="", alias="ADMIN_USERNAME")

    # --- Persistence ---
    transactions_file: Path = Field(
        default=Path("./data/transactions.json"), alias="TRANSACTIONS_FILE"
    )

    # --- Logging (for server deployment) ---
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: Optional[str] = Field(default=None, alias="LOG_FILE")
    log_dir: Optional[str] = Field(default=None, alias="LOG_DIR")
    log_stdout: bool = Field(default=True, alias="XRAMP_LOG_STDOUT")
    log_max_bytes: int = Field(default=10 * 1024 * 1024, alias="LOG_MAX_BYTES")  # 10MB
    log_backup_count: int = Field(default=5, alias="LOG_BACKUP_COUNT")

    @property
    def binance_configured(self) -> bool:
        return bool(self.binance_api_key and self.binance_api_secret)

    @property
    def stripe_configured(self) -> bool:
        return bool(self.stripe_secret_key)

    @field_validator("min_profit_margin")
    @classmethod
    def validate_margin(cls, v: Decimal) -> Decimal:
        """Margin is a fraction, not a percentage."""
        if not (Decimal("0") < v < Decimal("1")):
            raise ValueError("MIN_PROFIT_MARGIN must be between 0 and 1 (e.g. 0.08)")
        return v

    @field_validator("default_network")
    @classmethod
    def validate_network(cls, v: str) -> str:
        """Validate network name."""
        if v.upper() not in ("TRC20", "ERC20", "BEP20"):
            raise ValueError("DEFAULT_NETWORK must be TRC20, ERC20 or BEP20")
        return v.upper()

    @field_validator("bot_token")
    @classmethod
    def validate_bot_token(cls, v: str) -> str:
        """Validate bot token format (optional)."""
        if v and not validate_bot_token(v):
            raise ValueError("Invalid BOT_TOKEN format")
        return v

    @field_validator("notify_chat_id")
    @classmethod
    def validate_chat_id(cls, v: str) -> str:
        """Validate chat ID format (optional)."""
        if v and not validate_chat_id(v):
            raise ValueError("Invalid NOTIFY_CHAT_ID format")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        if v.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError("LOG_LEVEL must be a standard logging level name")
        return v.upper()

    @model_validator(mode="after")
    def validate_limits(self) -> "Settings":
        if self.min_transaction_usd >= self.max_transaction_usd:
            raise ValueError("MIN_TRANSACTION_USD must be lower than MAX_TRANSACTION_USD")
        if self.onramp_min_usd > self.max_transaction_usd:
            raise ValueError("ONRAMP_MIN_USD must not exceed MAX_TRANSACTION_USD")
        return self


# Global settings instance
settings = Settings()

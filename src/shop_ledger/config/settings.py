"""Configuration settings for the shop ledger."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class FlatSettings(BaseSettings):
    """Flat settings read from environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Ledger store (REST)
    ledger_api_url: str = Field(
        default="http://localhost:54321", validation_alias="LEDGER_API_URL"
    )
    ledger_api_key: SecretStr = Field(..., validation_alias="LEDGER_API_KEY")
    ledger_access_token: SecretStr | None = Field(
        default=None, validation_alias="LEDGER_ACCESS_TOKEN"
    )
    ledger_timeout: float = Field(default=30.0, validation_alias="LEDGER_TIMEOUT")
    ledger_max_retries: int = Field(default=3, validation_alias="LEDGER_MAX_RETRIES")

    # Realtime change feed
    ledger_realtime_url: str = Field(
        default="ws://localhost:54321/realtime/v1/websocket",
        validation_alias="LEDGER_REALTIME_URL",
    )
    ledger_realtime_heartbeat: float = Field(
        default=30.0, validation_alias="LEDGER_REALTIME_HEARTBEAT"
    )

    # Ledger defaults used when the caller does not pass one explicitly
    default_account_id: str | None = Field(
        default=None, validation_alias="LEDGER_DEFAULT_ACCOUNT_ID"
    )
    default_payment_method: str = Field(
        default="Cash", validation_alias="LEDGER_DEFAULT_PAYMENT_METHOD"
    )
    purchase_category: str = Field(
        default="expense_purchases", validation_alias="LEDGER_PURCHASE_CATEGORY"
    )
    sale_category: str = Field(
        default="income_sales", validation_alias="LEDGER_SALE_CATEGORY"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )


@lru_cache
def get_settings() -> FlatSettings:
    """Get cached settings instance."""
    return FlatSettings()

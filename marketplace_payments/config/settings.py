"""Application settings using Pydantic for environment-based configuration."""
import math
from enum import Enum
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GatewayKind(str, Enum):
    """Authentication strategy of the configured payment gateway."""

    TOKEN = "token"  # Basic auth with a pre-shared server key
    SIGNED = "signed"  # Digest + HMAC signed requests


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Gateway Configuration
    payment_gateway: GatewayKind = Field(
        default=GatewayKind.SIGNED, description="Gateway strategy (token/signed)"
    )
    gateway_base_url: Optional[str] = Field(
        default=None, description="Override for the gateway base URL"
    )
    gateway_client_id: str = Field(default="", description="Client id issued by the gateway")
    gateway_secret_key: str = Field(
        default="", description="Secret key (signed) or server key (token)"
    )
    gateway_client_key: str = Field(
        default="", description="Public client key handed to the browser (token)"
    )
    gateway_callback_url: str = Field(
        default="", description="URL the gateway redirects the buyer back to"
    )
    gateway_is_production: bool = Field(default=False, description="Use production endpoints")
    gateway_timeout_seconds: float = Field(
        default=10.0, description="Timeout for one outbound gateway call (seconds)"
    )
    payment_currency: str = Field(default="IDR", description="Currency code sent to the gateway")
    payment_due_minutes: int = Field(
        default=60, description="Minutes the buyer has to complete the payment"
    )

    # Reconciliation
    settlement_statuses: List[str] = Field(
        default=["settlement", "capture", "success"],
        description="Gateway statuses meaning funds were captured/settled",
    )

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./marketplace_payments.db",
        description="SQLAlchemy async connection URL",
    )
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Application Configuration
    app_name: str = Field(default="marketplace-payments", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("gateway_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Gateway calls must always carry a finite, positive timeout."""
        if v <= 0 or not math.isfinite(v):
            raise ValueError("Gateway timeout must be a positive, finite number of seconds")
        return v

    @field_validator("settlement_statuses")
    @classmethod
    def normalize_statuses(cls, v: List[str]) -> List[str]:
        """Statuses are compared case-insensitively."""
        return [status.strip().lower() for status in v if status.strip()]


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Only the application edge calls this; services receive settings
    explicitly at construction.
    """
    return Settings()

# File: app/core/config.py
"""
Configuration settings for Receets.

This module defines application settings using Pydantic's BaseSettings,
which supports environment variable loading and validation.
"""

import json
import secrets
from typing import List, Optional, Union

from pydantic import AnyHttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    This class uses Pydantic's BaseSettings to load configuration from
    environment variables, with validation and type conversion.
    """

    # API settings
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Receets"

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Security
    SECRET_KEY: str = secrets.token_urlsafe(32)
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24  # 1 day

    # CORS
    BACKEND_CORS_ORIGINS: List[Union[AnyHttpUrl, str]] = []

    # Database
    DATABASE_URL: str = "sqlite:///./receets.db"
    DB_ECHO: bool = False

    # Payment gateway
    STRIPE_SECRET_KEY: Optional[str] = None
    GATEWAY_CURRENCY: str = "usd"
    GATEWAY_TIMEOUT_SECONDS: int = 30

    # Sales
    DEFAULT_RETURN_PERIOD_DAYS: int = 7
    SALE_WRITE_MAX_RETRIES: int = 3
    RECEIPT_URL_PREFIX: str = "/receipts"

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse CORS origins from environment variables."""
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
                if isinstance(parsed, list):
                    return parsed
            except json.JSONDecodeError:
                # Fallback to comma-separated format
                return [i.strip() for i in v.split(",") if i.strip()]
        return v or []

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid logging level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        return v.upper() if v.upper() in valid_levels else "INFO"

    @field_validator("SALE_WRITE_MAX_RETRIES")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        return max(1, v)

    @field_validator("DEFAULT_RETURN_PERIOD_DAYS")
    @classmethod
    def validate_return_period(cls, v: int) -> int:
        return max(1, min(v, 90))  # Same bounds as Merchant.return_period

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        extra="ignore",
    )


# Create settings instance
settings = Settings()

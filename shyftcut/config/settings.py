"""
Application Settings for Shyftcut Entitlements

Centralized configuration using Pydantic Settings with .env support.
All environment variables are validated at startup.
"""

from datetime import tzinfo
from functools import lru_cache
from typing import Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    USAGE_ENFORCEMENT controls how usage limits are applied:
    - soft: check-then-act, concurrent requests may overshoot a limit slightly
    - strict: capacity is reserved atomically before the action runs
    """

    # Supabase Configuration (auth issuer + JWKS host)
    supabase_url: str
    supabase_jwt_secret: Optional[str] = None

    # Application Settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # CORS Configuration
    frontend_url: str = "http://localhost:5173"
    allowed_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]

    # Admin support tooling
    admin_api_key: Optional[str] = None

    # Usage metering
    usage_enforcement: Literal["soft", "strict"] = "soft"
    usage_timezone: str = "UTC"

    # Retry Configuration (usage increments after a successful action)
    max_retries: int = 3
    retry_base_delay: float = 0.2
    retry_max_delay: float = 5.0

    # Database Configuration (SQLModel/SQLAlchemy)
    supabase_password: Optional[str] = None
    database_url: Optional[str] = None
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_echo: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_usage_settings(self) -> "Settings":
        """Reject a timezone that cannot be resolved or a nonsensical retry policy."""
        try:
            ZoneInfo(self.usage_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(
                f"USAGE_TIMEZONE '{self.usage_timezone}' is not a known IANA timezone"
            )

        if self.max_retries < 1:
            raise ValueError("MAX_RETRIES must be at least 1")

        return self

    @property
    def usage_tzinfo(self) -> tzinfo:
        """Timezone used to bucket daily and monthly usage counters."""
        return ZoneInfo(self.usage_timezone)

    @property
    def strict_enforcement(self) -> bool:
        return self.usage_enforcement == "strict"

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export for direct import
settings = get_settings()

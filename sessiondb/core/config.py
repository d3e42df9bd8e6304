"""
Application configuration using Pydantic Settings.

Configuration values can be set via environment variables or .env file.
"""

from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOCK_TIMEOUT_POLICIES = ("fail", "proceed")
LOCK_BACKENDS = ("auto", "mysql", "postgresql", "table")


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application settings
    APP_NAME: str = "sessiondb"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    DEV_MODE: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8500

    # Database
    DATABASE_URL: str = "sqlite:///./sessions.db"
    # Create missing tables when the web app starts
    AUTO_CREATE_SCHEMA: bool = True

    # Session storage
    SESSION_TRACK_IP: bool = False
    SESSION_TRACK_USER_AGENT: bool = False
    SESSION_LOCK_WAIT_SECONDS: float = 50
    SESSION_LOCK_TIMEOUT_POLICY: str = "fail"
    SESSION_LOCK_BACKEND: str = "auto"
    # Only used by the table lock backend: abandoned lock rows expire after this
    SESSION_LOCK_TTL_SECONDS: int = 300
    SESSION_MAX_LIFETIME_SECONDS: int = 86400
    SESSION_CODEC: str = "json"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    LOG_FILE: Optional[str] = None

    # Rate limiting configuration
    RATE_LIMIT_ENABLED: bool = True
    # Take the client address from X-Forwarded-For (only behind a trusted proxy)
    TRUST_FORWARDED_FOR: bool = False
    rate_limit_admin_endpoints: str = "100/minute"
    rate_limit_maintenance_endpoints: str = "10/minute"

    # Optional Redis URL for distributed rate limiting
    # When set, rate limits will be shared across multiple instances
    redis_url: Optional[str] = None

    @field_validator("SESSION_LOCK_TIMEOUT_POLICY", "SESSION_LOCK_BACKEND", "SESSION_CODEC")
    @classmethod
    def normalize_choice(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("SESSION_LOCK_TIMEOUT_POLICY")
    @classmethod
    def validate_lock_policy(cls, value: str) -> str:
        if value not in LOCK_TIMEOUT_POLICIES:
            raise ValueError(
                f"SESSION_LOCK_TIMEOUT_POLICY must be one of {LOCK_TIMEOUT_POLICIES}, got {value!r}"
            )
        return value

    @field_validator("SESSION_LOCK_BACKEND")
    @classmethod
    def validate_lock_backend(cls, value: str) -> str:
        if value not in LOCK_BACKENDS:
            raise ValueError(
                f"SESSION_LOCK_BACKEND must be one of {LOCK_BACKENDS}, got {value!r}"
            )
        return value

    @field_validator("SESSION_LOCK_WAIT_SECONDS")
    @classmethod
    def validate_lock_wait(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("SESSION_LOCK_WAIT_SECONDS must be positive")
        return value

    @field_validator("SESSION_LOCK_TTL_SECONDS", "SESSION_MAX_LIFETIME_SECONDS")
    @classmethod
    def validate_positive_seconds(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("value must be a positive number of seconds")
        return value


# Global settings instance
settings = Settings()

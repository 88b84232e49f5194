"""Base configuration settings."""

import os
import secrets
import warnings
from typing import Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "PassKey Auth"
    app_version: str = "1.0.0"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    log_format: str = "console"

    # API
    api_prefix: str = "/api"
    allowed_origins: list[str] = ["*"]

    # Storage
    database_url: str = "sqlite+aiosqlite:///./passkey_auth.db"
    storage_backend: Literal["database", "memory"] = "database"

    # Sessions
    secret_key: str = Field(
        default_factory=lambda: os.getenv("SECRET_KEY", ""),
        description="Session signing key - MUST be set in production",
    )
    session_cookie_name: str = "passkey_session"
    session_max_age_seconds: int = 60 * 60 * 24
    session_https_only: bool = False

    # Password hashing
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # Challenge lifecycle
    challenge_sweep_interval_seconds: float = 120.0

    # One-time codes are echoed back to the caller outside production
    expose_codes: bool = True

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v: str, info: ValidationInfo) -> str:
        """Validate that the session key is not a default value in production."""
        if not v or "change-me" in v.lower():
            env = os.getenv("ENVIRONMENT", "development").lower()
            if env in ["production", "staging"]:
                raise ValueError(
                    f"{info.field_name} must be set to a secure value in {env}"
                )
            secure_key = secrets.token_urlsafe(64)
            warnings.warn(
                f"SECURITY WARNING: {info.field_name} is not set. "
                "Generated a temporary key; sessions will not survive a restart.",
                stacklevel=2,
            )
            return secure_key
        return v

    @property
    def is_production(self) -> bool:
        """Check whether the service runs in a production environment."""
        return self.environment.lower() in ("production", "staging")

    @property
    def should_expose_codes(self) -> bool:
        """Return one-time codes in responses only outside production."""
        return self.expose_codes and not self.is_production

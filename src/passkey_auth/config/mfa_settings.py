"""MFA configuration settings.

This module provides environment-based configuration for TOTP, one-time
verification codes and recovery codes.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MFASettings(BaseSettings):
    """MFA configuration from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MFA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # TOTP
    issuer_name: str = Field(default="PassKey Auth")
    totp_digits: int = Field(default=6)
    totp_interval: int = Field(default=30)
    totp_window: int = Field(default=1)

    # Email / SMS codes
    verification_code_length: int = Field(default=6)
    verification_code_ttl_minutes: int = Field(default=10)

    # Recovery codes
    recovery_codes_count: int = Field(default=10)
    recovery_codes_low_watermark: int = Field(default=3)

    # QR code settings
    qr_box_size: int = Field(default=10)
    qr_border: int = Field(default=4)


def get_mfa_settings() -> MFASettings:
    """Build MFA settings from the current environment."""
    return MFASettings()

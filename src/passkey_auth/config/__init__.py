"""Configuration module for the passkey authentication service."""

from passkey_auth.config.base import Settings
from passkey_auth.config.loader import get_settings

__all__ = ["Settings", "get_settings"]

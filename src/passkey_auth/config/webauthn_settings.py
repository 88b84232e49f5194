"""WebAuthn configuration settings management.

This module handles WebAuthn relying-party configuration loading from
environment variables, including the strict/lenient verification policy.
"""

import os
import threading
from typing import List, Optional
from urllib.parse import urlparse

_FALSE_VALUES = {"", "0", "false", "off", "no"}


def _env_flag(name: str, default: bool) -> bool:
    """Read a boolean flag from the environment."""
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() not in _FALSE_VALUES


class WebAuthnSettings:
    """Manages WebAuthn configuration with environment variable support."""

    def __init__(self) -> None:
        """Initialize WebAuthn settings from environment."""
        self._load_from_environment()

    def _load_from_environment(self) -> None:
        """Load configuration from environment variables."""
        # Basic RP settings
        self.rp_name = os.getenv("WEBAUTHN_RP_NAME", "PassKey Auth")
        # Without a fixed RP ID the request host (minus port) is used
        self.rp_id: Optional[str] = os.getenv("WEBAUTHN_RP_ID") or None

        # Origins accepted in addition to the request's own origin
        origins_str = os.getenv("WEBAUTHN_RP_ORIGINS", "")
        self.rp_origins = [
            origin.strip().rstrip("/") for origin in origins_str.split(",") if origin.strip()
        ]

        # Authentication settings
        self.user_verification = os.getenv("WEBAUTHN_USER_VERIFICATION", "preferred")
        self.authenticator_attachment = os.getenv(
            "WEBAUTHN_AUTHENTICATOR_ATTACHMENT", "platform"
        )
        self.attestation_conveyance = "none"

        # Client-side timeout (advisory, in milliseconds)
        self.timeout_ms = int(os.getenv("WEBAUTHN_TIMEOUT_MS", "60000"))

        # Algorithm preferences
        self.public_key_algorithms = self._get_algorithms()

        # Challenge settings
        self.challenge_size = int(os.getenv("WEBAUTHN_CHALLENGE_SIZE", "32"))
        self.challenge_timeout_seconds = int(
            os.getenv("WEBAUTHN_CHALLENGE_TIMEOUT", "300")
        )

        # Verification policy; lenient mode only logs these failures
        self.enforce_origin = _env_flag("WEBAUTHN_ENFORCE_ORIGIN", True)
        self.require_user_verification = _env_flag(
            "WEBAUTHN_REQUIRE_USER_VERIFICATION", True
        )
        self.enforce_sign_count = _env_flag("WEBAUTHN_ENFORCE_SIGN_COUNT", True)

        if self.challenge_size < 32:
            raise ValueError("WEBAUTHN_CHALLENGE_SIZE must be at least 32 bytes")

    def _get_algorithms(self) -> List[int]:
        """Get supported public key algorithms."""
        # ES256, RS256
        default_algorithms = [-7, -257]

        algorithms_str = os.getenv("WEBAUTHN_ALGORITHMS")
        if algorithms_str:
            try:
                return [int(alg.strip()) for alg in algorithms_str.split(",")]
            except ValueError:
                pass

        return default_algorithms

    def resolve_rp_id(self, host: str) -> str:
        """Return the RP ID for a request host.

        Args:
            host: Request host, possibly with a port

        Returns:
            The configured RP ID, or the host without its port
        """
        if self.rp_id:
            return self.rp_id
        domain = host.split(":", 1)[0].strip().lower()
        return domain or "localhost"

    def is_origin_allowed(self, origin: Optional[str], expected_origin: str) -> bool:
        """Check if an origin is allowed for WebAuthn operations.

        Args:
            origin: Origin reported in the client data
            expected_origin: Origin computed from the current request

        Returns:
            True if origin is allowed
        """
        if not origin:
            return False

        origin = origin.rstrip("/").lower()
        if origin == expected_origin.rstrip("/").lower():
            return True

        for allowed_origin in self.rp_origins:
            if origin == allowed_origin.lower():
                return True

        # Subdomains of a fixed RP ID are acceptable
        if self.rp_id:
            hostname = urlparse(origin).hostname or ""
            if hostname == self.rp_id or hostname.endswith(f".{self.rp_id}"):
                return True

        return False


# Thread-safe singleton for WebAuthn settings
class WebAuthnSettingsSingleton:
    """Thread-safe singleton for WebAuthn settings."""

    _instance = None
    _lock = threading.Lock()

    def __new__(cls) -> "WebAuthnSettingsSingleton":
        """Create or return the singleton instance of WebAuthnSettingsSingleton."""
        if cls._instance is None:
            with cls._lock:
                # Double-check locking pattern
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._settings = WebAuthnSettings()
        return cls._instance

    def get_settings(self) -> WebAuthnSettings:
        """Get the WebAuthn settings instance."""
        return self._settings

    def reload_settings(self) -> WebAuthnSettings:
        """Reload WebAuthn settings from environment."""
        with self._lock:
            self._settings = WebAuthnSettings()  # pylint: disable=attribute-defined-outside-init
        return self._settings


def get_webauthn_settings() -> WebAuthnSettings:
    """Get the thread-safe WebAuthn settings instance."""
    singleton = WebAuthnSettingsSingleton()
    return singleton.get_settings()


def reload_webauthn_settings() -> WebAuthnSettings:
    """Reload WebAuthn settings from environment."""
    singleton = WebAuthnSettingsSingleton()
    return singleton.reload_settings()

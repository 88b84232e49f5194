"""Logging configuration for the passkey authentication service."""

import logging
import sys
from typing import Any, Dict, Optional

import structlog
from structlog.stdlib import BoundLogger, LoggerFactory

from passkey_auth.config import get_settings


def setup_logging() -> None:
    """Configure structured logging for the application."""
    settings = get_settings()

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
    )

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            render_processor(),
        ],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=BoundLogger,
        cache_logger_on_first_use=True,
    )


def render_processor() -> Any:
    """Choose renderer based on environment."""
    settings = get_settings()

    if settings.log_format == "json":
        return structlog.processors.JSONRenderer()
    else:
        return structlog.dev.ConsoleRenderer()


def get_logger(name: str) -> BoundLogger:
    """Get a configured logger instance."""
    bound_logger: BoundLogger = structlog.get_logger(name)
    return bound_logger


def mask(value: Optional[str], visible: int = 3) -> Optional[str]:
    """Mask an email address or phone number for log output."""
    if not value:
        return value
    if "@" in value:
        local, _, domain = value.partition("@")
        return f"{local[:1]}***@{domain}"
    return value[:visible] + "*" * max(len(value) - visible, 0)


class AuditLogger:
    """Logger for authentication audit trails."""

    def __init__(self) -> None:
        """Initialize audit logger."""
        self.logger = get_logger("audit")

    def log_authentication(
        self,
        user_id: Optional[int],
        action: str,
        success: bool,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log authentication events.

        Args:
            user_id: Affected user, ``None`` for anonymous ceremonies
            action: Ceremony or MFA operation name
            success: Whether the operation completed
            details: Extra context; must never contain secrets
        """
        self.logger.info(
            "authentication_event",
            user_id=user_id,
            action=action,
            success=success,
            details=details or {},
        )

    def log_mfa_change(self, user_id: int, action: str, mfa_type: Optional[str]) -> None:
        """Log changes to a user's MFA configuration."""
        self.logger.info(
            "mfa_configuration_changed",
            user_id=user_id,
            action=action,
            mfa_type=mfa_type,
        )


# Global logger instances
audit_logger = AuditLogger()

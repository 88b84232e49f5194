"""Password hashing helpers."""

from functools import lru_cache
from typing import Optional

import bcrypt

from passkey_auth.config import get_settings
from passkey_auth.utils.logging import get_logger

logger = get_logger(__name__)


def hash_password(password: str) -> str:
    """Hash password using bcrypt."""
    salt = bcrypt.gensalt(rounds=get_settings().bcrypt_rounds)
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


@lru_cache(maxsize=1)
def _dummy_hash() -> bytes:
    return bcrypt.hashpw(b"passkey-auth-dummy", bcrypt.gensalt(rounds=get_settings().bcrypt_rounds))


def verify_password(password: str, hashed: Optional[str]) -> bool:
    """Check a password against a stored bcrypt hash.

    A missing hash is still compared against a dummy value so that unknown
    accounts take as long to reject as wrong passwords.
    """
    if not hashed:
        bcrypt.checkpw(password.encode("utf-8"), _dummy_hash())
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError as e:
        logger.error("password_hash_unreadable", error=str(e))
        return False

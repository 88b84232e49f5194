"""Database models for the passkey authentication service."""

from passkey_auth.models.auth import (
    Challenge,
    ChallengeType,
    Credential,
    MFAType,
    RecoveryCode,
    User,
)
from passkey_auth.models.base import Base

__all__ = [
    "Base",
    "Challenge",
    "ChallengeType",
    "Credential",
    "MFAType",
    "RecoveryCode",
    "User",
]

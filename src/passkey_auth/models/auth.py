"""Authentication models.

Users own their passkey credentials, ceremony challenges and MFA recovery
codes; all child rows are removed together with the user.
"""

from enum import Enum as PyEnum
from typing import Any, Dict

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from passkey_auth.models.base import BaseModel


class MFAType(str, PyEnum):
    """Second factor kinds."""

    TOTP = "totp"
    EMAIL = "email"
    SMS = "sms"


class ChallengeType(str, PyEnum):
    """Ceremony a challenge was issued for."""

    REGISTRATION = "registration"
    AUTHENTICATION = "authentication"
    QRCODE = "qrcode"


class User(BaseModel):
    """Identity record."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(255), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    display_name = Column(String(255))
    password_hash = Column(String(255))
    registered = Column(Boolean, default=False, nullable=False)

    # MFA
    mfa_enabled = Column(Boolean, default=False, nullable=False)
    mfa_type = Column(String(16))
    mfa_secret = Column(String(64))
    phone = Column(String(50))
    verification_code = Column(String(16))
    verification_expiry = Column(DateTime)

    last_login = Column(DateTime)

    credentials = relationship(
        "Credential", back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )
    challenges = relationship(
        "Challenge", back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )
    recovery_codes = relationship(
        "RecoveryCode", back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )

    def to_public_dict(self) -> Dict[str, Any]:
        """Serialize the fields that may leave the server."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "displayName": self.display_name,
            "registered": bool(self.registered),
            "mfaEnabled": bool(self.mfa_enabled),
            "mfaType": self.mfa_type,
            "lastLogin": self.last_login.isoformat() if self.last_login else None,
        }

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<User(id={self.id}, username={self.username}, registered={self.registered})>"


class Credential(BaseModel):
    """WebAuthn credential bound to one user."""

    __tablename__ = "credentials"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    credential_id = Column(Text, unique=True, nullable=False)
    # base64url CBOR-encoded COSE key
    public_key = Column(Text, nullable=False)
    counter = Column(Integer, default=0, nullable=False)
    transports: Any = Column(JSON, default=list)

    user = relationship("User", back_populates="credentials")

    __table_args__ = (Index("idx_credential_credential_id", "credential_id"),)

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<Credential(user_id={self.user_id}, counter={self.counter})>"


class Challenge(BaseModel):
    """Single-use, time-bounded ceremony nonce."""

    __tablename__ = "challenges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True
    )
    challenge = Column(String(255), nullable=False)
    type = Column(String(32), nullable=False)
    qr_code = Column(Text)
    # Set once a signed-in device of the bound user approves a QR login
    approved = Column(Boolean, default=False, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)

    user = relationship("User", back_populates="challenges")

    @property
    def is_anonymous(self) -> bool:
        """Check whether the challenge is bound to no user."""
        return self.user_id is None

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<Challenge(id={self.id}, type={self.type}, user_id={self.user_id})>"


class RecoveryCode(BaseModel):
    """Single-use MFA recovery code."""

    __tablename__ = "recovery_codes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # SHA-256 hex digest of the issued code
    code = Column(String(64), nullable=False, index=True)
    used = Column(Boolean, default=False, nullable=False)
    used_at = Column(DateTime)

    user = relationship("User", back_populates="recovery_codes")

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<RecoveryCode(user_id={self.user_id}, used={'Yes' if self.used else 'No'})>"

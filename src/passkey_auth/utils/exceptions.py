"""Custom exceptions for the passkey authentication service.

Every exception carries a stable ``code`` and the HTTP status the API layer
maps it to. ``extra`` holds additional, non-secret fields that are merged
into the error payload.
"""

from typing import Any, Dict, Optional


class PasskeyAuthException(Exception):
    """Base exception for all passkey authentication errors."""

    status_code: int = 400
    default_code: str = "AUTH_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        """Initialize exception.

        Args:
            message: Error message
            code: Optional error code, defaults to the class code
            extra: Optional additional payload fields
        """
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        """Build the error payload returned to clients."""
        return {"message": self.message, "code": self.code, **self.extra}


class InvalidInputError(PasskeyAuthException):
    """Raised when a request body or field is malformed."""

    default_code = "INVALID_INPUT"


class NotFoundError(PasskeyAuthException):
    """Raised when a user, credential or challenge does not exist."""

    status_code = 404
    default_code = "NOT_FOUND"


class AlreadyRegisteredError(PasskeyAuthException):
    """Raised when registration targets an existing registered account."""

    status_code = 409
    default_code = "ALREADY_REGISTERED"


class AuthenticationException(PasskeyAuthException):
    """Base exception for authentication errors."""

    status_code = 401
    default_code = "AUTHENTICATION_FAILED"


class InvalidCredentialsError(AuthenticationException):
    """Raised when a username/password pair does not match."""

    def __init__(self, message: str = "Invalid username or password"):
        """Initialize InvalidCredentialsError."""
        super().__init__(message, "INVALID_CREDENTIALS")


class NotAuthenticatedError(AuthenticationException):
    """Raised when an operation needs an established session."""

    def __init__(self, message: str = "Not authenticated"):
        """Initialize NotAuthenticatedError."""
        super().__init__(message, "NOT_AUTHENTICATED")


class CeremonyError(PasskeyAuthException):
    """Base exception for WebAuthn and QR ceremony failures.

    The client has to restart the ceremony; a stale challenge cannot be
    resurrected.
    """

    default_code = "CEREMONY_FAILED"


class NoActiveChallengeError(CeremonyError):
    """Raised when no unexpired challenge exists for the ceremony."""

    def __init__(self, message: str = "No active challenge found"):
        """Initialize NoActiveChallengeError."""
        super().__init__(message, "NO_ACTIVE_CHALLENGE")


class ChallengeMismatchError(CeremonyError):
    """Raised when the signed challenge matches no active challenge."""

    def __init__(
        self,
        client_challenge: Optional[str],
        server_challenge: Optional[str],
        expected_challenge: Optional[str] = None,
    ):
        """Initialize ChallengeMismatchError with both compared values."""
        super().__init__(
            "Challenge mismatch",
            "CHALLENGE_MISMATCH",
            extra={
                "details": {
                    "clientChallenge": client_challenge,
                    "serverChallenge": server_challenge,
                    "expectedChallenge": expected_challenge or "not provided",
                }
            },
        )
        self.client_challenge = client_challenge
        self.server_challenge = server_challenge
        self.expected_challenge = expected_challenge


class ChallengeExpiredError(CeremonyError):
    """Raised when a challenge looked up by id is past its expiry."""

    def __init__(self, message: str = "Challenge expired"):
        """Initialize ChallengeExpiredError."""
        super().__init__(message, "CHALLENGE_EXPIRED")


class OriginMismatchError(CeremonyError):
    """Raised in strict mode when the client data origin is not accepted."""

    def __init__(self, origin: Optional[str], expected_origin: str):
        """Initialize OriginMismatchError."""
        super().__init__(
            "Origin mismatch",
            "ORIGIN_MISMATCH",
            extra={"details": {"origin": origin, "expectedOrigin": expected_origin}},
        )


class RpIdMismatchError(CeremonyError):
    """Raised when the authenticator data RP-ID hash is for another domain."""

    def __init__(self, rp_id: str):
        """Initialize RpIdMismatchError."""
        super().__init__(
            f"RP ID hash verification failed for domain: {rp_id}", "RP_ID_MISMATCH"
        )


class UserVerificationError(CeremonyError):
    """Raised in strict mode when the user-verified flag is absent."""

    def __init__(self, message: str = "User was not verified by the authenticator"):
        """Initialize UserVerificationError."""
        super().__init__(message, "USER_NOT_VERIFIED")


class SignCountError(CeremonyError):
    """Raised in strict mode when the signature counter did not increase."""

    def __init__(self, stored: int, received: int):
        """Initialize SignCountError."""
        super().__init__(
            "Signature counter did not increase; the credential may be cloned",
            "SIGN_COUNT_REGRESSION",
            extra={"details": {"storedCounter": stored, "receivedCounter": received}},
        )


class SignatureVerificationError(CeremonyError):
    """Raised when an assertion signature does not verify."""

    def __init__(self, message: str = "Signature verification failed"):
        """Initialize SignatureVerificationError."""
        super().__init__(message, "INVALID_SIGNATURE")


class CredentialOwnershipError(CeremonyError):
    """Raised when a credential belongs to a different user."""

    def __init__(self, message: str = "Credential does not belong to user"):
        """Initialize CredentialOwnershipError."""
        super().__init__(message, "CREDENTIAL_OWNERSHIP")


class QRAuthenticationRequiredError(CeremonyError):
    """Raised when an anonymous QR code is verified before being claimed."""

    def __init__(
        self, message: str = "Anonymous QR code requires valid session to scan"
    ):
        """Initialize QRAuthenticationRequiredError."""
        super().__init__(
            message,
            "QR_AUTHENTICATION_REQUIRED",
            extra={"verified": False, "requiresAuthentication": True},
        )


class MFAException(AuthenticationException):
    """Base exception for MFA-related errors."""


class InvalidMFACodeError(MFAException):
    """Raised when MFA code is invalid."""

    def __init__(self, message: str = "Invalid MFA code"):
        """Initialize InvalidMFACodeError."""
        super().__init__(message, "INVALID_MFA_CODE")


class InvalidRecoveryCodeError(MFAException):
    """Raised when a recovery code is unknown or already used."""

    def __init__(self, message: str = "Invalid recovery code"):
        """Initialize InvalidRecoveryCodeError."""
        super().__init__(message, "INVALID_RECOVERY_CODE")


class MFANotConfiguredError(MFAException):
    """Raised when MFA method is not configured."""

    status_code = 400

    def __init__(self, message: str = "MFA method not configured"):
        """Initialize MFANotConfiguredError."""
        super().__init__(message, "MFA_NOT_CONFIGURED")


class MFAAlreadyEnabledError(MFAException):
    """Raised when setup is attempted while MFA is active."""

    status_code = 409

    def __init__(self, message: str = "MFA is already enabled"):
        """Initialize MFAAlreadyEnabledError."""
        super().__init__(message, "MFA_ALREADY_ENABLED")


class StorageError(PasskeyAuthException):
    """Raised when the storage layer fails."""

    status_code = 500
    default_code = "STORAGE_ERROR"

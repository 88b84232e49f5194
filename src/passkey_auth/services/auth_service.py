"""Authentication orchestrator.

Sequences the ceremony engine, challenge lifecycle, MFA engine and storage
into the supported ceremonies: passkey registration and login, password
registration and login with an optional second factor, and QR cross-device
login.

Every ceremony verifies first, then consumes its challenge, then persists.
All writes of one request share a unit of work, so a failure leaves stored
state untouched.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from passkey_auth.config.webauthn_settings import get_webauthn_settings
from passkey_auth.models import ChallengeType, MFAType, User
from passkey_auth.services.challenge_service import ChallengeService
from passkey_auth.services.mfa_service import MFAService
from passkey_auth.services.webauthn_service import (
    CLIENT_DATA_CREATE,
    CLIENT_DATA_GET,
    WebAuthnService,
)
from passkey_auth.storage.base import AuthStorage
from passkey_auth.utils import encoding
from passkey_auth.utils.exceptions import (
    AlreadyRegisteredError,
    AuthenticationException,
    CeremonyError,
    ChallengeExpiredError,
    CredentialOwnershipError,
    InvalidCredentialsError,
    InvalidInputError,
    NotFoundError,
    QRAuthenticationRequiredError,
)
from passkey_auth.utils.logging import audit_logger, get_logger
from passkey_auth.utils.passwords import hash_password, verify_password
from passkey_auth.utils.timeutils import is_expired, utcnow

logger = get_logger(__name__)

MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 8


@dataclass
class PasswordLoginResult:
    """Outcome of the password step of a login."""

    user: User
    requires_mfa: bool = False
    mfa_type: Optional[str] = None
    code: Optional[str] = None

    def to_dict(self, expose_code: bool = False) -> Dict[str, Any]:
        """Build the response payload."""
        if not self.requires_mfa:
            return {"user": self.user.to_public_dict(), "message": "Login successful"}
        payload: Dict[str, Any] = {
            "requiresMfa": True,
            "mfaType": self.mfa_type,
            "userId": self.user.id,
        }
        if expose_code and self.code:
            payload["code"] = self.code
        return payload


class AuthService:
    """Runs authentication ceremonies within one unit of work."""

    def __init__(
        self,
        storage: AuthStorage,
        webauthn: Optional[WebAuthnService] = None,
        mfa: Optional[MFAService] = None,
    ):
        """Initialize authentication service.

        Args:
            storage: Request-scoped storage
            webauthn: Ceremony engine
            mfa: MFA engine sharing the same storage
        """
        self.storage = storage
        self.webauthn = webauthn or WebAuthnService(get_webauthn_settings())
        self.mfa = mfa or MFAService(storage)
        self.challenges = ChallengeService(
            storage, self.webauthn.settings.challenge_timeout_seconds
        )

    # Users

    async def get_user(self, user_id: int) -> User:
        """Fetch a user or raise :class:`NotFoundError`."""
        user = await self.storage.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def _get_user_by_email(self, email: str) -> User:
        user = await self.storage.get_user_by_email(email)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def check_user(self, email: str) -> bool:
        """Check whether a registered account exists for an email address."""
        user = await self.storage.get_user_by_email(email)
        return bool(user and user.registered)

    async def _unique_username(self, base: str) -> str:
        """Derive an unused username from a base value."""
        base = base or "user"
        candidate = base
        suffix = 1
        while await self.storage.get_user_by_username(candidate) is not None:
            suffix += 1
            candidate = f"{base}{suffix}"
        return candidate

    async def _record_login(self, user: User) -> User:
        updated = await self.storage.update_user(user.id, {"last_login": utcnow()})
        return updated or user

    # Passkey registration

    async def start_registration(self, email: str, rp_id: str) -> Dict[str, Any]:
        """Begin passkey registration, creating the account on first use."""
        user = await self.storage.get_user_by_email(email)
        if user is not None and user.registered:
            raise AlreadyRegisteredError("User already registered")

        if user is None:
            username = await self._unique_username(email.split("@", 1)[0])
            user = await self.storage.create_user({"email": email, "username": username})
            logger.info("user_created", user_id=user.id)

        challenge = self.webauthn.generate_challenge()
        await self.challenges.issue(user.id, ChallengeType.REGISTRATION, challenge)

        return self.webauthn.build_registration_options(
            user_id=user.id,
            username=user.username,
            email=user.email,
            challenge=challenge,
            rp_id=rp_id,
        )

    async def complete_registration(
        self,
        email: str,
        credential: Dict[str, Any],
        expected_origin: str,
        rp_id: str,
        expected_challenge: Optional[str] = None,
    ) -> User:
        """Verify a registration response and store the new credential."""
        user = await self._get_user_by_email(email)
        response = credential.get("response") or {}

        try:
            client_data = self.webauthn.parse_client_data(
                response.get("clientDataJSON", ""), CLIENT_DATA_CREATE
            )
            challenge = await self.challenges.resolve(
                user.id, ChallengeType.REGISTRATION, client_data.challenge, expected_challenge
            )
            verification = self.webauthn.verify_registration_response(
                credential, client_data, expected_origin, rp_id
            )
            existing = await self.storage.get_credential_by_credential_id(
                verification.credential_id
            )
            if existing is not None:
                raise AlreadyRegisteredError("Credential already registered")
            await self.challenges.consume(challenge)
        except (CeremonyError, InvalidInputError, AlreadyRegisteredError) as e:
            audit_logger.log_authentication(
                user.id, "passkey_registration", False, {"code": e.code}
            )
            raise

        await self.storage.create_credential(
            {
                "user_id": user.id,
                "credential_id": verification.credential_id,
                "public_key": verification.public_key,
                "counter": verification.counter,
                "transports": verification.transports,
            }
        )
        updated = await self.storage.update_user(
            user.id, {"registered": True, "last_login": utcnow()}
        )
        audit_logger.log_authentication(user.id, "passkey_registration", True)
        return updated or user

    # Passkey login

    async def start_login(self, email: str, rp_id: str) -> Dict[str, Any]:
        """Begin passkey login for a registered user."""
        user = await self._get_user_by_email(email)
        if not user.registered:
            raise InvalidInputError(
                "User not registered, please register first", "USER_NOT_REGISTERED"
            )

        credentials = await self.storage.list_credentials_by_user(user.id)
        if not credentials:
            raise InvalidInputError("No credentials found for user", "NO_CREDENTIALS")

        challenge = self.webauthn.generate_challenge()
        await self.challenges.issue(user.id, ChallengeType.AUTHENTICATION, challenge)

        return self.webauthn.build_authentication_options(
            challenge=challenge,
            rp_id=rp_id,
            allowed_credential_ids=[c.credential_id for c in credentials],
        )

    async def complete_login(
        self,
        email: str,
        credential: Dict[str, Any],
        expected_origin: str,
        rp_id: str,
        expected_challenge: Optional[str] = None,
    ) -> User:
        """Verify an assertion and sign the user in."""
        user = await self._get_user_by_email(email)
        response = credential.get("response") or {}

        raw_id = credential.get("rawId") or credential.get("id")
        if not raw_id:
            raise InvalidInputError("Credential id is required")
        stored = await self.storage.get_credential_by_credential_id(
            encoding.normalize(raw_id)
        )
        if stored is None:
            raise NotFoundError("Credential not found")

        try:
            if stored.user_id != user.id:
                raise CredentialOwnershipError()

            user_handle = response.get("userHandle")
            if user_handle and encoding.normalize(user_handle) != self.webauthn.user_handle(
                user.id
            ):
                raise CredentialOwnershipError("User handle does not match user")

            client_data = self.webauthn.parse_client_data(
                response.get("clientDataJSON", ""), CLIENT_DATA_GET
            )
            challenge = await self.challenges.resolve(
                user.id,
                ChallengeType.AUTHENTICATION,
                client_data.challenge,
                expected_challenge,
            )
            verification = self.webauthn.verify_authentication_response(
                credential,
                client_data,
                expected_origin,
                rp_id,
                public_key=stored.public_key,
                stored_counter=stored.counter or 0,
            )
            await self.challenges.consume(challenge)
        except (CeremonyError, InvalidInputError) as e:
            audit_logger.log_authentication(user.id, "passkey_login", False, {"code": e.code})
            raise

        await self.storage.update_credential(stored.id, {"counter": verification.new_counter})
        user = await self._record_login(user)
        audit_logger.log_authentication(
            user.id,
            "passkey_login",
            True,
            {"user_verified": verification.user_verified},
        )
        return user

    # Password accounts

    async def register_with_password(
        self,
        username: str,
        email: str,
        password: str,
        display_name: Optional[str] = None,
    ) -> User:
        """Create a registered account protected by a password."""
        if len(username or "") < MIN_USERNAME_LENGTH:
            raise InvalidInputError(
                f"Username must be at least {MIN_USERNAME_LENGTH} characters"
            )
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise InvalidInputError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )

        if await self.storage.get_user_by_username(username) is not None:
            raise AlreadyRegisteredError("Username already exists", "USERNAME_EXISTS")
        if await self.storage.get_user_by_email(email) is not None:
            raise AlreadyRegisteredError("Email already exists", "EMAIL_EXISTS")

        user = await self.storage.create_user(
            {
                "username": username,
                "email": email,
                "display_name": display_name,
                "password_hash": hash_password(password),
                "registered": True,
                "last_login": utcnow(),
            }
        )
        audit_logger.log_authentication(user.id, "password_registration", True)
        return user

    async def login_with_password(self, username: str, password: str) -> PasswordLoginResult:
        """Check a password; users with MFA get a pending second step."""
        user = await self.storage.get_user_by_username(username)

        if user is not None and not user.password_hash:
            raise AuthenticationException(
                "This account requires passkey authentication", "PASSKEY_REQUIRED"
            )

        password_ok = verify_password(password, user.password_hash if user else None)
        if user is None or not password_ok:
            audit_logger.log_authentication(
                user.id if user else None, "password_login", False
            )
            raise InvalidCredentialsError()

        if user.mfa_enabled and user.mfa_type:
            code = await self.mfa.issue_login_code(user)
            audit_logger.log_authentication(
                user.id, "password_login", True, {"mfa_pending": True}
            )
            return PasswordLoginResult(
                user=user, requires_mfa=True, mfa_type=MFAType(user.mfa_type).value, code=code
            )

        user = await self._record_login(user)
        audit_logger.log_authentication(user.id, "password_login", True)
        return PasswordLoginResult(user=user)

    async def complete_mfa_login(self, user_id: int, code: str) -> User:
        """Finish a password login with the second factor."""
        user = await self.get_user(user_id)
        await self.mfa.authenticate(user, code)
        return await self._record_login(user)

    # QR cross-device login

    async def start_qr_login(self, email: Optional[str] = None) -> Dict[str, Any]:
        """Issue a QR login challenge, anonymous when no known user is named."""
        user_id = None
        if email:
            user = await self.storage.get_user_by_email(email)
            if user is not None:
                if not user.registered:
                    raise InvalidInputError(
                        "User not registered, please register first",
                        "USER_NOT_REGISTERED",
                    )
                user_id = user.id
            else:
                logger.info("qr_login_for_unknown_email_is_anonymous")

        challenge = self.webauthn.generate_challenge()
        payload = f"{challenge}:{user_id if user_id is not None else 'anonymous'}"
        record = await self.challenges.issue(
            user_id, ChallengeType.QRCODE, challenge, qr_code=payload
        )

        return {
            "id": str(record.id),
            "qrCode": payload,
            "expiresAt": record.expires_at.isoformat() + "Z",
        }

    async def _load_qr_challenge(self, challenge_id: str) -> Any:
        try:
            pk = int(str(challenge_id).strip())
        except ValueError as e:
            raise InvalidInputError("Invalid challenge id") from e

        challenge = await self.storage.get_challenge(pk)
        if challenge is None:
            raise NotFoundError("Challenge not found")

        if is_expired(challenge.expires_at):
            await self.storage.delete_challenge(challenge.id)
            # The cleanup must survive the error response
            await self.storage.commit()
            raise ChallengeExpiredError()

        if challenge.type != ChallengeType.QRCODE.value:
            raise CeremonyError("Invalid challenge type", "INVALID_CHALLENGE_TYPE")
        return challenge

    async def verify_qr_login(self, challenge_id: str) -> User:
        """Complete a QR login once a signed-in device has approved it."""
        challenge = await self._load_qr_challenge(challenge_id)

        if not challenge.approved:
            audit_logger.log_authentication(
                challenge.user_id,
                "qr_login",
                False,
                {"reason": "anonymous_unclaimed" if challenge.is_anonymous else "unapproved"},
            )
            if challenge.is_anonymous:
                raise QRAuthenticationRequiredError()
            raise QRAuthenticationRequiredError(
                "QR code must be approved from a signed-in device"
            )

        user = await self.storage.get_user(challenge.user_id)
        if user is None:
            raise NotFoundError("User associated with QR code not found")

        await self.challenges.consume(challenge)
        user = await self._record_login(user)
        audit_logger.log_authentication(user.id, "qr_login", True)
        return user

    async def claim_qr_login(self, challenge_id: str, user_id: int) -> Dict[str, Any]:
        """Approve a QR challenge from a device signed in as ``user_id``.

        Anonymous codes are bound to the approving user. Codes issued for an
        email can only be approved by that same user.
        """
        user = await self.get_user(user_id)
        challenge = await self._load_qr_challenge(challenge_id)

        if challenge.approved:
            raise CeremonyError("QR code is already claimed", "QR_ALREADY_CLAIMED")
        if not challenge.is_anonymous and challenge.user_id != user.id:
            audit_logger.log_authentication(
                user.id, "qr_claim", False, {"challenge_id": challenge.id}
            )
            raise CredentialOwnershipError("QR code belongs to a different user")

        await self.storage.update_challenge(
            challenge.id, {"user_id": user.id, "approved": True}
        )
        audit_logger.log_authentication(
            user.id, "qr_claim", True, {"challenge_id": challenge.id}
        )
        return {"id": str(challenge.id), "claimed": True}

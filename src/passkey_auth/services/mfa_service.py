"""Multi-factor authentication engine.

Per user, MFA moves through three states: not configured, set up (a TOTP
secret or one-time code is stored but ``mfa_enabled`` is false) and enabled.
Every new setup and every rotation issues a fresh batch of recovery codes.
Only SHA-256 digests of the recovery codes are stored.
"""

import base64
import hashlib
import hmac
import io
import re
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

import pyotp
import qrcode

from passkey_auth.config.mfa_settings import MFASettings, get_mfa_settings
from passkey_auth.models import MFAType, User
from passkey_auth.services.notification_service import CodeSender
from passkey_auth.storage.base import AuthStorage
from passkey_auth.utils.exceptions import (
    InvalidCredentialsError,
    InvalidInputError,
    InvalidMFACodeError,
    InvalidRecoveryCodeError,
    MFAAlreadyEnabledError,
    MFANotConfiguredError,
)
from passkey_auth.utils.logging import audit_logger, get_logger
from passkey_auth.utils.passwords import verify_password
from passkey_auth.utils.timeutils import utcnow

logger = get_logger(__name__)

RECOVERY_CODE_PATTERN = re.compile(r"^[0-9A-F]{5}-[0-9A-F]{5}$")


def hash_recovery_code(code: str) -> str:
    """Digest a recovery code for storage and lookup."""
    return hashlib.sha256(code.strip().upper().encode("utf-8")).hexdigest()


def looks_like_recovery_code(code: str) -> bool:
    """Check whether a submitted value has the recovery code shape."""
    return bool(RECOVERY_CODE_PATTERN.match(code.strip().upper()))


class MFAService:
    """Service for MFA setup, verification and recovery codes."""

    def __init__(
        self,
        storage: AuthStorage,
        settings: Optional[MFASettings] = None,
        code_sender: Optional[CodeSender] = None,
    ):
        """Initialize MFA service.

        Args:
            storage: Request-scoped storage
            settings: MFA configuration
            code_sender: Delivery channel for email/SMS codes
        """
        self.storage = storage
        self.settings = settings or get_mfa_settings()
        self.code_sender = code_sender or CodeSender()

    # Primitives

    @staticmethod
    def generate_totp_secret() -> str:
        """Generate a base32 TOTP shared secret."""
        return pyotp.random_base32()

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(
            secret, digits=self.settings.totp_digits, interval=self.settings.totp_interval
        )

    def build_provisioning_uri(self, secret: str, account_name: str) -> str:
        """Build the ``otpauth://`` enrollment URI."""
        return self._totp(secret).provisioning_uri(
            name=account_name, issuer_name=self.settings.issuer_name
        )

    def render_qr_data_uri(self, data: str) -> str:
        """Render data as a PNG QR code data URI."""
        qr = qrcode.QRCode(
            version=1, box_size=self.settings.qr_box_size, border=self.settings.qr_border
        )
        qr.add_data(data)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white")
        buf = io.BytesIO()
        img.save(buf, format="PNG")
        return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode()

    def verify_totp(
        self,
        secret: Optional[str],
        code: str,
        for_time: Optional[Union[datetime, int]] = None,
    ) -> bool:
        """Verify a TOTP code within the configured step window."""
        if not secret or not code:
            return False
        code = code.strip()
        if not code.isdigit():
            return False
        if for_time is None:
            for_time = datetime.now()
        return self._totp(secret).verify(
            code, for_time=for_time, valid_window=self.settings.totp_window
        )

    def generate_verification_code(self) -> str:
        """Generate a numeric one-time code without a leading zero."""
        length = self.settings.verification_code_length
        low = 10 ** (length - 1)
        return str(low + secrets.randbelow(9 * low))

    def verification_expiry(self) -> datetime:
        """Return the expiry for a freshly issued one-time code."""
        return utcnow() + timedelta(minutes=self.settings.verification_code_ttl_minutes)

    def generate_recovery_codes(self, count: Optional[int] = None) -> List[str]:
        """Generate recovery codes shaped ``XXXXX-XXXXX``."""
        codes = []
        for _ in range(count or self.settings.recovery_codes_count):
            code = secrets.token_hex(5).upper()
            codes.append(f"{code[:5]}-{code[5:]}")
        return codes

    # Recovery codes

    async def _replace_recovery_codes(self, user_id: int) -> List[str]:
        """Invalidate a user's recovery codes and issue a fresh batch."""
        await self.storage.delete_recovery_codes_by_user(user_id)
        codes = self.generate_recovery_codes()
        for code in codes:
            await self.storage.create_recovery_code(
                {"user_id": user_id, "code": hash_recovery_code(code), "used": False}
            )
        return codes

    async def consume_recovery_code(self, user_id: int, code: str) -> bool:
        """Verify and consume a recovery code."""
        record = await self.storage.get_unused_recovery_code(
            user_id, hash_recovery_code(code)
        )
        if record is None:
            return False

        if not await self.storage.mark_recovery_code_used(record.id):
            logger.info("recovery_code_consumed_concurrently", user_id=user_id)
            return False
        logger.info("recovery_code_used", user_id=user_id)

        remaining = await self.remaining_recovery_codes(user_id)
        if remaining < self.settings.recovery_codes_low_watermark:
            logger.warning("recovery_codes_running_low", user_id=user_id, remaining=remaining)
        return True

    async def remaining_recovery_codes(self, user_id: int) -> int:
        """Get count of unused recovery codes."""
        codes = await self.storage.list_recovery_codes_by_user(user_id)
        return sum(1 for code in codes if not code.used)

    # One-time codes

    def _check_stored_code(self, user: User, code: str) -> bool:
        if not user.verification_code or not user.verification_expiry:
            return False
        if utcnow() > user.verification_expiry:
            logger.info("verification_code_expired", user_id=user.id)
            return False
        return hmac.compare_digest(user.verification_code, code.strip())

    async def _clear_stored_code(self, user: User) -> None:
        await self.storage.update_user(
            user.id, {"verification_code": None, "verification_expiry": None}
        )

    async def _issue_code(self, user: User, mfa_type: MFAType) -> str:
        code = self.generate_verification_code()
        await self.storage.update_user(
            user.id,
            {"verification_code": code, "verification_expiry": self.verification_expiry()},
        )
        destination = user.phone if mfa_type == MFAType.SMS else user.email
        await self.code_sender.send(mfa_type.value, destination, code)
        return code

    async def issue_login_code(self, user: User) -> Optional[str]:
        """Issue a fresh email/SMS code for a pending login.

        Returns:
            The issued code, or None for TOTP users
        """
        if not user.mfa_enabled or not user.mfa_type:
            raise MFANotConfiguredError()
        mfa_type = MFAType(user.mfa_type)
        if mfa_type == MFAType.TOTP:
            return None
        return await self._issue_code(user, mfa_type)

    # State machine

    async def setup(
        self, user: User, mfa_type: Union[MFAType, str], phone: Optional[str] = None
    ) -> Dict[str, Any]:
        """Start MFA setup; MFA stays disabled until :meth:`enable` succeeds.

        Returns:
            Enrollment material: TOTP secret and QR code, or the issued code,
            plus the new recovery codes
        """
        if user.mfa_enabled:
            raise MFAAlreadyEnabledError()
        try:
            mfa_type = MFAType(mfa_type)
        except ValueError as e:
            raise InvalidInputError(f"Unsupported MFA type: {mfa_type}") from e

        result: Dict[str, Any] = {"mfaType": mfa_type.value}

        if mfa_type == MFAType.TOTP:
            secret = self.generate_totp_secret()
            await self.storage.update_user(
                user.id,
                {
                    "mfa_type": mfa_type.value,
                    "mfa_secret": secret,
                    "mfa_enabled": False,
                    "verification_code": None,
                    "verification_expiry": None,
                },
            )
            uri = self.build_provisioning_uri(secret, user.email)
            result.update(
                {"secret": secret, "otpauthUrl": uri, "qrCode": self.render_qr_data_uri(uri)}
            )
        else:
            if mfa_type == MFAType.SMS:
                phone = phone or user.phone
                if not phone:
                    raise InvalidInputError("Phone number required for SMS MFA")
                await self.storage.update_user(user.id, {"phone": phone})
            await self.storage.update_user(
                user.id, {"mfa_type": mfa_type.value, "mfa_secret": None, "mfa_enabled": False}
            )
            result["code"] = await self._issue_code(user, mfa_type)

        result["recoveryCodes"] = await self._replace_recovery_codes(user.id)
        audit_logger.log_mfa_change(user.id, "setup", mfa_type.value)
        return result

    async def enable(
        self,
        user: User,
        mfa_type: Union[MFAType, str],
        code: str,
        secret: Optional[str] = None,
    ) -> User:
        """Confirm a pending setup with a first valid code."""
        if user.mfa_enabled:
            raise MFAAlreadyEnabledError()
        try:
            mfa_type = MFAType(mfa_type)
        except ValueError as e:
            raise InvalidInputError(f"Unsupported MFA type: {mfa_type}") from e
        if user.mfa_type != mfa_type.value:
            raise MFANotConfiguredError("MFA setup has not been started for this type")

        if mfa_type == MFAType.TOTP:
            if secret and secret != user.mfa_secret:
                raise InvalidInputError("Secret does not match the pending setup")
            if not self.verify_totp(user.mfa_secret, code):
                raise InvalidMFACodeError()
        elif not self._check_stored_code(user, code):
            raise InvalidMFACodeError()

        updated = await self.storage.update_user(
            user.id,
            {"mfa_enabled": True, "verification_code": None, "verification_expiry": None},
        )
        audit_logger.log_mfa_change(user.id, "enable", mfa_type.value)
        return updated or user

    async def _check_factor(self, user: User, code: str) -> bool:
        """Check a recovery code or a type-appropriate code, consuming it."""
        if looks_like_recovery_code(code):
            if await self.consume_recovery_code(user.id, code):
                return True
            raise InvalidRecoveryCodeError()

        mfa_type = MFAType(user.mfa_type)
        if mfa_type == MFAType.TOTP:
            return self.verify_totp(user.mfa_secret, code)

        if self._check_stored_code(user, code):
            await self._clear_stored_code(user)
            return True
        return False

    async def authenticate(self, user: User, code: str) -> User:
        """Verify the second factor of a login.

        Raises:
            MFANotConfiguredError: If the user has no enabled MFA
            InvalidRecoveryCodeError: If a recovery-shaped code is unknown or used
            InvalidMFACodeError: If the code does not verify
        """
        if not user.mfa_enabled or not user.mfa_type:
            raise MFANotConfiguredError()
        if not code or not code.strip():
            raise InvalidMFACodeError()

        if not await self._check_factor(user, code):
            audit_logger.log_authentication(user.id, "mfa_authenticate", False)
            raise InvalidMFACodeError()

        audit_logger.log_authentication(user.id, "mfa_authenticate", True)
        return user

    async def _reauthenticate(
        self, user: User, password: Optional[str], code: Optional[str]
    ) -> None:
        """Re-verify the account before a sensitive MFA change.

        Password accounts must supply the password. Passkey-only accounts
        confirm with a current MFA code or a recovery code instead.
        """
        if user.password_hash:
            if not password or not verify_password(password, user.password_hash):
                raise InvalidCredentialsError("Invalid password")
            return

        if not code or not user.mfa_enabled or not await self._check_factor(user, code):
            raise InvalidMFACodeError("Current MFA code required")

    async def disable(
        self, user: User, password: Optional[str] = None, code: Optional[str] = None
    ) -> int:
        """Disable MFA and delete all recovery codes.

        Returns:
            Number of recovery codes removed
        """
        if not user.mfa_type:
            raise MFANotConfiguredError()
        await self._reauthenticate(user, password, code)

        previous_type = user.mfa_type
        await self.storage.update_user(
            user.id,
            {
                "mfa_enabled": False,
                "mfa_type": None,
                "mfa_secret": None,
                "verification_code": None,
                "verification_expiry": None,
            },
        )
        removed = await self.storage.delete_recovery_codes_by_user(user.id)
        audit_logger.log_mfa_change(user.id, "disable", previous_type)
        return removed

    async def rotate_recovery_codes(
        self, user: User, password: Optional[str] = None, code: Optional[str] = None
    ) -> List[str]:
        """Replace the recovery code batch after re-verification."""
        if not user.mfa_enabled:
            raise MFANotConfiguredError()
        await self._reauthenticate(user, password, code)

        codes = await self._replace_recovery_codes(user.id)
        audit_logger.log_mfa_change(user.id, "rotate_recovery_codes", user.mfa_type)
        return codes

    async def status(self, user: User) -> Dict[str, Any]:
        """Summarize a user's MFA configuration."""
        return {
            "enabled": bool(user.mfa_enabled),
            "mfaType": user.mfa_type,
            "remainingRecoveryCodes": await self.remaining_recovery_codes(user.id),
        }

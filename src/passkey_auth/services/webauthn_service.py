"""WebAuthn/FIDO2 ceremony operations.

Builds the option payloads consumed by ``navigator.credentials`` and verifies
the authenticator responses. Binary structures (attestation objects, COSE
keys) are decoded with python-fido2; the authenticator data header is parsed
by hand because its layout is fixed: a 32 byte RP ID hash, one flags byte and
a 4 byte big-endian signature counter.

The service is stateless. Challenge lookup and consumption are handled by
:class:`~passkey_auth.services.challenge_service.ChallengeService`.
"""

import hashlib
import hmac
import json
import secrets
import struct
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from cryptography.exceptions import InvalidSignature
from fido2 import cbor
from fido2.cose import CoseKey
from fido2.webauthn import AttestationObject

from passkey_auth.config.webauthn_settings import WebAuthnSettings, get_webauthn_settings
from passkey_auth.utils import encoding
from passkey_auth.utils.exceptions import (
    CeremonyError,
    InvalidInputError,
    OriginMismatchError,
    RpIdMismatchError,
    SignatureVerificationError,
    SignCountError,
    UserVerificationError,
)
from passkey_auth.utils.logging import get_logger

logger = get_logger(__name__)

CLIENT_DATA_CREATE = "webauthn.create"
CLIENT_DATA_GET = "webauthn.get"

FLAG_USER_PRESENT = 0x01
FLAG_USER_VERIFIED = 0x04
FLAG_ATTESTED_CREDENTIAL_DATA = 0x40

_AUTH_DATA_HEADER = struct.Struct(">32sBI")


@dataclass
class ClientData:
    """Decoded ``clientDataJSON``."""

    type: str
    challenge: str
    origin: str
    raw: bytes

    @property
    def hash(self) -> bytes:
        """SHA-256 of the raw client data, as signed by the authenticator."""
        return hashlib.sha256(self.raw).digest()


@dataclass
class ParsedAuthenticatorData:
    """Fixed header of the authenticator data."""

    rp_id_hash: bytes
    flags: int
    counter: int

    @property
    def user_present(self) -> bool:
        """Check the user-present flag."""
        return bool(self.flags & FLAG_USER_PRESENT)

    @property
    def user_verified(self) -> bool:
        """Check the user-verified flag."""
        return bool(self.flags & FLAG_USER_VERIFIED)


@dataclass
class RegistrationVerification:
    """Outcome of a verified registration response."""

    credential_id: str
    public_key: str
    counter: int
    user_verified: bool
    transports: List[str] = field(default_factory=list)


@dataclass
class AuthenticationVerification:
    """Outcome of a verified authentication response."""

    new_counter: int
    user_verified: bool
    counter_increased: bool


class WebAuthnService:
    """Handles WebAuthn ceremony payloads and response verification."""

    def __init__(self, settings: Optional[WebAuthnSettings] = None):
        """Initialize WebAuthn service.

        Args:
            settings: Relying party configuration, defaults to the process-wide settings
        """
        self.settings = settings or get_webauthn_settings()

    def generate_challenge(self) -> str:
        """Create a base64url encoded random challenge."""
        return encoding.encode(secrets.token_bytes(self.settings.challenge_size))

    @staticmethod
    def user_handle(user_id: int) -> str:
        """Encode a user id as the WebAuthn user handle."""
        return encoding.encode(str(user_id).encode("utf-8"))

    def build_registration_options(
        self,
        user_id: int,
        username: str,
        email: str,
        challenge: str,
        rp_id: str,
        rp_name: Optional[str] = None,
        timeout_ms: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Create registration options for a new credential.

        Args:
            user_id: Numeric id of the registering user
            username: Shown by the authenticator as the display name
            email: Used as the credential's user name
            challenge: Base64url challenge issued for this ceremony
            rp_id: Relying party id (domain without port)
            rp_name: Relying party display name
            timeout_ms: Advisory client-side timeout

        Returns:
            Registration options dictionary
        """
        return {
            "challenge": challenge,
            "rp": {"name": rp_name or self.settings.rp_name, "id": rp_id},
            "user": {
                "id": self.user_handle(user_id),
                "name": email,
                "displayName": username,
            },
            "pubKeyCredParams": [
                {"type": "public-key", "alg": alg}
                for alg in self.settings.public_key_algorithms
            ],
            "authenticatorSelection": {
                "authenticatorAttachment": self.settings.authenticator_attachment,
                "userVerification": self.settings.user_verification,
                "requireResidentKey": False,
            },
            "timeout": timeout_ms or self.settings.timeout_ms,
            "attestation": self.settings.attestation_conveyance,
        }

    def build_authentication_options(
        self,
        challenge: str,
        rp_id: str,
        allowed_credential_ids: Sequence[str] = (),
        timeout_ms: Optional[int] = None,
        user_verification: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create authentication options.

        Args:
            challenge: Base64url challenge issued for this ceremony
            rp_id: Relying party id
            allowed_credential_ids: External ids of the user's credentials
            timeout_ms: Advisory client-side timeout
            user_verification: Verification requirement sent to the client

        Returns:
            Authentication options dictionary
        """
        return {
            "challenge": challenge,
            "rpId": rp_id,
            "allowCredentials": [
                {"id": credential_id, "type": "public-key"}
                for credential_id in allowed_credential_ids
            ],
            "timeout": timeout_ms or self.settings.timeout_ms,
            "userVerification": user_verification or self.settings.user_verification,
        }

    def parse_client_data(
        self, client_data_json: str, expected_type: Optional[str] = None
    ) -> ClientData:
        """Decode and validate ``clientDataJSON``.

        Args:
            client_data_json: Base64url encoded client data
            expected_type: ``webauthn.create`` or ``webauthn.get``

        Raises:
            InvalidInputError: If the client data is not valid JSON
            CeremonyError: If the client data was produced for another ceremony
        """
        raw = encoding.decode(client_data_json)
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise InvalidInputError("Invalid client data") from e

        if not isinstance(data, dict):
            raise InvalidInputError("Invalid client data")
        for key in ("type", "challenge", "origin"):
            if not isinstance(data.get(key), str):
                raise InvalidInputError(f"Client data is missing '{key}'")

        if expected_type and data["type"] != expected_type:
            raise CeremonyError(
                f"Unexpected client data type: {data['type']}", "INVALID_CLIENT_DATA_TYPE"
            )

        return ClientData(
            type=data["type"],
            challenge=data["challenge"],
            origin=data["origin"],
            raw=raw,
        )

    @staticmethod
    def parse_authenticator_data(auth_data: bytes) -> ParsedAuthenticatorData:
        """Parse the fixed authenticator data header.

        Raises:
            InvalidInputError: If fewer than 37 bytes are supplied
        """
        if len(auth_data) < _AUTH_DATA_HEADER.size:
            raise InvalidInputError("Authenticator data is too short")
        rp_id_hash, flags, counter = _AUTH_DATA_HEADER.unpack_from(auth_data)
        return ParsedAuthenticatorData(rp_id_hash=rp_id_hash, flags=flags, counter=counter)

    @staticmethod
    def verify_rp_id_hash(rp_id_hash: bytes, rp_id: str) -> bool:
        """Check an RP ID hash against the expected relying party id."""
        expected = hashlib.sha256(rp_id.encode("utf-8")).digest()
        return hmac.compare_digest(expected, rp_id_hash)

    def verify_origin(self, client_data: ClientData, expected_origin: str) -> bool:
        """Apply the origin policy.

        Raises:
            OriginMismatchError: In strict mode, if the origin is not accepted
        """
        if self.settings.is_origin_allowed(client_data.origin, expected_origin):
            return True

        if self.settings.enforce_origin:
            raise OriginMismatchError(client_data.origin, expected_origin)

        logger.warning(
            "origin_mismatch_tolerated",
            origin=client_data.origin,
            expected_origin=expected_origin,
        )
        return False

    def verify_registration_response(
        self,
        credential: Dict[str, Any],
        client_data: ClientData,
        expected_origin: str,
        rp_id: str,
    ) -> RegistrationVerification:
        """Verify a registration response whose challenge is already matched.

        Args:
            credential: ``PublicKeyCredential`` JSON from the client
            client_data: Parsed client data of the response
            expected_origin: Origin of the current request
            rp_id: Expected relying party id

        Returns:
            The credential id and COSE public key to persist

        Raises:
            InvalidInputError: If the attestation object cannot be decoded
            RpIdMismatchError: If the attestation was made for another RP
            CeremonyError: If the attested credential does not match ``rawId``
        """
        self.verify_origin(client_data, expected_origin)

        response = credential.get("response") or {}
        try:
            attestation = AttestationObject(
                encoding.decode(response["attestationObject"])
            )
            auth_data = attestation.auth_data
            credential_data = auth_data.credential_data
        except (KeyError, ValueError, TypeError, IndexError, struct.error) as e:
            raise InvalidInputError("Invalid attestation object") from e

        if credential_data is None:
            raise InvalidInputError("Attestation object carries no credential data")

        if not self.verify_rp_id_hash(auth_data.rp_id_hash, rp_id):
            raise RpIdMismatchError(rp_id)

        credential_id = encoding.encode(credential_data.credential_id)
        raw_id = credential.get("rawId") or credential.get("id")
        if not raw_id or encoding.normalize(raw_id) != credential_id:
            raise CeremonyError(
                "Credential id does not match the attested credential",
                "CREDENTIAL_ID_MISMATCH",
            )

        public_key = encoding.encode(cbor.encode(dict(credential_data.public_key)))
        transports = credential.get("transports") or response.get("transports") or []

        return RegistrationVerification(
            credential_id=credential_id,
            public_key=public_key,
            counter=auth_data.counter,
            user_verified=bool(auth_data.flags & FLAG_USER_VERIFIED),
            transports=[str(t) for t in transports],
        )

    def verify_authentication_response(
        self,
        credential: Dict[str, Any],
        client_data: ClientData,
        expected_origin: str,
        rp_id: str,
        public_key: str,
        stored_counter: int,
    ) -> AuthenticationVerification:
        """Verify an assertion whose challenge is already matched.

        Checks run in order: origin, RP ID hash, user-verified flag,
        signature, signature counter.

        Args:
            credential: ``PublicKeyCredential`` JSON from the client
            client_data: Parsed client data of the response
            expected_origin: Origin of the current request
            rp_id: Expected relying party id
            public_key: Stored base64url CBOR COSE key of the credential
            stored_counter: Last accepted signature counter

        Returns:
            The counter to persist and the verification flags
        """
        self.verify_origin(client_data, expected_origin)

        response = credential.get("response") or {}
        try:
            auth_data_bytes = encoding.decode(response["authenticatorData"])
            signature = encoding.decode(response["signature"])
        except KeyError as e:
            raise InvalidInputError(f"Assertion response is missing {e}") from e

        parsed = self.parse_authenticator_data(auth_data_bytes)

        if not self.verify_rp_id_hash(parsed.rp_id_hash, rp_id):
            raise RpIdMismatchError(rp_id)

        if not parsed.user_verified:
            if self.settings.require_user_verification:
                raise UserVerificationError()
            logger.warning("user_verification_missing_tolerated", rp_id=rp_id)

        self.verify_signature(public_key, auth_data_bytes, client_data, signature)

        counter_increased = self.check_sign_count(stored_counter, parsed.counter)

        return AuthenticationVerification(
            new_counter=max(stored_counter, parsed.counter),
            user_verified=parsed.user_verified,
            counter_increased=counter_increased,
        )

    @staticmethod
    def verify_signature(
        public_key: str, auth_data: bytes, client_data: ClientData, signature: bytes
    ) -> None:
        """Verify an assertion signature with a stored COSE key.

        Raises:
            SignatureVerificationError: If the signature does not verify
        """
        try:
            cose_key = CoseKey.parse(cbor.decode(encoding.decode(public_key)))
        except (ValueError, KeyError, TypeError) as e:
            raise SignatureVerificationError("Stored public key is unusable") from e

        try:
            cose_key.verify(auth_data + client_data.hash, signature)
        except (InvalidSignature, ValueError, NotImplementedError) as e:
            raise SignatureVerificationError() from e

    def check_sign_count(self, stored: int, received: int) -> bool:
        """Apply the signature counter policy.

        A pair of zero counters is accepted; such authenticators do not
        implement counters.

        Returns:
            True if the counter increased

        Raises:
            SignCountError: In strict mode, if the counter did not increase
        """
        if received > stored:
            return True
        if stored == 0 and received == 0:
            return False

        if self.settings.enforce_sign_count:
            raise SignCountError(stored, received)

        logger.warning(
            "sign_count_not_increased",
            stored_counter=stored,
            received_counter=received,
        )
        return False

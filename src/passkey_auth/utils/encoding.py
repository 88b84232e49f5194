"""Base64url helpers used for every binary WebAuthn field.

Values are RFC 4648 section 5 base64url with the padding stripped. Decoding
accepts unpadded input and tolerates values produced with the standard
alphabet.
"""

from typing import Union

from fido2.utils import websafe_decode, websafe_encode

from passkey_auth.utils.exceptions import InvalidInputError


def encode(data: bytes) -> str:
    """Encode bytes as unpadded base64url text."""
    return websafe_encode(data)


def normalize(value: str) -> str:
    """Map a standard or padded base64 string onto the unpadded url alphabet."""
    return value.strip().rstrip("=").replace("+", "-").replace("/", "_")


def decode(value: Union[str, bytes]) -> bytes:
    """Decode base64url text, restoring any missing padding.

    Raises:
        InvalidInputError: If the value is not valid base64
    """
    if isinstance(value, bytes):
        value = value.decode("ascii")
    try:
        return websafe_decode(normalize(value))
    except (ValueError, TypeError) as e:
        raise InvalidInputError("Invalid base64url value") from e

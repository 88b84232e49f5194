"""Shared request helpers for the API routers."""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import Request

from passkey_auth.config import get_settings
from passkey_auth.config.webauthn_settings import get_webauthn_settings
from passkey_auth.services.auth_service import AuthService
from passkey_auth.services.mfa_service import MFAService
from passkey_auth.services.webauthn_service import WebAuthnService
from passkey_auth.storage.provider import StorageProvider
from passkey_auth.utils.exceptions import NotAuthenticatedError

SESSION_USER_KEY = "user_id"
SESSION_PENDING_MFA_KEY = "pending_mfa_user_id"


def get_request_host(request: Request) -> str:
    """Return the client-facing host, honouring proxy headers."""
    forwarded = request.headers.get("x-forwarded-host")
    if forwarded:
        return forwarded.split(",", 1)[0].strip()
    return request.headers.get("host") or "localhost"


def get_expected_origin(request: Request) -> str:
    """Return the origin the browser is expected to report."""
    proto = request.headers.get("x-forwarded-proto")
    scheme = proto.split(",", 1)[0].strip() if proto else request.url.scheme
    scheme = "http" if scheme == "http" else "https"
    return f"{scheme}://{get_request_host(request)}"


def get_rp_id(request: Request) -> str:
    """Return the relying party id for this request."""
    return get_webauthn_settings().resolve_rp_id(get_request_host(request))


def get_storage_provider(request: Request) -> StorageProvider:
    """Get the storage provider selected at startup."""
    provider: StorageProvider = request.app.state.storage_provider
    return provider


@asynccontextmanager
async def auth_service_scope(request: Request) -> AsyncIterator[AuthService]:
    """Yield an :class:`AuthService` bound to one unit of work."""
    provider = get_storage_provider(request)
    async with provider.session() as storage:
        mfa = MFAService(storage, code_sender=request.app.state.code_sender)
        yield AuthService(
            storage, webauthn=WebAuthnService(get_webauthn_settings()), mfa=mfa
        )


def get_session_user_id(request: Request) -> Optional[int]:
    """Return the signed-in user id, if any."""
    user_id = request.session.get(SESSION_USER_KEY)
    return int(user_id) if user_id is not None else None


def require_user_id(request: Request) -> int:
    """Return the signed-in user id or raise :class:`NotAuthenticatedError`."""
    user_id = get_session_user_id(request)
    if user_id is None:
        raise NotAuthenticatedError()
    return user_id


def establish_session(request: Request, user_id: int) -> None:
    """Sign a user in on this client."""
    request.session.pop(SESSION_PENDING_MFA_KEY, None)
    request.session[SESSION_USER_KEY] = user_id


def expose_codes(request: Request) -> bool:
    """Check whether one-time codes may be returned to the caller."""
    settings = getattr(request.app.state, "settings", None) or get_settings()
    return bool(settings.should_expose_codes)

"""Authentication endpoints.

Passkey registration and login, QR cross-device login, and password
accounts. Sessions are only established after a ceremony has been verified
and its unit of work committed.
"""

from typing import Any, Dict

from fastapi import APIRouter, Request, status

from passkey_auth.api.dependencies import (
    SESSION_PENDING_MFA_KEY,
    SESSION_USER_KEY,
    auth_service_scope,
    establish_session,
    expose_codes,
    get_expected_origin,
    get_rp_id,
    get_session_user_id,
    require_user_id,
)
from passkey_auth.api.schemas import (
    EmailRequest,
    LoginCompleteRequest,
    OptionalEmailRequest,
    PasswordLoginRequest,
    PasswordRegisterRequest,
    QRChallengeRequest,
    RegistrationCompleteRequest,
)
from passkey_auth.utils.exceptions import NotAuthenticatedError, NotFoundError
from passkey_auth.utils.logging import get_logger

router = APIRouter(tags=["authentication"])
logger = get_logger(__name__)


@router.post("/auth/check-user")
async def check_user(body: EmailRequest, request: Request) -> Dict[str, Any]:
    """Report whether a registered account exists for an email."""
    async with auth_service_scope(request) as auth:
        exists = await auth.check_user(body.email)
    return {"exists": exists}


@router.post("/auth/register/start")
async def start_registration(body: EmailRequest, request: Request) -> Dict[str, Any]:
    """Issue passkey registration options."""
    async with auth_service_scope(request) as auth:
        return await auth.start_registration(body.email, get_rp_id(request))


@router.post("/auth/register/complete")
async def complete_registration(
    body: RegistrationCompleteRequest, request: Request
) -> Dict[str, Any]:
    """Verify the new passkey and sign the user in."""
    async with auth_service_scope(request) as auth:
        user = await auth.complete_registration(
            body.email,
            body.credential.model_dump(),
            expected_origin=get_expected_origin(request),
            rp_id=get_rp_id(request),
            expected_challenge=body.expectedChallenge,
        )
        payload = user.to_public_dict()

    establish_session(request, payload["id"])
    return {"user": payload, "message": "Registration successful"}


@router.post("/auth/login/start")
async def start_login(body: EmailRequest, request: Request) -> Dict[str, Any]:
    """Issue passkey authentication options."""
    async with auth_service_scope(request) as auth:
        return await auth.start_login(body.email, get_rp_id(request))


@router.post("/auth/login/complete")
async def complete_login(body: LoginCompleteRequest, request: Request) -> Dict[str, Any]:
    """Verify a passkey assertion and sign the user in."""
    async with auth_service_scope(request) as auth:
        user = await auth.complete_login(
            body.email,
            body.credential.model_dump(),
            expected_origin=get_expected_origin(request),
            rp_id=get_rp_id(request),
            expected_challenge=body.expectedChallenge,
        )
        payload = user.to_public_dict()

    establish_session(request, payload["id"])
    return {"user": payload, "message": "Login successful"}


@router.post("/auth/qrcode")
async def start_qr_login(body: OptionalEmailRequest, request: Request) -> Dict[str, Any]:
    """Issue a QR login challenge."""
    async with auth_service_scope(request) as auth:
        return await auth.start_qr_login(body.email)


@router.post("/auth/qrcode/verify")
async def verify_qr_login(body: QRChallengeRequest, request: Request) -> Dict[str, Any]:
    """Complete a QR login approved by a signed-in device."""
    async with auth_service_scope(request) as auth:
        user = await auth.verify_qr_login(body.challengeId)
        payload = user.to_public_dict()

    establish_session(request, payload["id"])
    return {
        "verified": True,
        "user": payload,
        "message": "QR code verification successful",
    }


@router.post("/auth/qrcode/claim")
async def claim_qr_login(body: QRChallengeRequest, request: Request) -> Dict[str, Any]:
    """Approve a QR challenge as the signed-in user."""
    user_id = require_user_id(request)
    async with auth_service_scope(request) as auth:
        return await auth.claim_qr_login(body.challengeId, user_id)


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(body: PasswordRegisterRequest, request: Request) -> Dict[str, Any]:
    """Create a password account and sign it in."""
    async with auth_service_scope(request) as auth:
        user = await auth.register_with_password(
            body.username, body.email, body.password, body.displayName
        )
        payload = user.to_public_dict()

    establish_session(request, payload["id"])
    return payload


@router.post("/login")
async def login(body: PasswordLoginRequest, request: Request) -> Dict[str, Any]:
    """Check a password; MFA users continue at ``/mfa/authenticate``."""
    async with auth_service_scope(request) as auth:
        result = await auth.login_with_password(body.username, body.password)
        payload = result.to_dict(expose_code=expose_codes(request))
        user_id = result.user.id

    if result.requires_mfa:
        request.session.pop(SESSION_USER_KEY, None)
        request.session[SESSION_PENDING_MFA_KEY] = user_id
    else:
        establish_session(request, user_id)
    return payload


@router.post("/logout")
async def logout(request: Request) -> Dict[str, str]:
    """Clear the session."""
    user_id = get_session_user_id(request)
    request.session.clear()
    logger.info("user_logged_out", user_id=user_id)
    return {"message": "Logged out successfully"}


@router.get("/user")
async def current_user(request: Request) -> Dict[str, Any]:
    """Return the signed-in user."""
    user_id = require_user_id(request)
    try:
        async with auth_service_scope(request) as auth:
            user = await auth.get_user(user_id)
            return user.to_public_dict()
    except NotFoundError as e:
        request.session.clear()
        raise NotAuthenticatedError("User not found") from e

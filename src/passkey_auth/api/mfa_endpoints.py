"""MFA API endpoints.

Setup, confirmation, login verification, disabling and recovery code
rotation. All but ``/mfa/authenticate`` act on the signed-in user.
"""

from typing import Any, Dict

from fastapi import APIRouter, Request

from passkey_auth.api.dependencies import (
    SESSION_PENDING_MFA_KEY,
    auth_service_scope,
    establish_session,
    expose_codes,
    require_user_id,
)
from passkey_auth.api.schemas import (
    MFAAuthenticateRequest,
    MFAEnableRequest,
    MFASetupRequest,
    ReauthenticationRequest,
)
from passkey_auth.utils.exceptions import NotAuthenticatedError
from passkey_auth.utils.logging import get_logger

router = APIRouter(prefix="/mfa", tags=["mfa"])
logger = get_logger(__name__)


@router.post("/setup")
async def setup_mfa(body: MFASetupRequest, request: Request) -> Dict[str, Any]:
    """Start MFA setup for the signed-in user."""
    user_id = require_user_id(request)
    async with auth_service_scope(request) as auth:
        user = await auth.get_user(user_id)
        result = await auth.mfa.setup(user, body.type, phone=body.phone)

    if not expose_codes(request):
        result.pop("code", None)
    return result


@router.post("/enable")
async def enable_mfa(body: MFAEnableRequest, request: Request) -> Dict[str, Any]:
    """Confirm MFA setup with a first valid code."""
    user_id = require_user_id(request)
    async with auth_service_scope(request) as auth:
        user = await auth.get_user(user_id)
        user = await auth.mfa.enable(user, body.type, body.code, secret=body.secret)
        payload = user.to_public_dict()
    return {"user": payload, "message": "MFA enabled successfully"}


@router.post("/authenticate")
async def authenticate_mfa(
    body: MFAAuthenticateRequest, request: Request
) -> Dict[str, Any]:
    """Finish a password login with the second factor."""
    pending_user_id = request.session.get(SESSION_PENDING_MFA_KEY)
    if pending_user_id is None or int(pending_user_id) != body.userId:
        raise NotAuthenticatedError("No pending MFA login for this user")

    async with auth_service_scope(request) as auth:
        user = await auth.complete_mfa_login(body.userId, body.code)
        payload = user.to_public_dict()

    establish_session(request, payload["id"])
    return {"user": payload, "message": "Login successful"}


@router.post("/disable")
async def disable_mfa(body: ReauthenticationRequest, request: Request) -> Dict[str, str]:
    """Disable MFA after re-verification."""
    user_id = require_user_id(request)
    async with auth_service_scope(request) as auth:
        user = await auth.get_user(user_id)
        await auth.mfa.disable(user, password=body.password, code=body.code)
    return {"message": "MFA disabled successfully"}


@router.post("/recovery-codes")
async def rotate_recovery_codes(
    body: ReauthenticationRequest, request: Request
) -> Dict[str, Any]:
    """Replace the recovery code batch after re-verification."""
    user_id = require_user_id(request)
    async with auth_service_scope(request) as auth:
        user = await auth.get_user(user_id)
        codes = await auth.mfa.rotate_recovery_codes(
            user, password=body.password, code=body.code
        )
    return {"recoveryCodes": codes}


@router.get("/status")
async def mfa_status(request: Request) -> Dict[str, Any]:
    """Summarize the signed-in user's MFA configuration."""
    user_id = require_user_id(request)
    async with auth_service_scope(request) as auth:
        user = await auth.get_user(user_id)
        return await auth.mfa.status(user)

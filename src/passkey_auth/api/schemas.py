"""Request models for the authentication API."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class EmailRequest(BaseModel):
    """Request naming an account by email."""

    email: EmailStr


class OptionalEmailRequest(BaseModel):
    """QR login request; omitting the email creates an anonymous code."""

    email: Optional[EmailStr] = None


class AttestationResponse(BaseModel):
    """Authenticator attestation response."""

    model_config = ConfigDict(extra="allow")

    attestationObject: str
    clientDataJSON: str
    transports: Optional[List[str]] = None


class RegistrationCredential(BaseModel):
    """``PublicKeyCredential`` returned by ``navigator.credentials.create``."""

    model_config = ConfigDict(extra="allow")

    id: str
    rawId: str
    type: str = "public-key"
    response: AttestationResponse
    authenticatorAttachment: Optional[str] = None
    clientExtensionResults: Dict[str, Any] = Field(default_factory=dict)
    transports: Optional[List[str]] = None


class AssertionResponse(BaseModel):
    """Authenticator assertion response."""

    model_config = ConfigDict(extra="allow")

    authenticatorData: str
    clientDataJSON: str
    signature: str
    userHandle: Optional[str] = None


class AuthenticationCredential(BaseModel):
    """``PublicKeyCredential`` returned by ``navigator.credentials.get``."""

    model_config = ConfigDict(extra="allow")

    id: str
    rawId: str
    type: str = "public-key"
    response: AssertionResponse
    clientExtensionResults: Dict[str, Any] = Field(default_factory=dict)


class RegistrationCompleteRequest(BaseModel):
    """Passkey registration completion request."""

    email: EmailStr
    credential: RegistrationCredential
    expectedChallenge: Optional[str] = None


class LoginCompleteRequest(BaseModel):
    """Passkey login completion request."""

    email: EmailStr
    credential: AuthenticationCredential
    expectedChallenge: Optional[str] = None


class QRChallengeRequest(BaseModel):
    """Request naming a QR login challenge."""

    challengeId: str


class PasswordRegisterRequest(BaseModel):
    """Password account registration request."""

    username: str = Field(min_length=3)
    password: str = Field(min_length=8)
    email: EmailStr
    displayName: Optional[str] = None


class PasswordLoginRequest(BaseModel):
    """Password login request."""

    username: str
    password: str


class MFASetupRequest(BaseModel):
    """MFA setup request."""

    type: str = Field(pattern="^(totp|email|sms)$")
    phone: Optional[str] = None


class MFAEnableRequest(BaseModel):
    """MFA setup confirmation request."""

    type: str = Field(pattern="^(totp|email|sms)$")
    code: str
    secret: Optional[str] = None


class MFAAuthenticateRequest(BaseModel):
    """Second step of a password login."""

    userId: int
    code: str


class ReauthenticationRequest(BaseModel):
    """Re-verification for sensitive MFA changes."""

    password: Optional[str] = None
    code: Optional[str] = None

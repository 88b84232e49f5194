"""Test suite for authentication REST API endpoints."""

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from passkey_auth.main import create_app
from passkey_auth.storage import StorageProvider, StorageType
from passkey_auth.utils import encoding
from tests.mocks.authenticator import SoftAuthenticator

EMAIL = "alice@example.com"
SERVER_RP_ID = "testserver"
SERVER_ORIGIN = "http://testserver"


@pytest.fixture
def authenticator():
    """Authenticator bound to the test client's host."""
    return SoftAuthenticator(rp_id=SERVER_RP_ID, origin=SERVER_ORIGIN)


def register(client, authenticator, email=EMAIL):
    """Register a passkey through the API."""
    options = client.post("/api/auth/register/start", json={"email": email}).json()
    credential = authenticator.create(options["challenge"])
    return client.post(
        "/api/auth/register/complete", json={"email": email, "credential": credential}
    )


def login(client, authenticator, email=EMAIL):
    """Log in with a passkey through the API."""
    options = client.post("/api/auth/login/start", json={"email": email}).json()
    credential = authenticator.get(options["challenge"])
    return client.post(
        "/api/auth/login/complete",
        json={
            "email": email,
            "credential": credential,
            "expectedChallenge": options["challenge"],
        },
    )


class TestHealth:
    """Test health endpoint."""

    def test_health(self, client):
        """The configured backend is reported."""
        response = client.get("/api/health")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "healthy"
        assert data["storage"] == "memory"
        assert data["version"] == "1.0.0"


class TestPasskeyEndpoints:
    """Test passkey registration and login endpoints."""

    def test_registration_flow(self, client, authenticator):
        """Registering signs the user in."""
        response = client.post("/api/auth/check-user", json={"email": EMAIL})
        assert response.json() == {"exists": False}

        options = client.post("/api/auth/register/start", json={"email": EMAIL}).json()
        assert options["rp"]["id"] == SERVER_RP_ID
        assert options["attestation"] == "none"

        credential = authenticator.create(options["challenge"])
        response = client.post(
            "/api/auth/register/complete", json={"email": EMAIL, "credential": credential}
        )

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["message"] == "Registration successful"
        assert body["user"]["email"] == EMAIL
        assert body["user"]["registered"] is True

        me = client.get("/api/user")
        assert me.status_code == status.HTTP_200_OK
        assert me.json()["id"] == body["user"]["id"]

        assert client.post("/api/auth/check-user", json={"email": EMAIL}).json() == {
            "exists": True
        }

    def test_register_twice(self, client, authenticator):
        """Registered accounts are refused a second registration."""
        register(client, authenticator)

        response = client.post("/api/auth/register/start", json={"email": EMAIL})

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json() == {
            "message": "User already registered",
            "code": "ALREADY_REGISTERED",
        }

    def test_login_flow(self, client, authenticator):
        """A registered passkey signs the user back in."""
        register(client, authenticator)
        assert client.post("/api/logout").json() == {"message": "Logged out successfully"}
        assert client.get("/api/user").status_code == status.HTTP_401_UNAUTHORIZED

        response = login(client, authenticator)

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["message"] == "Login successful"
        assert client.get("/api/user").json()["email"] == EMAIL

    def test_challenge_mismatch(self, client, authenticator):
        """A response to a foreign challenge is rejected with details."""
        client.post("/api/auth/register/start", json={"email": EMAIL})
        foreign = encoding.encode(b"f" * 32)
        credential = authenticator.create(foreign)

        response = client.post(
            "/api/auth/register/complete", json={"email": EMAIL, "credential": credential}
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        body = response.json()
        assert body["code"] == "CHALLENGE_MISMATCH"
        assert body["details"]["clientChallenge"] == foreign
        assert client.get("/api/user").status_code == status.HTTP_401_UNAUTHORIZED

    def test_origin_mismatch(self, client):
        """Responses produced for another origin are rejected."""
        phished = SoftAuthenticator(rp_id=SERVER_RP_ID, origin="https://phish.example")

        response = register(client, phished)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "ORIGIN_MISMATCH"

    def test_login_unregistered(self, client):
        """Pending or unknown accounts cannot start a login."""
        client.post("/api/auth/register/start", json={"email": EMAIL})

        response = client.post("/api/auth/login/start", json={"email": EMAIL})
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "USER_NOT_REGISTERED"

        response = client.post("/api/auth/login/start", json={"email": "x@example.com"})
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_invalid_email(self, client):
        """Malformed bodies are reported as invalid input."""
        response = client.post("/api/auth/check-user", json={"email": "not-an-email"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        body = response.json()
        assert body["code"] == "INVALID_INPUT"
        assert body["errors"][0]["loc"][-1] == "email"


class TestQRCodeEndpoints:
    """Test QR cross-device login endpoints."""

    def test_anonymous_qr_requires_claim(self, client):
        """An unclaimed anonymous code signs nobody in."""
        issued = client.post("/api/auth/qrcode", json={}).json()
        assert issued["qrCode"].endswith(":anonymous")

        response = client.post("/api/auth/qrcode/verify", json={"challengeId": issued["id"]})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        body = response.json()
        assert body["verified"] is False
        assert body["requiresAuthentication"] is True
        assert body["code"] == "QR_AUTHENTICATION_REQUIRED"
        assert client.get("/api/user").status_code == status.HTTP_401_UNAUTHORIZED

    def test_claim_and_verify(self, app_settings, code_sender, authenticator):
        """A signed-in phone claims the code shown on another device."""
        app = create_app(
            settings=app_settings,
            storage_provider=StorageProvider(StorageType.MEMORY),
            code_sender=code_sender,
            start_sweeper=False,
        )
        with TestClient(app) as desktop, TestClient(app) as phone:
            user = register(phone, authenticator).json()["user"]
            issued = desktop.post("/api/auth/qrcode", json={}).json()

            claim = phone.post("/api/auth/qrcode/claim", json={"challengeId": issued["id"]})
            assert claim.json() == {"id": issued["id"], "claimed": True}

            response = desktop.post(
                "/api/auth/qrcode/verify", json={"challengeId": issued["id"]}
            )
            assert response.status_code == status.HTTP_200_OK
            assert response.json()["verified"] is True
            assert desktop.get("/api/user").json()["id"] == user["id"]

    def test_email_bound_qr_needs_owner_approval(
        self, app_settings, code_sender, authenticator
    ):
        """Knowing a user's email is not enough to sign in as them."""
        app = create_app(
            settings=app_settings,
            storage_provider=StorageProvider(StorageType.MEMORY),
            code_sender=code_sender,
            start_sweeper=False,
        )
        other_key = SoftAuthenticator(rp_id=SERVER_RP_ID, origin=SERVER_ORIGIN)
        with TestClient(app) as owner, TestClient(app) as stranger, TestClient(app) as intruder:
            user = register(owner, authenticator).json()["user"]
            register(intruder, other_key, "bob@example.com")
            issued = stranger.post("/api/auth/qrcode", json={"email": EMAIL}).json()

            response = stranger.post(
                "/api/auth/qrcode/verify", json={"challengeId": issued["id"]}
            )
            assert response.status_code == status.HTTP_400_BAD_REQUEST
            assert response.json()["requiresAuthentication"] is True
            assert stranger.get("/api/user").status_code == status.HTTP_401_UNAUTHORIZED

            foreign = intruder.post(
                "/api/auth/qrcode/claim", json={"challengeId": issued["id"]}
            )
            assert foreign.status_code == status.HTTP_400_BAD_REQUEST
            assert foreign.json()["code"] == "CREDENTIAL_OWNERSHIP"

            approve = owner.post("/api/auth/qrcode/claim", json={"challengeId": issued["id"]})
            assert approve.json() == {"id": issued["id"], "claimed": True}

            response = stranger.post(
                "/api/auth/qrcode/verify", json={"challengeId": issued["id"]}
            )
            assert response.status_code == status.HTTP_200_OK
            assert stranger.get("/api/user").json()["id"] == user["id"]

    def test_claim_requires_session(self, client):
        """Only signed-in users can claim a code."""
        issued = client.post("/api/auth/qrcode", json={}).json()

        response = client.post("/api/auth/qrcode/claim", json={"challengeId": issued["id"]})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_unknown_challenge(self, client):
        """Unknown ids are not found."""
        response = client.post("/api/auth/qrcode/verify", json={"challengeId": "999"})

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["message"] == "Challenge not found"


class TestPasswordEndpoints:
    """Test password account endpoints."""

    def test_register_and_login(self, client):
        """Password accounts sign in directly without MFA."""
        response = client.post(
            "/api/register",
            json={
                "username": "carol",
                "email": "carol@example.com",
                "password": "s3cret-password",
                "displayName": "Carol",
            },
        )
        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["displayName"] == "Carol"
        assert "password_hash" not in response.json()

        client.post("/api/logout")
        response = client.post(
            "/api/login", json={"username": "carol", "password": "s3cret-password"}
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["user"]["username"] == "carol"
        assert client.get("/api/user").status_code == status.HTTP_200_OK

    def test_wrong_password(self, client):
        """Wrong passwords are unauthorized."""
        client.post(
            "/api/register",
            json={
                "username": "carol",
                "email": "carol@example.com",
                "password": "s3cret-password",
            },
        )
        client.post("/api/logout")

        response = client.post(
            "/api/login", json={"username": "carol", "password": "wrong-password"}
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["code"] == "INVALID_CREDENTIALS"

    def test_short_password(self, client):
        """Request validation enforces the minimum password length."""
        response = client.post(
            "/api/register",
            json={"username": "carol", "email": "carol@example.com", "password": "short"},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "INVALID_INPUT"

"""Test suite for MFA REST API endpoints."""

import pyotp
import pytest
from fastapi import status
from fastapi.testclient import TestClient

from passkey_auth.config import Settings
from passkey_auth.main import create_app
from passkey_auth.storage import StorageProvider, StorageType

PASSWORD = "s3cret-password"


def register_password_user(client, username="carol"):
    """Create and sign in a password account."""
    response = client.post(
        "/api/register",
        json={
            "username": username,
            "email": f"{username}@example.com",
            "password": PASSWORD,
        },
    )
    assert response.status_code == status.HTTP_201_CREATED
    return response.json()


class TestEmailMFAFlow:
    """Test password login with an email second factor."""

    def test_full_flow(self, client, code_sender):
        """Setup, enable, MFA login, rotate and disable."""
        user = register_password_user(client)

        setup = client.post("/api/mfa/setup", json={"type": "email"}).json()
        assert setup["mfaType"] == "email"
        assert setup["code"] == code_sender.last_code
        assert len(setup["recoveryCodes"]) == 10

        enabled = client.post("/api/mfa/enable", json={"type": "email", "code": setup["code"]})
        assert enabled.status_code == status.HTTP_200_OK
        assert enabled.json()["user"]["mfaEnabled"] is True

        client.post("/api/logout")
        pending = client.post("/api/login", json={"username": "carol", "password": PASSWORD})
        body = pending.json()
        assert body["requiresMfa"] is True
        assert body["mfaType"] == "email"
        assert body["userId"] == user["id"]
        assert body["code"] == code_sender.last_code
        assert client.get("/api/user").status_code == status.HTTP_401_UNAUTHORIZED

        response = client.post(
            "/api/mfa/authenticate", json={"userId": user["id"], "code": body["code"]}
        )
        assert response.status_code == status.HTTP_200_OK
        assert client.get("/api/user").json()["mfaEnabled"] is True

        assert client.get("/api/mfa/status").json() == {
            "enabled": True,
            "mfaType": "email",
            "remainingRecoveryCodes": 10,
        }

        rotated = client.post("/api/mfa/recovery-codes", json={"password": PASSWORD})
        assert len(rotated.json()["recoveryCodes"]) == 10

        refused = client.post("/api/mfa/disable", json={"password": "wrong-password"})
        assert refused.status_code == status.HTTP_401_UNAUTHORIZED

        disabled = client.post("/api/mfa/disable", json={"password": PASSWORD})
        assert disabled.json() == {"message": "MFA disabled successfully"}
        assert client.get("/api/mfa/status").json()["enabled"] is False

    def test_recovery_code_login(self, client):
        """A recovery code completes the second step once."""
        user = register_password_user(client)
        setup = client.post("/api/mfa/setup", json={"type": "email"}).json()
        client.post("/api/mfa/enable", json={"type": "email", "code": setup["code"]})
        client.post("/api/logout")

        client.post("/api/login", json={"username": "carol", "password": PASSWORD})
        recovery = setup["recoveryCodes"][0]
        response = client.post(
            "/api/mfa/authenticate", json={"userId": user["id"], "code": recovery}
        )
        assert response.status_code == status.HTTP_200_OK

        client.post("/api/logout")
        client.post("/api/login", json={"username": "carol", "password": PASSWORD})
        response = client.post(
            "/api/mfa/authenticate", json={"userId": user["id"], "code": recovery}
        )
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["code"] == "INVALID_RECOVERY_CODE"

    def test_authenticate_requires_pending_login(self, client):
        """The second step only continues this client's password step."""
        user = register_password_user(client)
        setup = client.post("/api/mfa/setup", json={"type": "email"}).json()
        client.post("/api/mfa/enable", json={"type": "email", "code": setup["code"]})
        client.post("/api/logout")

        response = client.post(
            "/api/mfa/authenticate", json={"userId": user["id"], "code": "123456"}
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["code"] == "NOT_AUTHENTICATED"


class TestTOTPFlow:
    """Test TOTP enrollment through the API."""

    def test_totp_setup_and_enable(self, client):
        """The returned secret confirms the setup."""
        register_password_user(client)

        setup = client.post("/api/mfa/setup", json={"type": "totp"}).json()
        assert setup["qrCode"].startswith("data:image/png;base64,")
        assert "code" not in setup

        response = client.post(
            "/api/mfa/enable",
            json={
                "type": "totp",
                "code": pyotp.TOTP(setup["secret"]).now(),
                "secret": setup["secret"],
            },
        )

        assert response.status_code == status.HTTP_200_OK
        again = client.post("/api/mfa/setup", json={"type": "totp"})
        assert again.status_code == status.HTTP_409_CONFLICT
        assert again.json()["code"] == "MFA_ALREADY_ENABLED"

    def test_unsupported_type(self, client):
        """Only known MFA types are accepted."""
        register_password_user(client)

        response = client.post("/api/mfa/setup", json={"type": "carrier-pigeon"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_requires_session(self, client):
        """MFA management needs a signed-in user."""
        response = client.post("/api/mfa/setup", json={"type": "totp"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


class TestCodeExposure:
    """Test that one-time codes stay server-side in production."""

    @pytest.fixture
    def production_client(self, code_sender):
        """Client for an application running in production."""
        settings = Settings(
            environment="production",
            storage_backend="memory",
            secret_key="production-session-signing-key",
            log_level="WARNING",
        )
        app = create_app(
            settings=settings,
            storage_provider=StorageProvider(StorageType.MEMORY),
            code_sender=code_sender,
            start_sweeper=False,
        )
        with TestClient(app) as test_client:
            yield test_client

    def test_codes_not_returned(self, production_client, code_sender):
        """Codes are delivered out of band only."""
        register_password_user(production_client)

        setup = production_client.post("/api/mfa/setup", json={"type": "email"}).json()
        assert "code" not in setup
        assert code_sender.last_code

        production_client.post(
            "/api/mfa/enable", json={"type": "email", "code": code_sender.last_code}
        )
        production_client.post("/api/logout")
        pending = production_client.post(
            "/api/login", json={"username": "carol", "password": PASSWORD}
        ).json()

        assert pending["requiresMfa"] is True
        assert "code" not in pending

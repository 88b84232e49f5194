"""Test configuration for the PassKey Auth service.

Environment defaults are set before the application package is imported so
the cached settings pick them up.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SECRET_KEY", "test-session-signing-key-not-for-production")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ["BCRYPT_ROUNDS"] = "4"

# pylint: disable=wrong-import-position
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from passkey_auth.config import Settings  # noqa: E402
from passkey_auth.config.mfa_settings import MFASettings  # noqa: E402
from passkey_auth.config.webauthn_settings import (  # noqa: E402
    WebAuthnSettings,
    WebAuthnSettingsSingleton,
)
from passkey_auth.core.database import (  # noqa: E402
    create_engine,
    create_session_factory,
    drop_models,
    init_models,
)
from passkey_auth.main import create_app  # noqa: E402
from passkey_auth.storage import (  # noqa: E402
    DatabaseStorage,
    MemoryStorage,
    StorageProvider,
    StorageType,
)
from tests.mocks.authenticator import (  # noqa: E402
    TEST_ORIGIN,
    TEST_RP_ID,
    SoftAuthenticator,
)
from tests.mocks.code_sender import RecordingCodeSender  # noqa: E402

@pytest.fixture(autouse=True)
def clean_webauthn_environment(monkeypatch):
    """Run every test against default WebAuthn settings."""
    for name in list(os.environ):
        if name.startswith("WEBAUTHN_"):
            monkeypatch.delenv(name, raising=False)
    WebAuthnSettingsSingleton._instance = None
    yield
    WebAuthnSettingsSingleton._instance = None


@pytest.fixture
def webauthn_settings():
    """Strict relying party settings."""
    return WebAuthnSettings()


@pytest.fixture
def lenient_webauthn_settings():
    """Settings that log, rather than reject, policy violations."""
    settings = WebAuthnSettings()
    settings.enforce_origin = False
    settings.require_user_verification = False
    settings.enforce_sign_count = False
    return settings


@pytest.fixture
def mfa_settings():
    """Default MFA settings."""
    return MFASettings()


@pytest.fixture
def authenticator():
    """Software authenticator for the local test relying party."""
    return SoftAuthenticator(rp_id=TEST_RP_ID, origin=TEST_ORIGIN)


@pytest.fixture
def code_sender():
    """Code sender that keeps every delivered code."""
    return RecordingCodeSender()


@pytest.fixture
def memory_storage():
    """Fresh in-memory storage."""
    return MemoryStorage()


@pytest_asyncio.fixture
async def database_storage(tmp_path):
    """SQLite-backed storage on a throwaway database file."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'passkey_auth.db'}")
    await init_models(engine)
    session_factory = create_session_factory(engine)
    async with session_factory() as session:
        yield DatabaseStorage(session)
    await drop_models(engine)
    await engine.dispose()


@pytest.fixture
def app_settings():
    """Application settings for API tests."""
    return Settings(
        environment="test",
        storage_backend="memory",
        secret_key="test-session-signing-key-not-for-production",
        log_level="WARNING",
    )


@pytest.fixture
def client(app_settings, code_sender):
    """Test client over an in-memory application."""
    app = create_app(
        settings=app_settings,
        storage_provider=StorageProvider(StorageType.MEMORY),
        code_sender=code_sender,
        start_sweeper=False,
    )
    with TestClient(app) as test_client:
        yield test_client

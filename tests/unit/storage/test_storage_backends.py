"""Tests for the storage backends.

Every test runs against the in-memory backend and against SQLite so both
honour the same contract.
"""

from datetime import timedelta

import pytest
import pytest_asyncio

from passkey_auth.core.database import (
    create_engine,
    create_session_factory,
    drop_models,
    init_models,
)
from passkey_auth.models import ChallengeType
from passkey_auth.storage import (
    DatabaseStorage,
    MemoryStorage,
    StorageProvider,
    StorageType,
)
from passkey_auth.utils.exceptions import StorageError
from passkey_auth.utils.timeutils import utcnow


@pytest_asyncio.fixture(params=["memory", "database"])
async def storage(request, tmp_path):
    """Storage for each backend."""
    if request.param == "memory":
        yield MemoryStorage()
        return

    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'storage.db'}")
    await init_models(engine)
    async with create_session_factory(engine)() as session:
        yield DatabaseStorage(session)
    await drop_models(engine)
    await engine.dispose()


async def make_user(storage, name="alice"):
    """Create a user named after ``name``."""
    return await storage.create_user({"username": name, "email": f"{name}@example.com"})


def challenge_data(user_id, value, seconds=300, challenge_type=ChallengeType.AUTHENTICATION):
    """Build challenge column values."""
    return {
        "user_id": user_id,
        "challenge": value,
        "type": challenge_type.value,
        "expires_at": utcnow() + timedelta(seconds=seconds),
    }


class TestUsers:
    """Test user records."""

    @pytest.mark.asyncio
    async def test_create_and_lookup(self, storage):
        """Users are found by id, email and username."""
        user = await make_user(storage)

        assert user.id is not None
        assert user.registered is False
        assert user.mfa_enabled is False
        assert (await storage.get_user(user.id)).email == "alice@example.com"
        assert (await storage.get_user_by_email("alice@example.com")).id == user.id
        assert (await storage.get_user_by_username("alice")).id == user.id
        assert await storage.get_user_by_email("nobody@example.com") is None

    @pytest.mark.asyncio
    async def test_update(self, storage):
        """Partial updates change only the named fields."""
        user = await make_user(storage)

        updated = await storage.update_user(user.id, {"registered": True})

        assert updated.registered is True
        assert updated.username == "alice"
        assert await storage.update_user(9999, {"registered": True}) is None

    @pytest.mark.asyncio
    async def test_update_unknown_field(self, storage):
        """Unknown columns are refused."""
        user = await make_user(storage)

        with pytest.raises(StorageError):
            await storage.update_user(user.id, {"shoe_size": 42})

    @pytest.mark.asyncio
    async def test_duplicate_email(self, storage):
        """Emails are unique."""
        await make_user(storage)

        with pytest.raises(StorageError):
            await storage.create_user({"username": "other", "email": "alice@example.com"})


class TestCredentials:
    """Test credential records."""

    @pytest.mark.asyncio
    async def test_create_and_lookup(self, storage):
        """Credentials are found by external id and owner."""
        user = await make_user(storage)
        credential = await storage.create_credential(
            {
                "user_id": user.id,
                "credential_id": "cred-1",
                "public_key": "pk",
                "counter": 0,
                "transports": ["internal", "hybrid"],
            }
        )

        found = await storage.get_credential_by_credential_id("cred-1")
        assert found.id == credential.id
        assert found.transports == ["internal", "hybrid"]
        assert (await storage.get_credential(credential.id)).public_key == "pk"
        assert [c.id for c in await storage.list_credentials_by_user(user.id)] == [
            credential.id
        ]

        await storage.update_credential(credential.id, {"counter": 4})
        assert (await storage.get_credential(credential.id)).counter == 4

    @pytest.mark.asyncio
    async def test_duplicate_credential_id(self, storage):
        """Credential ids are globally unique."""
        user = await make_user(storage)
        data = {"user_id": user.id, "credential_id": "cred-1", "public_key": "pk"}
        await storage.create_credential(data)

        with pytest.raises(StorageError):
            await storage.create_credential(dict(data))


class TestChallenges:
    """Test challenge records."""

    @pytest.mark.asyncio
    async def test_list_newest_first(self, storage):
        """A user's challenges are listed newest first."""
        user = await make_user(storage)
        first = await storage.create_challenge(challenge_data(user.id, "one"))
        second = await storage.create_challenge(challenge_data(user.id, "two"))

        listed = await storage.list_challenges_by_user(user.id)

        assert [c.id for c in listed] == [second.id, first.id]

    @pytest.mark.asyncio
    async def test_delete_once(self, storage):
        """Only the first delete reports success."""
        user = await make_user(storage)
        challenge = await storage.create_challenge(challenge_data(user.id, "one"))

        assert await storage.delete_challenge(challenge.id) is True
        assert await storage.delete_challenge(challenge.id) is False
        assert await storage.get_challenge(challenge.id) is None

    @pytest.mark.asyncio
    async def test_anonymous_challenge(self, storage):
        """QR challenges may have no owner until claimed."""
        challenge = await storage.create_challenge(
            challenge_data(None, "qr", challenge_type=ChallengeType.QRCODE)
        )
        assert challenge.is_anonymous

        user = await make_user(storage)
        claimed = await storage.update_challenge(challenge.id, {"user_id": user.id})

        assert not claimed.is_anonymous

    @pytest.mark.asyncio
    async def test_delete_expired(self, storage):
        """Expired challenges are removed in bulk."""
        user = await make_user(storage)
        await storage.create_challenge(challenge_data(user.id, "old", seconds=-5))
        await storage.create_challenge(challenge_data(None, "old-qr", seconds=-5))
        fresh = await storage.create_challenge(challenge_data(user.id, "fresh"))

        assert await storage.delete_expired_challenges() == 2
        assert [c.id for c in await storage.list_challenges_by_user(user.id)] == [fresh.id]


class TestRecoveryCodes:
    """Test recovery code records."""

    @pytest.mark.asyncio
    async def test_lifecycle(self, storage):
        """Used codes are no longer returned as unused."""
        user = await make_user(storage)
        code = await storage.create_recovery_code(
            {"user_id": user.id, "code": "digest-1", "used": False}
        )
        await storage.create_recovery_code({"user_id": user.id, "code": "digest-2"})

        found = await storage.get_unused_recovery_code(user.id, "digest-1")
        assert found.id == code.id

        await storage.update_recovery_code(code.id, {"used": True, "used_at": utcnow()})
        assert await storage.get_unused_recovery_code(user.id, "digest-1") is None
        assert (await storage.get_recovery_code(code.id)).used is True

        assert await storage.delete_recovery_code(code.id) is True
        assert await storage.delete_recovery_codes_by_user(user.id) == 1
        assert await storage.list_recovery_codes_by_user(user.id) == []

    @pytest.mark.asyncio
    async def test_mark_used_once(self, storage):
        """Two consumers that both saw the code unused cannot both use it."""
        user = await make_user(storage)
        code = await storage.create_recovery_code({"user_id": user.id, "code": "digest-1"})
        code_id = code.id

        first = await storage.get_unused_recovery_code(user.id, "digest-1")
        second = await storage.get_unused_recovery_code(user.id, "digest-1")
        assert first is not None and second is not None

        assert await storage.mark_recovery_code_used(first.id) is True
        assert await storage.mark_recovery_code_used(second.id) is False

        stored = await storage.get_recovery_code(code_id)
        assert stored.used is True
        assert stored.used_at is not None
        assert await storage.mark_recovery_code_used(9999) is False

    @pytest.mark.asyncio
    async def test_mark_used_rolls_back(self, storage):
        """A rolled back consumption leaves the code usable."""
        user = await make_user(storage)
        user_id = user.id
        code = await storage.create_recovery_code({"user_id": user_id, "code": "digest-1"})
        code_id = code.id
        await storage.commit()

        assert await storage.mark_recovery_code_used(code_id) is True
        await storage.rollback()

        found = await storage.get_unused_recovery_code(user_id, "digest-1")
        assert found is not None
        assert found.id == code_id


class TestUnitOfWork:
    """Test commit and rollback."""

    @pytest.mark.asyncio
    async def test_rollback_discards_changes(self, storage):
        """Rolled back writes disappear."""
        user = await make_user(storage)
        user_id = user.id
        await storage.commit()

        await storage.update_user(user_id, {"display_name": "Alice"})
        await storage.create_challenge(challenge_data(user_id, "one"))
        await storage.rollback()

        reloaded = await storage.get_user(user_id)
        assert reloaded.display_name is None
        assert await storage.list_challenges_by_user(user_id) == []

    @pytest.mark.asyncio
    async def test_rollback_restores_deleted(self, storage):
        """Rolled back deletes come back."""
        user = await make_user(storage)
        challenge = await storage.create_challenge(challenge_data(user.id, "one"))
        challenge_id = challenge.id
        await storage.commit()

        await storage.delete_challenge(challenge_id)
        await storage.rollback()

        assert await storage.get_challenge(challenge_id) is not None


class TestStorageProvider:
    """Test backend selection and request scopes."""

    @pytest.mark.asyncio
    async def test_memory_scope_rolls_back_on_error(self):
        """A failing request leaves no trace."""
        provider = StorageProvider(StorageType.MEMORY)

        with pytest.raises(RuntimeError):
            async with provider.session() as storage:
                await make_user(storage)
                raise RuntimeError("boom")

        async with provider.session() as storage:
            assert await storage.get_user_by_username("alice") is None

    @pytest.mark.asyncio
    async def test_memory_scopes_share_data(self):
        """Committed data is visible to later requests."""
        provider = StorageProvider(StorageType.MEMORY)

        async with provider.session() as storage:
            await make_user(storage)

        async with provider.session() as storage:
            assert await storage.get_user_by_username("alice") is not None

    @pytest.mark.asyncio
    async def test_database_scope(self, tmp_path):
        """The database backend creates its schema and commits per scope."""
        provider = StorageProvider(
            StorageType.DATABASE, database_url=f"sqlite:///{tmp_path / 'provider.db'}"
        )
        await provider.startup()
        try:
            async with provider.session() as storage:
                assert isinstance(storage, DatabaseStorage)
                await make_user(storage)

            with pytest.raises(RuntimeError):
                async with provider.session() as storage:
                    await make_user(storage, "bob")
                    raise RuntimeError("boom")

            async with provider.session() as storage:
                assert await storage.get_user_by_username("alice") is not None
                assert await storage.get_user_by_username("bob") is None
        finally:
            await provider.shutdown()

    def test_database_requires_url(self):
        """The database backend cannot start without a URL."""
        with pytest.raises(ValueError):
            StorageProvider(StorageType.DATABASE)

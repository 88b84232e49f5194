"""SQLAlchemy storage backend."""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Type, TypeVar

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from passkey_auth.models import Challenge, Credential, RecoveryCode, User
from passkey_auth.models.base import BaseModel
from passkey_auth.storage.base import AuthStorage, StorageType
from passkey_auth.utils.exceptions import StorageError
from passkey_auth.utils.logging import get_logger
from passkey_auth.utils.timeutils import utcnow

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class DatabaseStorage(AuthStorage):
    """Storage backed by one :class:`AsyncSession` per request."""

    storage_type = StorageType.DATABASE

    def __init__(self, session: AsyncSession):
        """
        Initialize database storage.

        Args:
            session: Request-scoped database session
        """
        self.session = session

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        """Translate driver failures into :class:`StorageError`."""
        try:
            yield
        except SQLAlchemyError as e:
            logger.error("storage_operation_failed", operation=operation, error=str(e))
            raise StorageError(f"Storage operation failed: {operation}") from e

    async def _get(self, model: Type[ModelT], record_id: int) -> Optional[ModelT]:
        async with self._guard(f"get_{model.__tablename__}"):
            return await self.session.get(model, record_id)

    async def _first(self, statement: Any, operation: str) -> Any:
        async with self._guard(operation):
            result = await self.session.execute(statement)
            return result.scalars().first()

    async def _all(self, statement: Any, operation: str) -> List[Any]:
        async with self._guard(operation):
            result = await self.session.execute(statement)
            return list(result.scalars().all())

    async def _insert(self, model: Type[ModelT], data: Dict[str, Any]) -> ModelT:
        async with self._guard(f"create_{model.__tablename__}"):
            record = model(**data)
            self.session.add(record)
            await self.session.flush()
            return record

    async def _update(
        self, model: Type[ModelT], record_id: int, fields: Dict[str, Any]
    ) -> Optional[ModelT]:
        async with self._guard(f"update_{model.__tablename__}"):
            record = await self.session.get(model, record_id)
            if record is None:
                return None
            try:
                record.apply(fields)
            except AttributeError as e:
                raise StorageError(str(e)) from e
            await self.session.flush()
            return record

    async def _execute(self, statement: Any, operation: str) -> int:
        async with self._guard(operation):
            result = await self.session.execute(
                statement.execution_options(synchronize_session="fetch")
            )
            return int(result.rowcount or 0)

    # Users

    async def get_user(self, user_id: int) -> Optional[User]:
        """Fetch a user by id."""
        return await self._get(User, user_id)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        """Fetch a user by email address."""
        return await self._first(select(User).where(User.email == email), "get_user_by_email")

    async def get_user_by_username(self, username: str) -> Optional[User]:
        """Fetch a user by username."""
        return await self._first(
            select(User).where(User.username == username), "get_user_by_username"
        )

    async def create_user(self, data: Dict[str, Any]) -> User:
        """Create a user."""
        return await self._insert(User, data)

    async def update_user(self, user_id: int, fields: Dict[str, Any]) -> Optional[User]:
        """Apply a partial update to a user."""
        return await self._update(User, user_id, fields)

    # Credentials

    async def get_credential(self, credential_pk: int) -> Optional[Credential]:
        """Fetch a credential by its row id."""
        return await self._get(Credential, credential_pk)

    async def get_credential_by_credential_id(
        self, credential_id: str
    ) -> Optional[Credential]:
        """Fetch a credential by its external WebAuthn id."""
        return await self._first(
            select(Credential).where(Credential.credential_id == credential_id),
            "get_credential_by_credential_id",
        )

    async def list_credentials_by_user(self, user_id: int) -> List[Credential]:
        """List all credentials of a user."""
        return await self._all(
            select(Credential)
            .where(Credential.user_id == user_id)
            .order_by(Credential.id),
            "list_credentials_by_user",
        )

    async def create_credential(self, data: Dict[str, Any]) -> Credential:
        """Create a credential."""
        return await self._insert(Credential, data)

    async def update_credential(
        self, credential_pk: int, fields: Dict[str, Any]
    ) -> Optional[Credential]:
        """Apply a partial update to a credential."""
        return await self._update(Credential, credential_pk, fields)

    # Challenges

    async def get_challenge(self, challenge_id: int) -> Optional[Challenge]:
        """Fetch a challenge by id."""
        return await self._get(Challenge, challenge_id)

    async def list_challenges_by_user(self, user_id: int) -> List[Challenge]:
        """List all challenges of a user, newest first."""
        return await self._all(
            select(Challenge)
            .where(Challenge.user_id == user_id)
            .order_by(Challenge.created_at.desc(), Challenge.id.desc()),
            "list_challenges_by_user",
        )

    async def create_challenge(self, data: Dict[str, Any]) -> Challenge:
        """Create a challenge."""
        return await self._insert(Challenge, data)

    async def update_challenge(
        self, challenge_id: int, fields: Dict[str, Any]
    ) -> Optional[Challenge]:
        """Apply a partial update to a challenge."""
        return await self._update(Challenge, challenge_id, fields)

    async def delete_challenge(self, challenge_id: int) -> bool:
        """Delete a challenge; the affected row count decides the winner."""
        deleted = await self._execute(
            delete(Challenge).where(Challenge.id == challenge_id), "delete_challenge"
        )
        return deleted > 0

    async def delete_expired_challenges(self) -> int:
        """Delete every challenge whose expiry has passed."""
        return await self._execute(
            delete(Challenge).where(Challenge.expires_at <= utcnow()),
            "delete_expired_challenges",
        )

    # Recovery codes

    async def get_recovery_code(self, code_pk: int) -> Optional[RecoveryCode]:
        """Fetch a recovery code by id."""
        return await self._get(RecoveryCode, code_pk)

    async def get_unused_recovery_code(
        self, user_id: int, code: str
    ) -> Optional[RecoveryCode]:
        """Fetch an unused recovery code of a user."""
        return await self._first(
            select(RecoveryCode).where(
                RecoveryCode.user_id == user_id,
                RecoveryCode.code == code,
                RecoveryCode.used.is_(False),
            ),
            "get_unused_recovery_code",
        )

    async def list_recovery_codes_by_user(self, user_id: int) -> List[RecoveryCode]:
        """List all recovery codes of a user."""
        return await self._all(
            select(RecoveryCode)
            .where(RecoveryCode.user_id == user_id)
            .order_by(RecoveryCode.id),
            "list_recovery_codes_by_user",
        )

    async def create_recovery_code(self, data: Dict[str, Any]) -> RecoveryCode:
        """Create a recovery code."""
        return await self._insert(RecoveryCode, data)

    async def update_recovery_code(
        self, code_pk: int, fields: Dict[str, Any]
    ) -> Optional[RecoveryCode]:
        """Apply a partial update to a recovery code."""
        return await self._update(RecoveryCode, code_pk, fields)

    async def mark_recovery_code_used(self, code_pk: int) -> bool:
        """Flag an unused recovery code as used; the row count decides the winner."""
        updated = await self._execute(
            update(RecoveryCode)
            .where(RecoveryCode.id == code_pk, RecoveryCode.used.is_(False))
            .values(used=True, used_at=utcnow()),
            "mark_recovery_code_used",
        )
        return updated > 0

    async def delete_recovery_code(self, code_pk: int) -> bool:
        """Delete a recovery code."""
        deleted = await self._execute(
            delete(RecoveryCode).where(RecoveryCode.id == code_pk),
            "delete_recovery_code",
        )
        return deleted > 0

    async def delete_recovery_codes_by_user(self, user_id: int) -> int:
        """Delete every recovery code of a user."""
        return await self._execute(
            delete(RecoveryCode).where(RecoveryCode.user_id == user_id),
            "delete_recovery_codes_by_user",
        )

    # Unit of work

    async def commit(self) -> None:
        """Commit the session."""
        async with self._guard("commit"):
            await self.session.commit()

    async def rollback(self) -> None:
        """Roll back the session."""
        await self.session.rollback()

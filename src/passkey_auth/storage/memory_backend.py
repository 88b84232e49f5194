"""In-process storage backend.

Records live in dictionaries shared by every request through a
:class:`MemoryStore`. Each request gets its own :class:`MemoryStorage` view
that journals its mutations so that :meth:`MemoryStorage.rollback` can undo
them. Data does not survive a restart.
"""

import asyncio
import itertools
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

from passkey_auth.models import Challenge, Credential, RecoveryCode, User
from passkey_auth.models.base import BaseModel
from passkey_auth.storage.base import AuthStorage, StorageType
from passkey_auth.utils.exceptions import StorageError
from passkey_auth.utils.logging import get_logger
from passkey_auth.utils.timeutils import utcnow

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_DEFAULTS: Dict[type, Dict[str, Any]] = {
    User: {"registered": False, "mfa_enabled": False},
    Credential: {"counter": 0, "transports": []},
    Challenge: {"approved": False},
    RecoveryCode: {"used": False},
}


class MemoryStore:
    """Shared record tables and id sequences."""

    def __init__(self) -> None:
        """Initialize empty tables."""
        self.lock = asyncio.Lock()
        self.tables: Dict[type, Dict[int, Any]] = {
            User: {},
            Credential: {},
            Challenge: {},
            RecoveryCode: {},
        }
        self._sequences = {model: itertools.count(1) for model in self.tables}

    def next_id(self, model: type) -> int:
        """Allocate the next primary key for a model."""
        return next(self._sequences[model])

    def clear(self) -> None:
        """Drop every record."""
        for table in self.tables.values():
            table.clear()


class MemoryStorage(AuthStorage):
    """Request-scoped view over a :class:`MemoryStore`."""

    storage_type = StorageType.MEMORY

    def __init__(self, store: Optional[MemoryStore] = None):
        """
        Initialize memory storage.

        Args:
            store: Shared tables; a private store is created when omitted
        """
        self.store = store or MemoryStore()
        self._undo: List[Callable[[], None]] = []

    # Helpers

    def _table(self, model: Type[ModelT]) -> Dict[int, ModelT]:
        return self.store.tables[model]

    def _check_unique(self, model: type, field: str, value: Any, own_id: Optional[int] = None) -> None:
        for record in self._table(model).values():
            if record.id != own_id and getattr(record, field) == value:
                raise StorageError(f"Duplicate value for {model.__tablename__}.{field}")

    async def _insert(self, model: Type[ModelT], data: Dict[str, Any]) -> ModelT:
        async with self.store.lock:
            if model is User:
                self._check_unique(User, "username", data.get("username"))
                self._check_unique(User, "email", data.get("email"))
            elif model is Credential:
                self._check_unique(Credential, "credential_id", data.get("credential_id"))

            values = {**_DEFAULTS[model], **data}
            values.setdefault("created_at", utcnow())
            record = model(**values)
            record.id = self.store.next_id(model)
            table = self._table(model)
            table[record.id] = record
            self._undo.append(lambda: table.pop(record.id, None))
            return record

    async def _update(
        self, model: Type[ModelT], record_id: int, fields: Dict[str, Any]
    ) -> Optional[ModelT]:
        async with self.store.lock:
            record = self._table(model).get(record_id)
            if record is None:
                return None
            if model is User:
                if "username" in fields:
                    self._check_unique(User, "username", fields["username"], record_id)
                if "email" in fields:
                    self._check_unique(User, "email", fields["email"], record_id)

            previous = {key: getattr(record, key, None) for key in fields}
            try:
                record.apply(fields)
            except AttributeError as e:
                record.apply(previous)
                raise StorageError(str(e)) from e
            self._undo.append(lambda: record.apply(previous))
            return record

    def _remove_locked(self, model: type, record_id: int) -> bool:
        table = self._table(model)
        record = table.pop(record_id, None)
        if record is None:
            return False
        self._undo.append(lambda: table.setdefault(record_id, record))
        return True

    async def _delete(self, model: type, record_id: int) -> bool:
        async with self.store.lock:
            return self._remove_locked(model, record_id)

    async def _delete_where(self, model: type, predicate: Callable[[Any], bool]) -> int:
        async with self.store.lock:
            doomed = [rid for rid, rec in self._table(model).items() if predicate(rec)]
            return sum(1 for rid in doomed if self._remove_locked(model, rid))

    # Users

    async def get_user(self, user_id: int) -> Optional[User]:
        """Fetch a user by id."""
        return self._table(User).get(user_id)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        """Fetch a user by email address."""
        return next((u for u in self._table(User).values() if u.email == email), None)

    async def get_user_by_username(self, username: str) -> Optional[User]:
        """Fetch a user by username."""
        return next(
            (u for u in self._table(User).values() if u.username == username), None
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
        return self._table(Credential).get(credential_pk)

    async def get_credential_by_credential_id(
        self, credential_id: str
    ) -> Optional[Credential]:
        """Fetch a credential by its external WebAuthn id."""
        return next(
            (
                c
                for c in self._table(Credential).values()
                if c.credential_id == credential_id
            ),
            None,
        )

    async def list_credentials_by_user(self, user_id: int) -> List[Credential]:
        """List all credentials of a user."""
        return [c for c in self._table(Credential).values() if c.user_id == user_id]

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
        return self._table(Challenge).get(challenge_id)

    async def list_challenges_by_user(self, user_id: int) -> List[Challenge]:
        """List all challenges of a user, newest first."""
        challenges = [
            c for c in self._table(Challenge).values() if c.user_id == user_id
        ]
        return sorted(challenges, key=lambda c: (c.created_at, c.id), reverse=True)

    async def create_challenge(self, data: Dict[str, Any]) -> Challenge:
        """Create a challenge."""
        return await self._insert(Challenge, data)

    async def update_challenge(
        self, challenge_id: int, fields: Dict[str, Any]
    ) -> Optional[Challenge]:
        """Apply a partial update to a challenge."""
        return await self._update(Challenge, challenge_id, fields)

    async def delete_challenge(self, challenge_id: int) -> bool:
        """Delete a challenge; only the first caller wins."""
        return await self._delete(Challenge, challenge_id)

    async def delete_expired_challenges(self) -> int:
        """Delete every challenge whose expiry has passed."""
        now = utcnow()
        return await self._delete_where(Challenge, lambda c: c.expires_at <= now)

    # Recovery codes

    async def get_recovery_code(self, code_pk: int) -> Optional[RecoveryCode]:
        """Fetch a recovery code by id."""
        return self._table(RecoveryCode).get(code_pk)

    async def get_unused_recovery_code(
        self, user_id: int, code: str
    ) -> Optional[RecoveryCode]:
        """Fetch an unused recovery code of a user."""
        return next(
            (
                rc
                for rc in self._table(RecoveryCode).values()
                if rc.user_id == user_id and rc.code == code and not rc.used
            ),
            None,
        )

    async def list_recovery_codes_by_user(self, user_id: int) -> List[RecoveryCode]:
        """List all recovery codes of a user."""
        return [
            rc for rc in self._table(RecoveryCode).values() if rc.user_id == user_id
        ]

    async def create_recovery_code(self, data: Dict[str, Any]) -> RecoveryCode:
        """Create a recovery code."""
        return await self._insert(RecoveryCode, data)

    async def update_recovery_code(
        self, code_pk: int, fields: Dict[str, Any]
    ) -> Optional[RecoveryCode]:
        """Apply a partial update to a recovery code."""
        return await self._update(RecoveryCode, code_pk, fields)

    async def mark_recovery_code_used(self, code_pk: int) -> bool:
        """Flag an unused recovery code as used; only the first caller wins."""
        async with self.store.lock:
            record = self._table(RecoveryCode).get(code_pk)
            if record is None or record.used:
                return False
            previous = {"used": record.used, "used_at": record.used_at}
            record.apply({"used": True, "used_at": utcnow()})
            self._undo.append(lambda: record.apply(previous))
            return True

    async def delete_recovery_code(self, code_pk: int) -> bool:
        """Delete a recovery code."""
        return await self._delete(RecoveryCode, code_pk)

    async def delete_recovery_codes_by_user(self, user_id: int) -> int:
        """Delete every recovery code of a user."""
        return await self._delete_where(RecoveryCode, lambda rc: rc.user_id == user_id)

    # Unit of work

    async def commit(self) -> None:
        """Forget the undo journal."""
        self._undo.clear()

    async def rollback(self) -> None:
        """Undo this view's mutations, newest first."""
        async with self.store.lock:
            while self._undo:
                self._undo.pop()()
        logger.debug("memory_storage_rolled_back")

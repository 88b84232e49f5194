"""Base storage abstraction layer.

Every write path is scoped by primary key. Backends flush each operation
immediately; the unit of work is committed or rolled back by the
:class:`~passkey_auth.storage.provider.StorageProvider` at the end of a
request.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional

from passkey_auth.models import Challenge, Credential, RecoveryCode, User


class StorageType(str, Enum):
    """Types of storage backends."""

    DATABASE = "database"
    MEMORY = "memory"


class AuthStorage(ABC):
    """Abstract base class for authentication storage backends."""

    storage_type: StorageType

    # Users

    @abstractmethod
    async def get_user(self, user_id: int) -> Optional[User]:
        """Fetch a user by id."""

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[User]:
        """Fetch a user by email address."""

    @abstractmethod
    async def get_user_by_username(self, username: str) -> Optional[User]:
        """Fetch a user by username."""

    @abstractmethod
    async def create_user(self, data: Dict[str, Any]) -> User:
        """
        Create a user.

        Args:
            data: Column values; ``username`` and ``email`` are required

        Returns:
            The stored user with its id assigned
        """

    @abstractmethod
    async def update_user(self, user_id: int, fields: Dict[str, Any]) -> Optional[User]:
        """
        Apply a partial update to a user.

        Returns:
            The updated user, or None if it does not exist
        """

    # Credentials

    @abstractmethod
    async def get_credential(self, credential_pk: int) -> Optional[Credential]:
        """Fetch a credential by its row id."""

    @abstractmethod
    async def get_credential_by_credential_id(
        self, credential_id: str
    ) -> Optional[Credential]:
        """Fetch a credential by its external WebAuthn id."""

    @abstractmethod
    async def list_credentials_by_user(self, user_id: int) -> List[Credential]:
        """List all credentials of a user."""

    @abstractmethod
    async def create_credential(self, data: Dict[str, Any]) -> Credential:
        """Create a credential."""

    @abstractmethod
    async def update_credential(
        self, credential_pk: int, fields: Dict[str, Any]
    ) -> Optional[Credential]:
        """Apply a partial update to a credential."""

    # Challenges

    @abstractmethod
    async def get_challenge(self, challenge_id: int) -> Optional[Challenge]:
        """Fetch a challenge by id, expired or not."""

    @abstractmethod
    async def list_challenges_by_user(self, user_id: int) -> List[Challenge]:
        """List all challenges of a user, newest first."""

    @abstractmethod
    async def create_challenge(self, data: Dict[str, Any]) -> Challenge:
        """Create a challenge."""

    @abstractmethod
    async def update_challenge(
        self, challenge_id: int, fields: Dict[str, Any]
    ) -> Optional[Challenge]:
        """Apply a partial update to a challenge."""

    @abstractmethod
    async def delete_challenge(self, challenge_id: int) -> bool:
        """
        Delete a challenge atomically.

        Returns:
            True only for the caller that actually removed the row
        """

    @abstractmethod
    async def delete_expired_challenges(self) -> int:
        """
        Delete every challenge whose expiry has passed.

        Returns:
            Number of deleted challenges
        """

    # Recovery codes

    @abstractmethod
    async def get_recovery_code(self, code_pk: int) -> Optional[RecoveryCode]:
        """Fetch a recovery code by id."""

    @abstractmethod
    async def get_unused_recovery_code(
        self, user_id: int, code: str
    ) -> Optional[RecoveryCode]:
        """
        Fetch an unused recovery code of a user.

        Args:
            user_id: Owner of the code
            code: Stored (digested) form of the code
        """

    @abstractmethod
    async def list_recovery_codes_by_user(self, user_id: int) -> List[RecoveryCode]:
        """List all recovery codes of a user, used ones included."""

    @abstractmethod
    async def create_recovery_code(self, data: Dict[str, Any]) -> RecoveryCode:
        """Create a recovery code."""

    @abstractmethod
    async def update_recovery_code(
        self, code_pk: int, fields: Dict[str, Any]
    ) -> Optional[RecoveryCode]:
        """Apply a partial update to a recovery code."""

    @abstractmethod
    async def mark_recovery_code_used(self, code_pk: int) -> bool:
        """
        Flag a recovery code as used if it is still unused.

        Concurrent callers race on this update; exactly one sees True.

        Returns:
            True if this call consumed the code
        """

    @abstractmethod
    async def delete_recovery_code(self, code_pk: int) -> bool:
        """Delete a recovery code."""

    @abstractmethod
    async def delete_recovery_codes_by_user(self, user_id: int) -> int:
        """
        Delete every recovery code of a user.

        Returns:
            Number of deleted codes
        """

    # Unit of work

    @abstractmethod
    async def commit(self) -> None:
        """Make the pending changes durable."""

    @abstractmethod
    async def rollback(self) -> None:
        """Discard the pending changes."""

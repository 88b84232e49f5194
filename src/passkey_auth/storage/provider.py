"""Storage backend selection and request-scoped units of work.

The backend is chosen once, at startup, from configuration. A failing
database is reported as an error; it is never swapped for the in-memory
backend at runtime.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from passkey_auth.config import Settings
from passkey_auth.core.database import create_engine, create_session_factory, init_models
from passkey_auth.storage.base import AuthStorage, StorageType
from passkey_auth.storage.database_backend import DatabaseStorage
from passkey_auth.storage.memory_backend import MemoryStorage, MemoryStore
from passkey_auth.utils.logging import get_logger

logger = get_logger(__name__)


class StorageProvider:
    """Hands out request-scoped storage for the configured backend."""

    def __init__(self, storage_type: StorageType, database_url: Optional[str] = None, echo: bool = False):
        """
        Initialize storage provider.

        Args:
            storage_type: Backend to use for the lifetime of the process
            database_url: Required for the database backend
            echo: Log SQL statements
        """
        self.storage_type = StorageType(storage_type)
        self.engine = None
        self.session_factory = None
        self.memory_store: Optional[MemoryStore] = None

        if self.storage_type == StorageType.DATABASE:
            if not database_url:
                raise ValueError("database_url is required for the database backend")
            self.engine = create_engine(database_url, echo=echo)
            self.session_factory = create_session_factory(self.engine)
        else:
            self.memory_store = MemoryStore()

        logger.info("storage_backend_selected", backend=self.storage_type.value)

    @classmethod
    def from_settings(cls, settings: Settings) -> "StorageProvider":
        """Build the provider described by application settings."""
        return cls(
            StorageType(settings.storage_backend),
            database_url=settings.database_url,
            echo=settings.debug,
        )

    async def startup(self) -> None:
        """Prepare the backend (create tables for the database backend)."""
        if self.engine is not None:
            await init_models(self.engine)

    async def shutdown(self) -> None:
        """Release backend resources."""
        if self.engine is not None:
            await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AuthStorage]:
        """Yield storage that commits on success and rolls back on error."""
        if self.session_factory is not None:
            async with self.session_factory() as db_session:
                storage: AuthStorage = DatabaseStorage(db_session)
                try:
                    yield storage
                    await storage.commit()
                except BaseException:
                    await storage.rollback()
                    raise
        else:
            storage = MemoryStorage(self.memory_store)
            try:
                yield storage
                await storage.commit()
            except BaseException:
                await storage.rollback()
                raise

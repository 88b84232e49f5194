"""Persistence layer for users, credentials, challenges and recovery codes."""

from passkey_auth.storage.base import AuthStorage, StorageType
from passkey_auth.storage.database_backend import DatabaseStorage
from passkey_auth.storage.memory_backend import MemoryStorage
from passkey_auth.storage.provider import StorageProvider

__all__ = [
    "AuthStorage",
    "DatabaseStorage",
    "MemoryStorage",
    "StorageProvider",
    "StorageType",
]

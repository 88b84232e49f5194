"""Base model classes for database models."""

from typing import Any, Dict

from sqlalchemy import Column, DateTime
from sqlalchemy.orm import declarative_base

from passkey_auth.utils.timeutils import utcnow

Base: Any = declarative_base()


class TimestampMixin:
    """Mixin for adding a creation timestamp."""

    created_at = Column(DateTime, nullable=False, default=utcnow)


class BaseModel(Base, TimestampMixin):
    """Base model class with common helpers."""

    __abstract__ = True

    def apply(self, fields: Dict[str, Any]) -> None:
        """Apply a partial update to mapped attributes."""
        for key, value in fields.items():
            if not hasattr(self, key):
                raise AttributeError(f"{type(self).__name__} has no field {key!r}")
            setattr(self, key, value)

"""Clock helpers.

All persisted timestamps are naive UTC so that values read back from SQLite
and PostgreSQL compare consistently with freshly computed ones.
"""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Return the current UTC time without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def expires_in(seconds: float) -> datetime:
    """Return the naive UTC instant ``seconds`` from now."""
    return utcnow() + timedelta(seconds=seconds)


def is_expired(expires_at: datetime) -> bool:
    """Check whether an expiry timestamp lies in the past."""
    return utcnow() >= expires_at

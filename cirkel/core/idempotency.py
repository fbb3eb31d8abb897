"""
cirkel/core/idempotency.py
Idempotency markers shared by every at-least-once entry point.

Markers are written inside the caller's session so a marker commits
together with the write it guards, or not at all.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, insert, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cirkel.core.database import get_db_session, idempotency_keys


class DuplicateKeyError(Exception):
    """Raised when a marker for the key already exists."""

    def __init__(self, key: str):
        super().__init__(f"Idempotency key already recorded: {key}")
        self.key = key


def check_key(key: str, session: Optional[Session] = None) -> bool:
    """
    Check if idempotency key exists (read-only).

    Args:
        key: Idempotency key string
        session: Reuse an open session (same transaction) when given

    Returns:
        True if key exists, False otherwise
    """
    query = select(idempotency_keys.c.key).where(idempotency_keys.c.key == key)
    if session is not None:
        return session.execute(query).first() is not None
    with get_db_session() as own_session:
        return own_session.execute(query).first() is not None


def mark_key(key: str, scope: str, session: Session) -> None:
    """
    Record key inside the caller's transaction.

    A duplicate leaves the session unusable; the caller lets the error
    escape so the whole transaction rolls back.

    Raises:
        DuplicateKeyError: another writer recorded the key first
    """
    try:
        session.execute(
            insert(idempotency_keys).values(
                key=key,
                scope=scope,
                created_at=datetime.now(timezone.utc),
            )
        )
    except IntegrityError:
        raise DuplicateKeyError(key)


def check_and_set(key: str, operation: str = "generic") -> bool:
    """
    Check if idempotency key exists, and set it if not (atomic).

    Returns:
        True if key was already seen (duplicate request)
        False if key is new (first time seeing it)
    """
    try:
        with get_db_session() as session:
            mark_key(key, operation, session)
        return False
    except DuplicateKeyError:
        return True


def clear_all_keys() -> None:
    """Clear all idempotency keys (testing only)."""
    with get_db_session() as session:
        session.execute(delete(idempotency_keys))

"""
User domain service.
- create_user(user_id, display_name): user row + free-tier entitlement, one transaction
- get_or_create_user(user_id)
- get_user(user_id)
- normalize_display_name()
"""

from datetime import datetime, timezone
from typing import Optional
import logging

from sqlalchemy import select, insert
from sqlalchemy.exc import IntegrityError

from cirkel.core.database import get_db_session, users as app_users, ensure_utc
from cirkel.core.errors import ConflictError
from cirkel.features.entitlements.service import create_entitlement
from cirkel.models.user import User


logger = logging.getLogger(__name__)


def normalize_display_name(user_id: str, display_name: Optional[str]) -> str:
    return User.normalized_display_name(user_id, display_name)


def _row_to_user(row) -> User:
    return User(
        user_id=row.user_id,
        created_at=ensure_utc(row.created_at),
        display_name=row.display_name or normalize_display_name(row.user_id, None),
        status=row.status,
        followers_count=row.followers_count,
        following_count=row.following_count,
    )


def get_user(user_id: str) -> Optional[User]:
    with get_db_session() as session:
        row = session.execute(select(app_users).where(app_users.c.user_id == user_id)).first()
        if not row:
            return None
        return _row_to_user(row)


def create_user(user_id: str, display_name: Optional[str] = None) -> User:
    """
    Create the account and its free-tier entitlement record together.

    Raises:
        ConflictError: the user already exists
    """
    now = datetime.now(timezone.utc)
    display = normalize_display_name(user_id, display_name)
    try:
        with get_db_session() as session:
            session.execute(
                insert(app_users).values(
                    user_id=user_id,
                    display_name=display,
                    status="active",
                    followers_count=0,
                    following_count=0,
                    created_at=now,
                )
            )
            create_entitlement(user_id, session, now=now)
    except IntegrityError:
        raise ConflictError(f"User {user_id} already exists", code="user_exists")

    logger.info("[users] created", extra={"user_id": user_id, "event_type": "user.created"})
    return User(user_id=user_id, created_at=now, display_name=display, status="active")


def get_or_create_user(user_id: str) -> User:
    existing = get_user(user_id)
    if existing:
        return existing
    try:
        return create_user(user_id)
    except ConflictError:
        # Lost a creation race; the winner's row is authoritative
        return get_user(user_id)

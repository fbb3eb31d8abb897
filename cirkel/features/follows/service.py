"""
cirkel/features/follows/service.py

Follow graph on top of the paired counter primitive.

followingCount(A) == |edges where follower = A| and
followersCount(B) == |edges where following = B| after every commit.
"""

from datetime import datetime, timezone
from typing import List
import logging

from sqlalchemy import select, insert, delete, and_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cirkel.core.database import get_db_session, follow_edges, users, ensure_utc
from cirkel.core.errors import (
    AlreadyFollowingError,
    NotFollowingError,
    NotFoundError,
    ValidationError,
)
from cirkel.core.metrics import follow_mutations_total
from cirkel.features.counters.service import CounterRef, apply_paired
from cirkel.models.follow import FollowStats, UserSummary


logger = logging.getLogger(__name__)


def _user_ref(user_id: str) -> CounterRef:
    return CounterRef(table=users, key={"user_id": user_id})


def _edge_clause(follower_id: str, following_id: str):
    return and_(
        follow_edges.c.follower_id == follower_id,
        follow_edges.c.following_id == following_id,
    )


def _edge_exists(session: Session, follower_id: str, following_id: str) -> bool:
    row = session.execute(
        select(follow_edges.c.follower_id).where(_edge_clause(follower_id, following_id))
    ).first()
    return row is not None


def _validate_pair(follower_id: str, following_id: str) -> None:
    if not follower_id or not following_id:
        raise ValidationError("Both user ids are required")
    if follower_id == following_id:
        raise ValidationError("Users cannot follow themselves", code="self_follow")


def follow(follower_id: str, following_id: str) -> None:
    """
    Create the edge and bump both counters in one batch.

    Raises:
        ValidationError: self-follow
        AlreadyFollowingError: the edge exists (including a concurrent winner)
        NotFoundError: either user is missing
    """
    _validate_pair(follower_id, following_id)

    def guard(session: Session) -> None:
        if _edge_exists(session, follower_id, following_id):
            raise AlreadyFollowingError(f"{follower_id} already follows {following_id}")

    def mutate(session: Session) -> None:
        try:
            session.execute(
                insert(follow_edges).values(
                    follower_id=follower_id,
                    following_id=following_id,
                    created_at=datetime.now(timezone.utc),
                )
            )
        except IntegrityError:
            raise AlreadyFollowingError(f"{follower_id} already follows {following_id}")

    apply_paired(
        _user_ref(follower_id), "following_count", 1,
        _user_ref(following_id), "followers_count", 1,
        guard=guard,
        mutate=mutate,
    )
    follow_mutations_total.inc(labels={"type": "follow"})
    logger.info(
        "[follows] follow",
        extra={"user_id": follower_id, "subject_id": following_id, "event_type": "follow.created"},
    )


def unfollow(follower_id: str, following_id: str) -> None:
    """
    Delete the edge and decrement both counters in one batch.

    Raises:
        NotFollowingError: no such edge
    """
    _validate_pair(follower_id, following_id)

    def guard(session: Session) -> None:
        if not _edge_exists(session, follower_id, following_id):
            raise NotFollowingError(f"{follower_id} does not follow {following_id}")

    def mutate(session: Session) -> None:
        result = session.execute(delete(follow_edges).where(_edge_clause(follower_id, following_id)))
        if result.rowcount == 0:
            # A concurrent unfollow removed it after the guard ran
            raise NotFollowingError(f"{follower_id} does not follow {following_id}")

    apply_paired(
        _user_ref(follower_id), "following_count", -1,
        _user_ref(following_id), "followers_count", -1,
        guard=guard,
        mutate=mutate,
    )
    follow_mutations_total.inc(labels={"type": "unfollow"})
    logger.info(
        "[follows] unfollow",
        extra={"user_id": follower_id, "subject_id": following_id, "event_type": "follow.deleted"},
    )


def is_following(follower_id: str, following_id: str) -> bool:
    with get_db_session() as session:
        return _edge_exists(session, follower_id, following_id)


def _summaries(rows) -> List[UserSummary]:
    return [
        UserSummary(
            user_id=row.user_id,
            display_name=row.display_name,
            followers_count=row.followers_count,
            following_count=row.following_count,
            followed_at=ensure_utc(row.created_at),
        )
        for row in rows
    ]


def get_followers(user_id: str, limit: int = 100) -> List[UserSummary]:
    """Users following `user_id`, most recent first."""
    query = (
        select(
            users.c.user_id,
            users.c.display_name,
            users.c.followers_count,
            users.c.following_count,
            follow_edges.c.created_at,
        )
        .select_from(follow_edges.join(users, users.c.user_id == follow_edges.c.follower_id))
        .where(follow_edges.c.following_id == user_id)
        .order_by(follow_edges.c.created_at.desc())
        .limit(limit)
    )
    with get_db_session() as session:
        return _summaries(session.execute(query).all())


def get_following(user_id: str, limit: int = 100) -> List[UserSummary]:
    """Users `user_id` follows, most recent first."""
    query = (
        select(
            users.c.user_id,
            users.c.display_name,
            users.c.followers_count,
            users.c.following_count,
            follow_edges.c.created_at,
        )
        .select_from(follow_edges.join(users, users.c.user_id == follow_edges.c.following_id))
        .where(follow_edges.c.follower_id == user_id)
        .order_by(follow_edges.c.created_at.desc())
        .limit(limit)
    )
    with get_db_session() as session:
        return _summaries(session.execute(query).all())


def get_stats(user_id: str) -> FollowStats:
    with get_db_session() as session:
        row = session.execute(
            select(users.c.followers_count, users.c.following_count).where(users.c.user_id == user_id)
        ).first()
    if not row:
        raise NotFoundError(f"User {user_id} not found")
    return FollowStats(
        user_id=user_id,
        followers_count=row.followers_count,
        following_count=row.following_count,
    )


def count_edges() -> int:
    """Total edge count; used by consistency checks."""
    with get_db_session() as session:
        return session.execute(select(func.count()).select_from(follow_edges)).scalar_one()

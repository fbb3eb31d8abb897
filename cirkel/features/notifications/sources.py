"""
The three live notification sources, each loaded as a full snapshot.

- join requests: recipient is the project owner, status pending/read
- request updates: recipient is the requester, status accepted/rejected
- unread digest: one synthetic event while the user's unread counters sum > 0
"""

from typing import Callable, List, Optional

from sqlalchemy import select, func

from cirkel.core.database import (
    get_db_session,
    join_requests,
    conversation_participants,
    users,
    ensure_utc,
)
from cirkel.models.join_request import JoinRequestStatus
from cirkel.models.notification import DIGEST_SUBJECT_ID, NotificationEvent, NotificationKind
from cirkel.realtime.hub import SnapshotHub, Subscription, hub as default_hub


OWNER_STATUSES = (JoinRequestStatus.PENDING.value, JoinRequestStatus.READ.value)
REQUESTER_STATUSES = (JoinRequestStatus.ACCEPTED.value, JoinRequestStatus.REJECTED.value)


def topic_for(kind: NotificationKind, user_id: str) -> str:
    return f"{kind.value}:{user_id}"


def load_join_requests(user_id: str) -> List[NotificationEvent]:
    with get_db_session() as session:
        rows = session.execute(
            select(join_requests)
            .where(join_requests.c.project_owner_id == user_id)
            .where(join_requests.c.status.in_(OWNER_STATUSES))
        ).all()
    return [
        NotificationEvent(
            kind=NotificationKind.JOIN_REQUEST,
            subject_id=row.id,
            occurred_at=ensure_utc(row.created_at),
            read=row.status == JoinRequestStatus.READ.value,
            data={
                "projectId": row.project_id,
                "requesterId": row.requester_id,
                "message": row.message,
                "status": row.status,
            },
        )
        for row in rows
    ]


def load_request_updates(user_id: str) -> List[NotificationEvent]:
    with get_db_session() as session:
        rows = session.execute(
            select(join_requests)
            .where(join_requests.c.requester_id == user_id)
            .where(join_requests.c.status.in_(REQUESTER_STATUSES))
        ).all()
    # Resolved requests stay unread until deleted; there is no dismiss state
    return [
        NotificationEvent(
            kind=NotificationKind.REQUEST_UPDATE,
            subject_id=row.id,
            occurred_at=ensure_utc(row.updated_at),
            read=False,
            data={
                "projectId": row.project_id,
                "ownerId": row.project_owner_id,
                "status": row.status,
            },
        )
        for row in rows
    ]


def load_unread_digest(user_id: str) -> List[NotificationEvent]:
    with get_db_session() as session:
        totals = session.execute(
            select(
                func.coalesce(func.sum(conversation_participants.c.unread_count), 0).label("unread"),
                func.max(conversation_participants.c.last_message_at).label("latest"),
                func.count().label("conversations"),
            )
            .where(conversation_participants.c.user_id == user_id)
            .where(conversation_participants.c.unread_count > 0)
        ).one()
        last_read_at = session.execute(
            select(users.c.last_notification_read_at).where(users.c.user_id == user_id)
        ).scalar_one_or_none()

    unread = int(totals.unread or 0)
    if unread <= 0 or totals.latest is None:
        return []

    occurred_at = ensure_utc(totals.latest)
    marker = ensure_utc(last_read_at)
    return [
        NotificationEvent(
            kind=NotificationKind.UNREAD_DIGEST,
            subject_id=DIGEST_SUBJECT_ID,
            occurred_at=occurred_at,
            read=marker is not None and marker >= occurred_at,
            data={"unreadCount": unread, "conversations": int(totals.conversations)},
        )
    ]


LOADERS = {
    NotificationKind.JOIN_REQUEST: load_join_requests,
    NotificationKind.REQUEST_UPDATE: load_request_updates,
    NotificationKind.UNREAD_DIGEST: load_unread_digest,
}


def subscribe_source(
    kind: NotificationKind,
    user_id: str,
    callback: Callable[[List[NotificationEvent]], None],
    hub: Optional[SnapshotHub] = None,
) -> Subscription:
    """Observe one source for one user; the caller must cancel the handle."""
    loader = LOADERS[kind]
    return (hub or default_hub).subscribe(topic_for(kind, user_id), lambda: loader(user_id), callback)


def publish_change(kind: NotificationKind, user_id: str, hub: Optional[SnapshotHub] = None) -> int:
    """Announce a committed change to one user's source."""
    return (hub or default_hub).publish(topic_for(kind, user_id))

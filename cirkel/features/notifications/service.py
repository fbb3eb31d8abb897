"""
cirkel/features/notifications/service.py

Notification feed boundary:
- get_feed: merged, sorted, filtered feed plus the unread total
- delete_event: joinRequest / requestUpdate delete the record; the digest marks all read
- mark_digest_read: zero every contributing counter and move the last-read marker
"""

from datetime import datetime, timezone
from typing import Optional
import logging

from sqlalchemy import update

from cirkel.core.database import get_db_session, conversation_participants, users
from cirkel.core.errors import NotFoundError, ValidationError
from cirkel.features.join_requests.service import delete_join_request
from cirkel.features.notifications.aggregator import merge_feed
from cirkel.features.notifications.sources import LOADERS, publish_change
from cirkel.models.notification import (
    DIGEST_SUBJECT_ID,
    FeedFilter,
    NotificationFeed,
    NotificationKind,
)


logger = logging.getLogger(__name__)


def parse_filter(value: Optional[str]) -> FeedFilter:
    try:
        return FeedFilter(value or FeedFilter.ALL.value)
    except ValueError:
        allowed = ", ".join(f.value for f in FeedFilter)
        raise ValidationError(f"Unknown filter {value!r}; expected one of: {allowed}")


def parse_kind(value: str) -> NotificationKind:
    try:
        return NotificationKind(value)
    except ValueError:
        raise NotFoundError(f"Unknown notification kind {value!r}")


def get_feed(user_id: str, feed_filter: FeedFilter = FeedFilter.ALL) -> NotificationFeed:
    """Load each source once and merge."""
    snapshots = [loader(user_id) for loader in LOADERS.values()]
    return merge_feed(user_id, snapshots, feed_filter)


def mark_digest_read(user_id: str, now: Optional[datetime] = None) -> int:
    """
    Zero all of the user's unread counters and set the last-read marker.

    One write per affected conversation plus the marker, in one transaction.
    Returns the number of conversations cleared.
    """
    moment = now or datetime.now(timezone.utc)
    with get_db_session() as session:
        result = session.execute(
            update(conversation_participants)
            .where(conversation_participants.c.user_id == user_id)
            .where(conversation_participants.c.unread_count > 0)
            .values(unread_count=0, last_read_at=moment)
        )
        cleared = result.rowcount
        marker = session.execute(
            update(users)
            .where(users.c.user_id == user_id)
            .values(last_notification_read_at=moment)
        )
        if marker.rowcount == 0:
            raise NotFoundError(f"User {user_id} not found")

    publish_change(NotificationKind.UNREAD_DIGEST, user_id)
    logger.info(
        "[notifications] digest read",
        extra={"user_id": user_id, "event_type": "notifications.digest_read"},
    )
    return cleared


def delete_event(user_id: str, kind: NotificationKind, subject_id: str) -> None:
    """Deleting the digest is 'mark all read'; no message is removed."""
    kind = NotificationKind(kind)
    if kind == NotificationKind.UNREAD_DIGEST:
        if subject_id != DIGEST_SUBJECT_ID:
            raise NotFoundError(f"Notification {kind.value}/{subject_id} not found")
        mark_digest_read(user_id)
        return
    delete_join_request(subject_id, user_id, kind)
    logger.info(
        "[notifications] deleted",
        extra={"user_id": user_id, "subject_id": subject_id, "event_type": f"notifications.delete.{kind.value}"},
    )

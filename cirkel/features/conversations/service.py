"""
Per-participant unread counters for conversations.

These counters back the unread digest; message bodies are stored elsewhere.
"""

from datetime import datetime, timezone
from typing import Iterable, List, Optional
import logging

from sqlalchemy import select, insert, update

from cirkel.core.database import get_db_session, conversation_participants
from cirkel.core.errors import ValidationError
from cirkel.features.notifications.sources import publish_change
from cirkel.models.notification import NotificationKind


logger = logging.getLogger(__name__)


def _participant_clause(conversation_id: str, user_id: str):
    return (
        (conversation_participants.c.conversation_id == conversation_id)
        & (conversation_participants.c.user_id == user_id)
    )


def record_message(
    conversation_id: str,
    sender_id: str,
    participant_ids: Iterable[str],
    sent_at: Optional[datetime] = None,
) -> List[str]:
    """
    Count one new message against every participant except the sender.

    All counters move in one transaction. Returns the recipients whose
    unread counter was incremented.
    """
    moment = sent_at or datetime.now(timezone.utc)
    participants = list(dict.fromkeys(p for p in participant_ids if p))
    if sender_id not in participants:
        participants.append(sender_id)
    recipients = [p for p in participants if p != sender_id]
    if not recipients:
        raise ValidationError("A message needs at least one recipient")

    with get_db_session() as session:
        existing = {
            row.user_id
            for row in session.execute(
                select(conversation_participants.c.user_id)
                .where(conversation_participants.c.conversation_id == conversation_id)
                .where(conversation_participants.c.user_id.in_(participants))
            ).all()
        }
        for user_id in participants:
            bump = 1 if user_id != sender_id else 0
            if user_id in existing:
                values = {"last_message_at": moment}
                if bump:
                    values["unread_count"] = conversation_participants.c.unread_count + bump
                else:
                    values["last_read_at"] = moment
                session.execute(
                    update(conversation_participants)
                    .where(_participant_clause(conversation_id, user_id))
                    .values(**values)
                )
            else:
                session.execute(
                    insert(conversation_participants).values(
                        conversation_id=conversation_id,
                        user_id=user_id,
                        unread_count=bump,
                        last_message_at=moment,
                        last_read_at=None if bump else moment,
                    )
                )

    for user_id in recipients:
        publish_change(NotificationKind.UNREAD_DIGEST, user_id)
    logger.debug(f"[conversations] message in {conversation_id} for {len(recipients)} recipient(s)")
    return recipients


def get_unread_count(user_id: str, conversation_id: Optional[str] = None) -> int:
    query = select(conversation_participants.c.unread_count).where(conversation_participants.c.user_id == user_id)
    if conversation_id:
        query = query.where(conversation_participants.c.conversation_id == conversation_id)
    with get_db_session() as session:
        return sum(row.unread_count for row in session.execute(query).all())


def mark_conversation_read(conversation_id: str, user_id: str, now: Optional[datetime] = None) -> None:
    """Zero one conversation's counter (opening that conversation)."""
    moment = now or datetime.now(timezone.utc)
    with get_db_session() as session:
        result = session.execute(
            update(conversation_participants)
            .where(_participant_clause(conversation_id, user_id))
            .where(conversation_participants.c.unread_count > 0)
            .values(unread_count=0, last_read_at=moment)
        )
        changed = result.rowcount > 0
    if changed:
        publish_change(NotificationKind.UNREAD_DIGEST, user_id)

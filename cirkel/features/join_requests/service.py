"""
Join request records.

Lifecycle: pending -> read -> accepted | rejected. Every committed write
publishes one change to each notification source it affects.
"""

from datetime import datetime, timezone
from typing import Optional
import logging
import uuid

from sqlalchemy import select, insert, update, delete

from cirkel.core.database import get_db_session, join_requests, ensure_utc
from cirkel.core.errors import ConflictError, NotFoundError, ValidationError
from cirkel.features.notifications.sources import publish_change
from cirkel.models.join_request import JoinRequest, JoinRequestStatus
from cirkel.models.notification import NotificationKind


logger = logging.getLogger(__name__)


def _row_to_request(row) -> JoinRequest:
    return JoinRequest(
        id=row.id,
        project_id=row.project_id,
        project_owner_id=row.project_owner_id,
        requester_id=row.requester_id,
        message=row.message,
        status=JoinRequestStatus(row.status),
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
    )


def get_join_request(request_id: str) -> JoinRequest:
    with get_db_session() as session:
        row = session.execute(select(join_requests).where(join_requests.c.id == request_id)).first()
    if not row:
        raise NotFoundError(f"Join request {request_id} not found")
    return _row_to_request(row)


def submit_join_request(
    project_id: str,
    project_owner_id: str,
    requester_id: str,
    message: Optional[str] = None,
    now: Optional[datetime] = None,
) -> JoinRequest:
    if requester_id == project_owner_id:
        raise ValidationError("Project owners cannot request to join their own project")

    created = now or datetime.now(timezone.utc)
    request_id = str(uuid.uuid4())
    with get_db_session() as session:
        open_request = session.execute(
            select(join_requests.c.id)
            .where(join_requests.c.project_id == project_id)
            .where(join_requests.c.requester_id == requester_id)
            .where(join_requests.c.status.in_((JoinRequestStatus.PENDING.value, JoinRequestStatus.READ.value)))
        ).first()
        if open_request:
            raise ConflictError("A join request for this project is already open", code="request_exists")
        session.execute(
            insert(join_requests).values(
                id=request_id,
                project_id=project_id,
                project_owner_id=project_owner_id,
                requester_id=requester_id,
                message=message,
                status=JoinRequestStatus.PENDING.value,
                created_at=created,
                updated_at=created,
            )
        )

    publish_change(NotificationKind.JOIN_REQUEST, project_owner_id)
    logger.info(
        "[join_requests] submitted",
        extra={"user_id": requester_id, "subject_id": request_id, "event_type": "join_request.submitted"},
    )
    return get_join_request(request_id)


def mark_join_request_read(request_id: str, owner_id: str, now: Optional[datetime] = None) -> JoinRequest:
    """pending -> read for the project owner. Already-read requests are left alone."""
    moment = now or datetime.now(timezone.utc)
    with get_db_session() as session:
        result = session.execute(
            update(join_requests)
            .where(join_requests.c.id == request_id)
            .where(join_requests.c.project_owner_id == owner_id)
            .where(join_requests.c.status == JoinRequestStatus.PENDING.value)
            .values(status=JoinRequestStatus.READ.value, updated_at=moment)
        )
        changed = result.rowcount > 0

    request = get_join_request(request_id)
    if request.project_owner_id != owner_id:
        raise NotFoundError(f"Join request {request_id} not found")
    if changed:
        publish_change(NotificationKind.JOIN_REQUEST, owner_id)
    return request


def resolve_join_request(
    request_id: str,
    owner_id: str,
    accepted: bool,
    now: Optional[datetime] = None,
) -> JoinRequest:
    """
    Accept or reject an open request.

    Moves it off the owner's feed and onto the requester's.
    """
    status = JoinRequestStatus.ACCEPTED if accepted else JoinRequestStatus.REJECTED
    moment = now or datetime.now(timezone.utc)
    with get_db_session() as session:
        row = session.execute(
            select(join_requests)
            .where(join_requests.c.id == request_id)
            .where(join_requests.c.project_owner_id == owner_id)
        ).first()
        if not row:
            raise NotFoundError(f"Join request {request_id} not found")
        if JoinRequestStatus(row.status).is_resolved:
            raise ConflictError(f"Join request {request_id} is already {row.status}", code="request_resolved")
        session.execute(
            update(join_requests)
            .where(join_requests.c.id == request_id)
            .values(status=status.value, updated_at=moment)
        )
        requester_id = row.requester_id

    publish_change(NotificationKind.JOIN_REQUEST, owner_id)
    publish_change(NotificationKind.REQUEST_UPDATE, requester_id)
    logger.info(
        f"[join_requests] {status.value}",
        extra={"user_id": owner_id, "subject_id": request_id, "event_type": f"join_request.{status.value}"},
    )
    return get_join_request(request_id)


def delete_join_request(request_id: str, user_id: str, kind: NotificationKind) -> None:
    """
    Delete the record behind a feed event.

    The caller must be the event's recipient: the owner for a joinRequest,
    the requester for a requestUpdate.
    """
    if kind == NotificationKind.JOIN_REQUEST:
        owner_clause = join_requests.c.project_owner_id == user_id
        statuses = (JoinRequestStatus.PENDING.value, JoinRequestStatus.READ.value)
    else:
        owner_clause = join_requests.c.requester_id == user_id
        statuses = (JoinRequestStatus.ACCEPTED.value, JoinRequestStatus.REJECTED.value)

    with get_db_session() as session:
        row = session.execute(
            select(join_requests)
            .where(join_requests.c.id == request_id)
            .where(owner_clause)
            .where(join_requests.c.status.in_(statuses))
        ).first()
        if not row:
            raise NotFoundError(f"Notification {kind.value}/{request_id} not found")
        session.execute(delete(join_requests).where(join_requests.c.id == request_id))

    publish_change(NotificationKind.JOIN_REQUEST, row.project_owner_id)
    publish_change(NotificationKind.REQUEST_UPDATE, row.requester_id)

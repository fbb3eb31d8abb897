"""
Notification feed routes.

- GET    /v1/notifications?filter=all|requests|updates|messages
- DELETE /v1/notifications/{kind}/{subject_id}
- POST   /v1/notifications/digest/read
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from cirkel.core.auth import get_current_user_id
from cirkel.features.notifications.service import (
    get_feed,
    delete_event,
    mark_digest_read,
    parse_filter,
    parse_kind,
)


router = APIRouter(prefix="/v1/notifications", tags=["notifications"])


@router.get("")
def notification_feed(
    filter: Optional[str] = Query(None, description="all | requests | updates | messages"),
    user_id: str = Depends(get_current_user_id),
):
    return get_feed(user_id, parse_filter(filter)).to_dict()


@router.post("/digest/read")
def digest_read(user_id: str = Depends(get_current_user_id)):
    cleared = mark_digest_read(user_id)
    return {"cleared": cleared}


@router.delete("/{kind}/{subject_id}")
def delete_notification(kind: str, subject_id: str, user_id: str = Depends(get_current_user_id)):
    delete_event(user_id, parse_kind(kind), subject_id)
    return {"deleted": True, "kind": kind, "subjectId": subject_id}

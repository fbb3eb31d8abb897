"""
cirkel/models/notification.py

Synthesized notification feed types. Nothing here is persisted: every
event is derived from a join request record or from unread counters.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


DIGEST_SUBJECT_ID = "unread-messages"


class NotificationKind(str, Enum):
    JOIN_REQUEST = "joinRequest"
    REQUEST_UPDATE = "requestUpdate"
    UNREAD_DIGEST = "unreadDigest"


class FeedFilter(str, Enum):
    ALL = "all"
    REQUESTS = "requests"
    UPDATES = "updates"
    MESSAGES = "messages"

    def matches(self, kind: NotificationKind) -> bool:
        if self is FeedFilter.ALL:
            return True
        return _FILTER_KINDS[self] == kind


_FILTER_KINDS = {
    FeedFilter.REQUESTS: NotificationKind.JOIN_REQUEST,
    FeedFilter.UPDATES: NotificationKind.REQUEST_UPDATE,
    FeedFilter.MESSAGES: NotificationKind.UNREAD_DIGEST,
}


class NotificationEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: NotificationKind
    subject_id: str
    occurred_at: datetime
    read: bool = False
    # Source-specific display fields (project id, status, unread count, ...)
    data: Dict[str, Any] = {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "subjectId": self.subject_id,
            "occurredAt": self.occurred_at.isoformat(),
            "read": self.read,
            "data": dict(self.data),
        }


class NotificationFeed(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    filter: FeedFilter = FeedFilter.ALL
    # Newest first, after the filter is applied
    events: List[NotificationEvent] = []
    # Unread count over the unfiltered feed
    total_unread: int = 0
    generated_at: Optional[datetime] = None

    @property
    def unread(self) -> List[NotificationEvent]:
        return [e for e in self.events if not e.read]

    @property
    def read(self) -> List[NotificationEvent]:
        return [e for e in self.events if e.read]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "filter": self.filter.value,
            "unread": [e.to_dict() for e in self.unread],
            "read": [e.to_dict() for e in self.read],
            "total": self.total_unread,
        }

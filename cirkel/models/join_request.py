"""
Join request records back two of the notification sources: the owner sees
pending/read requests, the requester sees accepted/rejected ones.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class JoinRequestStatus(str, Enum):
    PENDING = "pending"
    READ = "read"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    @property
    def is_resolved(self) -> bool:
        return self in (JoinRequestStatus.ACCEPTED, JoinRequestStatus.REJECTED)


class JoinRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    project_id: str
    project_owner_id: str
    requester_id: str
    message: Optional[str] = None
    status: JoinRequestStatus = JoinRequestStatus.PENDING
    created_at: datetime
    updated_at: datetime

"""
cirkel/models/entitlement.py

Entitlement record: one per user, owned by the entitlement ledger.

The storage and project ceilings are derived from the tier; usage counters
are carried through tier changes untouched.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


MIB = 1024 * 1024
GIB = 1024 * MIB


class Plan(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class StorageQuota(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_bytes: int
    used_bytes: int = 0

    @property
    def remaining_bytes(self) -> int:
        # Negative when a downgrade left the user over the new ceiling
        return self.total_bytes - self.used_bytes


class ProjectQuota(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_count: int
    current_count: int = 0


class Entitlement(BaseModel):
    """
    Premium subscription state plus derived quota ceilings.

    `active` is only ever flipped to True by a verified payment event.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    active: bool = False
    plan: Optional[Plan] = None
    started_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    auto_renew: bool = False
    storage: StorageQuota
    projects: ProjectQuota
    updated_at: Optional[datetime] = None

    @property
    def tier(self) -> str:
        return "premium" if self.active else "free"

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "active": self.active,
            "tier": self.tier,
            "plan": self.plan.value if self.plan else None,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "autoRenew": self.auto_renew,
            "storage": {
                "totalBytes": self.storage.total_bytes,
                "usedBytes": self.storage.used_bytes,
            },
            "projects": {
                "maxCount": self.projects.max_count,
                "currentCount": self.projects.current_count,
            },
        }

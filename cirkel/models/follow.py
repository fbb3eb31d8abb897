from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class FollowStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    followers_count: int = 0
    following_count: int = 0


class UserSummary(BaseModel):
    """Profile card shown in follower/following lists."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    display_name: Optional[str] = None
    followers_count: int = 0
    following_count: int = 0
    followed_at: Optional[datetime] = None

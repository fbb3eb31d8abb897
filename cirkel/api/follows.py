"""Follow graph routes for the profile UI."""
from fastapi import APIRouter, Depends, Query

from cirkel.core.auth import get_current_user_id
from cirkel.features.follows import service as follows


router = APIRouter(prefix="/v1/users", tags=["follows"])


@router.post("/{user_id}/follow")
def follow_user(user_id: str, caller_id: str = Depends(get_current_user_id)):
    follows.follow(caller_id, user_id)
    return {"following": True, "stats": follows.get_stats(user_id).model_dump()}


@router.delete("/{user_id}/follow")
def unfollow_user(user_id: str, caller_id: str = Depends(get_current_user_id)):
    follows.unfollow(caller_id, user_id)
    return {"following": False, "stats": follows.get_stats(user_id).model_dump()}


@router.get("/{user_id}/following-status")
def following_status(user_id: str, caller_id: str = Depends(get_current_user_id)):
    return {"following": follows.is_following(caller_id, user_id)}


@router.get("/{user_id}/followers")
def list_followers(user_id: str, limit: int = Query(100, ge=1, le=500), caller_id: str = Depends(get_current_user_id)):
    return {"users": [s.model_dump(mode="json") for s in follows.get_followers(user_id, limit=limit)]}


@router.get("/{user_id}/following")
def list_following(user_id: str, limit: int = Query(100, ge=1, le=500), caller_id: str = Depends(get_current_user_id)):
    return {"users": [s.model_dump(mode="json") for s in follows.get_following(user_id, limit=limit)]}


@router.get("/{user_id}/follow-stats")
def follow_stats(user_id: str, caller_id: str = Depends(get_current_user_id)):
    return follows.get_stats(user_id).model_dump()

"""Join request writers; each write feeds the notification sources."""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from cirkel.core.auth import get_current_user_id
from cirkel.features.join_requests.service import (
    submit_join_request,
    mark_join_request_read,
    resolve_join_request,
)


router = APIRouter(prefix="/v1/join-requests", tags=["join-requests"])


class JoinRequestCreate(BaseModel):
    project_id: str = Field(..., min_length=1)
    project_owner_id: str = Field(..., min_length=1)
    message: Optional[str] = Field(None, max_length=2000)


class JoinRequestResolve(BaseModel):
    accepted: bool


@router.post("")
def create_join_request(body: JoinRequestCreate, user_id: str = Depends(get_current_user_id)):
    request = submit_join_request(body.project_id, body.project_owner_id, user_id, body.message)
    return request.model_dump(mode="json")


@router.post("/{request_id}/read")
def read_join_request(request_id: str, user_id: str = Depends(get_current_user_id)):
    return mark_join_request_read(request_id, user_id).model_dump(mode="json")


@router.post("/{request_id}/resolve")
def resolve(request_id: str, body: JoinRequestResolve, user_id: str = Depends(get_current_user_id)):
    return resolve_join_request(request_id, user_id, body.accepted).model_dump(mode="json")

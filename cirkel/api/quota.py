"""
Quota API routes.

Consumed by the upload and project-creation flows as predicate calls
before their own write, and as usage recorders after it.
"""
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from cirkel.core.auth import get_current_user_id
from cirkel.features.quota.service import (
    get_quota,
    enforce_storage,
    enforce_project_count,
    record_usage,
    record_project_delta,
)


router = APIRouter(prefix="/v1/quota", tags=["quota"])


class StorageCheckRequest(BaseModel):
    bytes: int = Field(..., ge=0)


class UsageDeltaRequest(BaseModel):
    delta: int


@router.get("")
def quota_status(user_id: str = Depends(get_current_user_id)):
    return get_quota(user_id).to_dict()


@router.post("/storage/check")
def storage_check(body: StorageCheckRequest, request: Request, user_id: str = Depends(get_current_user_id)):
    enforce_storage(user_id, body.bytes, request_id=getattr(request.state, "request_id", None))
    return {"allowed": True}


@router.post("/storage/usage")
def storage_usage(body: UsageDeltaRequest, user_id: str = Depends(get_current_user_id)):
    return record_usage(user_id, body.delta).to_dict()


@router.post("/projects/check")
def projects_check(request: Request, user_id: str = Depends(get_current_user_id)):
    enforce_project_count(user_id, request_id=getattr(request.state, "request_id", None))
    return {"allowed": True}


@router.post("/projects/usage")
def projects_usage(body: UsageDeltaRequest, user_id: str = Depends(get_current_user_id)):
    return record_project_delta(user_id, body.delta).to_dict()

from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from cirkel.core.auth import get_current_user_id
from cirkel.features.conversations.service import record_message


router = APIRouter(prefix="/v1/conversations", tags=["conversations"])


class MessageRecorded(BaseModel):
    participant_ids: List[str] = Field(..., min_length=1)


@router.post("/{conversation_id}/messages")
def post_message(conversation_id: str, body: MessageRecorded, user_id: str = Depends(get_current_user_id)):
    recipients = record_message(conversation_id, user_id, body.participant_ids)
    return {"conversationId": conversation_id, "recipients": recipients}

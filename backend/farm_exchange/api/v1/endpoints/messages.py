"""
Message endpoints.

WHAT: Send, reply, open and list messages
WHY: Buyers and farmers coordinate pickup and questions about listings
HOW: Thin handlers over the messaging hub
"""

from fastapi import APIRouter, Depends, status

from ..deps import get_caller
from ....models.api_schemas import (
    MessageCreate,
    MessageReply,
    MessageOut,
    InboxResponse,
    UnreadCountResponse,
)
from ....services.capability_gate import Caller
from ....services.messaging_hub import messaging_hub

router = APIRouter()


@router.get("/messages", response_model=InboxResponse)
def inbox(caller: Caller = Depends(get_caller)):
    return InboxResponse(
        messages=[MessageOut.model_validate(m) for m in messaging_hub.inbox(caller)],
        unread_count=messaging_hub.unread_count(caller.profile_id),
    )


@router.get("/messages/unread-count", response_model=UnreadCountResponse)
def unread_count(caller: Caller = Depends(get_caller)):
    return UnreadCountResponse(unread_count=messaging_hub.unread_count(caller.profile_id))


@router.post("/messages", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
def send_message(payload: MessageCreate, caller: Caller = Depends(get_caller)):
    message = messaging_hub.send(
        caller,
        payload.recipient_id,
        payload.subject,
        payload.content,
        harvest_id=payload.harvest_id,
    )
    return MessageOut.model_validate(message)


@router.get("/messages/{message_id}", response_model=MessageOut)
def open_message(message_id: str, caller: Caller = Depends(get_caller)):
    """Open a message; marks it read when the caller is the recipient."""
    return MessageOut.model_validate(messaging_hub.get(message_id, caller))


@router.post("/messages/{message_id}/read", response_model=MessageOut)
def mark_read(message_id: str, caller: Caller = Depends(get_caller)):
    return MessageOut.model_validate(messaging_hub.mark_read(message_id, caller))


@router.post("/messages/{message_id}/reply", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
def reply(message_id: str, payload: MessageReply, caller: Caller = Depends(get_caller)):
    return MessageOut.model_validate(messaging_hub.reply(message_id, caller, payload.content))

"""Direct message endpoints."""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from producers_avenue.api.dependencies import CurrentUser, get_current_user
from producers_avenue.api.schemas import MessageResponse, SendMessageRequest
from producers_avenue.core.messaging import messaging_service
from producers_avenue.database.connection import get_db

router = APIRouter(prefix="/messages", tags=["messages"])


def _message(message: Any) -> Dict[str, Any]:
    return MessageResponse.model_validate(message).model_dump(mode="json")


@router.get("", summary="List conversations, open one, or read its messages")
async def get_messages(
    conversation_id: Optional[str] = None,
    other_user_id: Optional[str] = None,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    if conversation_id:
        messages = await messaging_service.list_messages(db, conversation_id, user.id)
        return {"messages": [_message(m) for m in messages]}

    if other_user_id:
        conversation = await messaging_service.get_or_create_conversation(
            db, user.id, other_user_id
        )
        return {"conversation_id": conversation.id}

    return {"conversations": await messaging_service.list_conversations(db, user.id)}


@router.post("", summary="Send a message")
async def send_message(
    request: SendMessageRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    message = await messaging_service.send_message(
        db, user.id, request.conversation_id, request.content
    )
    return {"success": True, "message": _message(message)}

"""
Direct message endpoints for API v1.

A conversation is a private channel between exactly two users; the
``messages`` router reads and writes its messages.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from honua_api.app.core.security import get_current_user
from honua_api.app.schemas.message import ConversationCreate, MessageCreate
from honua_api.app.services.conversation_service import ConversationService

router = APIRouter()
messages_router = APIRouter()


@router.get("")
async def list_conversations(current_user: dict = Depends(get_current_user)) -> dict:
    """The caller's conversations, most recent activity first."""
    return {"conversations": await ConversationService.list_conversations(current_user)}


@router.post("")
async def start_conversation(
    data: ConversationCreate,
    response: Response,
    current_user: dict = Depends(get_current_user),
) -> dict:
    """Open a conversation with ``participant_id``.

    Answers 201 when a conversation was created and 200 when the pair
    already had one.
    """
    result = await ConversationService.start_conversation(data.participant_id, current_user)
    response.status_code = status.HTTP_201_CREATED if result["created"] else status.HTTP_200_OK
    return result


@router.get("/{conversation_id}")
async def get_conversation(conversation_id: int, current_user: dict = Depends(get_current_user)) -> dict:
    return await ConversationService.get_conversation(conversation_id, current_user)


@messages_router.get("")
async def list_messages(
    conversation_id: Optional[int] = Query(None),
    current_user: dict = Depends(get_current_user),
) -> dict:
    return {"messages": await ConversationService.list_messages(conversation_id, current_user)}


@messages_router.post("", status_code=status.HTTP_201_CREATED)
async def send_message(data: MessageCreate, current_user: dict = Depends(get_current_user)) -> dict:
    return await ConversationService.send_message(data, current_user)

"""Pydantic models for direct conversations and notifications."""

from typing import Optional

from pydantic import BaseModel, Field


class ConversationCreate(BaseModel):
    participant_id: Optional[int] = None


class MessageCreate(BaseModel):
    conversation_id: int
    content: Optional[str] = None
    media_url: Optional[str] = None


class NotificationCreate(BaseModel):
    recipient_id: int
    type: str = Field(..., examples=["system"])
    title: str
    message: str
    post_id: Optional[int] = None
    comment_id: Optional[int] = None


class NotificationMarkRead(BaseModel):
    """Either a single ``notificationId`` or ``markAllAsRead``."""

    notificationId: Optional[int] = None
    markAllAsRead: bool = False

"""Pydantic models for forums, threads and thread comments."""

from typing import Optional

from pydantic import BaseModel, Field


class ForumCreate(BaseModel):
    name: Optional[str] = Field(None, examples=["Urban Gardening"])
    description: Optional[str] = None
    category: Optional[str] = Field(None, examples=["Gardening"])
    is_private: bool = False


class ForumUpdate(BaseModel):
    """Only provided fields are updated."""

    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    is_private: Optional[bool] = None


class ThreadCreate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    is_pinned: Optional[bool] = None
    is_locked: Optional[bool] = None


class ThreadUpdate(ThreadCreate):
    pass


class ThreadCommentCreate(BaseModel):
    content: Optional[str] = None
    parent_id: Optional[int] = None

"""Pydantic models for posts, comments, collections and bookmarks."""

from typing import List, Optional

from pydantic import BaseModel, Field


class PostCreate(BaseModel):
    content: Optional[str] = Field(None, examples=["Swapped our plastic wrap for beeswax #zerowaste"])
    media_urls: Optional[List[str]] = None
    parent_id: Optional[int] = None
    location: Optional[str] = None
    sustainability_category: Optional[str] = Field(None, examples=["Waste Reduction"])
    impact_score: Optional[int] = None
    link_preview_url: Optional[str] = None
    link_preview_title: Optional[str] = None
    link_preview_description: Optional[str] = None
    link_preview_image: Optional[str] = None
    link_preview_domain: Optional[str] = None


class BookmarkCreate(BaseModel):
    collection_id: Optional[int] = None


class BookmarkMove(BaseModel):
    collection_id: Optional[int] = None


class CommentCreate(BaseModel):
    content: Optional[str] = None
    parent_id: Optional[int] = None


class CollectionCreate(BaseModel):
    name: Optional[str] = Field(None, examples=["Recipes"])
    description: Optional[str] = None
    color: Optional[str] = Field(None, examples=["#10B981"])

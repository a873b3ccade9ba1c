"""Hashtag endpoints for API v1."""

from typing import Optional

from fastapi import APIRouter, Query

from honua_api.app.services.post_service import PostService

router = APIRouter()


@router.get("/trending")
async def trending_hashtags(limit: int = Query(10, ge=1, le=50)) -> dict:
    """Most used hashtags of the last seven days."""
    return {"hashtags": await PostService.trending_hashtags(limit)}


@router.get("/search")
async def search_hashtags(q: Optional[str] = Query(None), limit: int = Query(20, ge=1, le=100)) -> dict:
    return await PostService.search_hashtags(q, limit)

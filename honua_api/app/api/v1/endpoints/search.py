"""
Search and link preview endpoints for API v1.

The router carries its own paths: ``/search``, ``/categories/search``
and ``/link-preview``.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from honua_api.app.core.security import get_optional_user
from honua_api.app.services.link_preview_service import LinkPreviewService
from honua_api.app.services.search_service import SearchService

router = APIRouter()


@router.get("/search")
async def search(
    q: Optional[str] = Query(None),
    type: str = Query("all", description="all, users, posts, hashtags or categories"),
    limit: int = Query(10, ge=1, le=50),
    viewer: Optional[dict] = Depends(get_optional_user),
) -> dict:
    """Grouped search results; only the groups selected by ``type`` are returned."""
    return await SearchService.search(q, type_=type, limit=limit, viewer=viewer)


@router.get("/categories/search")
async def search_categories(q: Optional[str] = Query(None), limit: int = Query(20, ge=1, le=100)) -> dict:
    return {"categories": await SearchService.search_categories(q, limit)}


@router.get("/link-preview")
async def link_preview(url: Optional[str] = Query(None)) -> dict:
    """Fetch a page and return its title, description and preview image."""
    return await LinkPreviewService.preview(url)

"""
Bookmark collection endpoints for API v1.

The router carries its own paths because moving a bookmark lives under
``/bookmarks`` rather than ``/collections``.
"""

from fastapi import APIRouter, Depends, Response, status

from honua_api.app.core.security import get_current_user
from honua_api.app.schemas.post import BookmarkMove, CollectionCreate
from honua_api.app.services.collection_service import CollectionService

router = APIRouter()


@router.get("/collections")
async def list_collections(current_user: dict = Depends(get_current_user)) -> dict:
    """The caller's collections with their bookmark counts."""
    return {"collections": await CollectionService.list_collections(current_user)}


@router.post("/collections", status_code=status.HTTP_201_CREATED)
async def create_collection(data: CollectionCreate, current_user: dict = Depends(get_current_user)) -> dict:
    return await CollectionService.create_collection(data, current_user)


@router.delete("/collections")
async def clear_collections(current_user: dict = Depends(get_current_user)) -> dict:
    """Delete all of the caller's collections."""
    return await CollectionService.clear_collections(current_user)


@router.put("/collections/{collection_id}")
async def update_collection(
    collection_id: int,
    data: CollectionCreate,
    current_user: dict = Depends(get_current_user),
) -> dict:
    return await CollectionService.update_collection(collection_id, data, current_user)


@router.delete("/collections/{collection_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_collection(collection_id: int, current_user: dict = Depends(get_current_user)) -> Response:
    await CollectionService.delete_collection(collection_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/bookmarks/{bookmark_id}/move")
async def move_bookmark(
    bookmark_id: int,
    data: BookmarkMove,
    current_user: dict = Depends(get_current_user),
) -> dict:
    """Move a bookmark into another collection, or out of all with ``null``."""
    return await CollectionService.move_bookmark(bookmark_id, data.collection_id, current_user)

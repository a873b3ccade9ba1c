"""
Forum endpoints for API v1.

Forums are community spaces with threads.  The creator of a forum is
its administrator and the only one who may edit or delete it, pin or
lock its threads, or post in it while it is private.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from honua_api.app.core.security import get_current_user
from honua_api.app.schemas.forum import ForumCreate, ForumUpdate, ThreadCreate
from honua_api.app.services.forum_service import ForumService

router = APIRouter()


@router.get("")
async def list_forums(
    query: Optional[str] = Query(None, description="Matched against name and description"),
    category: Optional[str] = Query(None, description="'All' disables the filter"),
) -> dict:
    return {"forums": await ForumService.list_forums(query=query, category=category)}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_forum(forum: ForumCreate, current_user: dict = Depends(get_current_user)) -> dict:
    return await ForumService.create_forum(forum, current_user)


@router.get("/{forum_id}")
async def get_forum(forum_id: int) -> dict:
    """The forum together with its threads."""
    return await ForumService.get_forum(forum_id)


@router.put("/{forum_id}")
async def update_forum(
    forum_id: int,
    updates: ForumUpdate,
    current_user: dict = Depends(get_current_user),
) -> dict:
    return await ForumService.update_forum(forum_id, updates, current_user)


@router.delete("/{forum_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_forum(forum_id: int, current_user: dict = Depends(get_current_user)) -> Response:
    """Delete a forum with all of its threads and their comments."""
    await ForumService.delete_forum(forum_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{forum_id}/threads")
async def list_threads(forum_id: int) -> dict:
    return {"threads": await ForumService.list_threads(forum_id)}


@router.post("/{forum_id}/threads", status_code=status.HTTP_201_CREATED)
async def create_thread(
    forum_id: int,
    thread: ThreadCreate,
    current_user: dict = Depends(get_current_user),
) -> dict:
    return await ForumService.create_thread(forum_id, thread, current_user)

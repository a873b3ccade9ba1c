"""Forum thread endpoints for API v1."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from honua_api.app.core.security import get_current_user, get_optional_user
from honua_api.app.schemas.forum import ThreadCommentCreate, ThreadUpdate
from honua_api.app.services.forum_service import ForumService

router = APIRouter()


@router.get("/{thread_id}")
async def get_thread(thread_id: int) -> dict:
    return await ForumService.get_thread(thread_id)


@router.put("/{thread_id}")
async def update_thread(
    thread_id: int,
    updates: ThreadUpdate,
    current_user: dict = Depends(get_current_user),
) -> dict:
    """Edit a thread.

    Authors lose edit rights once a thread is locked; the forum admin
    keeps them and alone may change ``is_pinned`` and ``is_locked``.
    """
    return await ForumService.update_thread(thread_id, updates, current_user)


@router.delete("/{thread_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_thread(thread_id: int, current_user: dict = Depends(get_current_user)) -> Response:
    await ForumService.delete_thread(thread_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{thread_id}/comments")
async def list_thread_comments(
    thread_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    viewer: Optional[dict] = Depends(get_optional_user),
) -> dict:
    return await ForumService.list_thread_comments(thread_id, viewer, page=page, limit=limit)


@router.post("/{thread_id}/comments", status_code=status.HTTP_201_CREATED)
async def create_thread_comment(
    thread_id: int,
    comment: ThreadCommentCreate,
    current_user: dict = Depends(get_current_user),
) -> dict:
    return {"comment": await ForumService.create_thread_comment(thread_id, comment, current_user)}

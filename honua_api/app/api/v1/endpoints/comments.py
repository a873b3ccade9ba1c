"""Comment like endpoints for API v1."""

from fastapi import APIRouter, Depends

from honua_api.app.core.security import get_current_user
from honua_api.app.services.comment_service import CommentService

router = APIRouter()


@router.post("/{comment_id}/like")
async def like_comment(comment_id: int, current_user: dict = Depends(get_current_user)) -> dict:
    return await CommentService.like(comment_id, current_user)


@router.delete("/{comment_id}/like")
async def unlike_comment(comment_id: int, current_user: dict = Depends(get_current_user)) -> dict:
    return await CommentService.unlike(comment_id, current_user)

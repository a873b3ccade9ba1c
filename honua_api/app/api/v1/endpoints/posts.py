"""
Post endpoints for API v1.

The feed, trending and search listings are public; a bearer token, when
sent, personalises the ``liked_by_user``/``bookmarked_by_user`` flags.
Fixed paths such as ``/trending`` are declared before ``/{post_id}``.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from honua_api.app.core.security import get_current_user, get_optional_user
from honua_api.app.schemas.post import BookmarkCreate, CommentCreate, PostCreate
from honua_api.app.services.comment_service import CommentService
from honua_api.app.services.post_service import PostService

router = APIRouter()


@router.get("")
async def list_feed(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    viewer: Optional[dict] = Depends(get_optional_user),
) -> dict:
    """Newest posts first, with ``pagination``."""
    return await PostService.list_feed(viewer, page=page, limit=limit)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_post(post: PostCreate, current_user: dict = Depends(get_current_user)) -> dict:
    """Publish a post.

    ``@username`` mentions in the content notify the mentioned users.
    """
    return await PostService.create_post(post, current_user)


@router.get("/trending")
async def trending_posts(
    category: Optional[str] = Query(None),
    limit: int = Query(10, ge=1, le=100),
    viewer: Optional[dict] = Depends(get_optional_user),
) -> dict:
    return {"posts": await PostService.trending(viewer, category=category, limit=limit)}


@router.get("/recent")
async def recent_posts(
    category: Optional[str] = Query(None),
    limit: int = Query(10, ge=1, le=100),
    viewer: Optional[dict] = Depends(get_optional_user),
) -> dict:
    return {"posts": await PostService.recent(viewer, category=category, limit=limit)}


@router.get("/search")
async def search_posts(
    q: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    viewer: Optional[dict] = Depends(get_optional_user),
) -> dict:
    return {"posts": await PostService.search(viewer, q, limit=limit)}


@router.get("/{post_id}")
async def get_post(post_id: int, viewer: Optional[dict] = Depends(get_optional_user)) -> dict:
    return await PostService.get_post(post_id, viewer)


@router.delete("/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post(post_id: int, current_user: dict = Depends(get_current_user)) -> Response:
    """Delete a post.  Only its author may do so."""
    await PostService.delete_post(post_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{post_id}/like")
async def like_post(post_id: int, current_user: dict = Depends(get_current_user)) -> dict:
    return await PostService.like(post_id, current_user)


@router.delete("/{post_id}/like")
async def unlike_post(post_id: int, current_user: dict = Depends(get_current_user)) -> dict:
    return await PostService.unlike(post_id, current_user)


@router.post("/{post_id}/repost")
async def repost(post_id: int, current_user: dict = Depends(get_current_user)) -> dict:
    return await PostService.repost(post_id, current_user)


@router.delete("/{post_id}/repost")
async def undo_repost(post_id: int, current_user: dict = Depends(get_current_user)) -> dict:
    return await PostService.undo_repost(post_id, current_user)


@router.post("/{post_id}/bookmark")
async def bookmark_post(
    post_id: int,
    payload: Optional[BookmarkCreate] = None,
    current_user: dict = Depends(get_current_user),
) -> dict:
    """Bookmark a post, optionally into one of the caller's collections."""
    collection_id = payload.collection_id if payload else None
    return await PostService.bookmark(post_id, current_user, collection_id)


@router.delete("/{post_id}/bookmark")
async def remove_bookmark(post_id: int, current_user: dict = Depends(get_current_user)) -> dict:
    return await PostService.remove_bookmark(post_id, current_user)


@router.get("/{post_id}/comments")
async def list_comments(post_id: int, viewer: Optional[dict] = Depends(get_optional_user)) -> dict:
    return {"comments": await CommentService.list_for_post(post_id, viewer)}


@router.post("/{post_id}/comments", status_code=status.HTTP_201_CREATED)
async def create_comment(
    post_id: int,
    comment: CommentCreate,
    current_user: dict = Depends(get_current_user),
) -> dict:
    """Comment on a post, or reply to one of its comments via ``parent_id``."""
    return {"comment": await CommentService.create_for_post(post_id, comment, current_user)}

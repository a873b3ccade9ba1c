"""
Comments on posts and forum threads, and comment likes.

A comment belongs to either a post or a thread.  Replies reference a
``parent_id`` that must live under the same post or thread.
"""

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from honua_api.app.core.db import get_connection
from honua_api.app.core.errors import NotFoundError, ValidationError
from honua_api.app.services.notification_service import NotificationService
from honua_api.app.services.post_service import notify_mentions

logger = logging.getLogger(__name__)

COMMENT_SELECT = """
    SELECT c.*,
           u.username AS author_username, u.full_name AS author_full_name, u.avatar_url AS author_avatar_url,
           (SELECT COUNT(*) FROM comment_likes cl WHERE cl.comment_id = c.id) AS likes_count,
           EXISTS(SELECT 1 FROM comment_likes cl WHERE cl.comment_id = c.id AND cl.user_id = ?) AS liked_by_user
    FROM comments c JOIN users u ON u.id = c.user_id
"""


def format_comment(row: sqlite3.Row) -> Dict[str, Any]:
    comment = dict(row)
    comment["liked_by_user"] = bool(comment["liked_by_user"])
    comment["user"] = {
        "id": comment["user_id"],
        "username": comment.pop("author_username"),
        "full_name": comment.pop("author_full_name"),
        "avatar_url": comment.pop("author_avatar_url"),
    }
    return comment


def select_comments(
    cursor: sqlite3.Cursor, viewer: Optional[dict], where: str, params: tuple, suffix: str = ""
) -> List[Dict[str, Any]]:
    viewer_id = viewer["user_id"] if viewer else None
    rows = cursor.execute(f"{COMMENT_SELECT} WHERE {where} {suffix}", (viewer_id,) + params).fetchall()
    return [format_comment(row) for row in rows]


class CommentService:
    @classmethod
    async def list_for_post(cls, post_id: int, viewer: Optional[dict]) -> List[Dict[str, Any]]:
        conn = get_connection()
        try:
            cursor = conn.cursor()
            if not cursor.execute("SELECT id FROM posts WHERE id = ?", (post_id,)).fetchone():
                raise NotFoundError("Post not found")
            return select_comments(
                cursor, viewer, "c.post_id = ?", (post_id,), "ORDER BY c.created_at ASC, c.id ASC"
            )
        finally:
            conn.close()

    @classmethod
    async def create_for_post(cls, post_id: int, data: Any, current_user: dict) -> Dict[str, Any]:
        """Comment on a post.

        The post author is notified (unless commenting on their own
        post) and each mentioned user receives one mention notification.
        """
        content = (data.content or "").strip()
        if not content:
            raise ValidationError("Content is required")
        user_id = current_user["user_id"]
        conn = get_connection()
        try:
            cursor = conn.cursor()
            post = cursor.execute("SELECT id, user_id FROM posts WHERE id = ?", (post_id,)).fetchone()
            if not post:
                raise NotFoundError("Post not found")
            if data.parent_id is not None and not cursor.execute(
                "SELECT id FROM comments WHERE id = ? AND post_id = ?", (data.parent_id, post_id)
            ).fetchone():
                raise NotFoundError("Parent comment not found")
            cursor.execute(
                "INSERT INTO comments (post_id, user_id, parent_id, content) VALUES (?, ?, ?, ?)",
                (post_id, user_id, data.parent_id, content),
            )
            comment_id = cursor.lastrowid
            NotificationService._create(
                cursor, post["user_id"], user_id, "comment", "New comment",
                f"{current_user.get('username')} commented on your post", post_id, comment_id,
            )
            notify_mentions(
                cursor, content, current_user, "mentioned you in a comment",
                post_id=post_id, comment_id=comment_id, exclude=(post["user_id"],),
            )
            conn.commit()
            comment = select_comments(cursor, current_user, "c.id = ?", (comment_id,))[0]
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        logger.info("User %s commented on post %s", user_id, post_id)
        return comment

    @staticmethod
    def _likes(cursor: sqlite3.Cursor, comment_id: int) -> int:
        return cursor.execute(
            "SELECT COUNT(*) AS c FROM comment_likes WHERE comment_id = ?", (comment_id,)
        ).fetchone()["c"]

    @classmethod
    async def like(cls, comment_id: int, current_user: dict) -> Dict[str, Any]:
        conn = get_connection()
        try:
            cursor = conn.cursor()
            if not cursor.execute("SELECT id FROM comments WHERE id = ?", (comment_id,)).fetchone():
                raise NotFoundError("Comment not found")
            try:
                cursor.execute(
                    "INSERT INTO comment_likes (comment_id, user_id) VALUES (?, ?)",
                    (comment_id, current_user["user_id"]),
                )
            except sqlite3.IntegrityError:
                raise ValidationError("Comment already liked")
            likes = cls._likes(cursor, comment_id)
            conn.commit()
        finally:
            conn.close()
        return {"message": "Comment liked successfully", "likes_count": likes}

    @classmethod
    async def unlike(cls, comment_id: int, current_user: dict) -> Dict[str, Any]:
        conn = get_connection()
        try:
            cursor = conn.cursor()
            if not cursor.execute("SELECT id FROM comments WHERE id = ?", (comment_id,)).fetchone():
                raise NotFoundError("Comment not found")
            cursor.execute(
                "DELETE FROM comment_likes WHERE comment_id = ? AND user_id = ?",
                (comment_id, current_user["user_id"]),
            )
            if cursor.rowcount == 0:
                raise ValidationError("Comment is not liked")
            likes = cls._likes(cursor, comment_id)
            conn.commit()
        finally:
            conn.close()
        return {"message": "Comment unliked successfully", "likes_count": likes}

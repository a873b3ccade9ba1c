"""
Posts, engagement (likes, reposts, bookmarks) and hashtags.

Engagement counters are not stored; every listing computes them with
correlated sub-queries so they can never drift from the underlying
rows.  Viewer flags (``liked_by_user`` and friends) are computed for the
optional viewer and are ``False`` for anonymous requests.
"""

import json
import logging
import re
import sqlite3
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional

from honua_api.app.core.db import get_connection, row_to_dict
from honua_api.app.core.errors import NotFoundError, PermissionDeniedError, ValidationError
from honua_api.app.services.audit_service import AuditService
from honua_api.app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

MENTION_PATTERN = re.compile(r"@([a-zA-Z0-9_]+)")
HASHTAG_PATTERN = re.compile(r"#([a-zA-Z0-9_]+)")

ALL_CATEGORIES = "All Categories"
TRENDING_WINDOW = 100

POST_FIELDS = (
    "media_urls",
    "parent_id",
    "location",
    "sustainability_category",
    "impact_score",
    "link_preview_url",
    "link_preview_title",
    "link_preview_description",
    "link_preview_image",
    "link_preview_domain",
)

_POST_SELECT = """
    SELECT p.*,
           u.username AS author_username, u.full_name AS author_full_name, u.avatar_url AS author_avatar_url,
           (SELECT COUNT(*) FROM likes l WHERE l.post_id = p.id) AS likes_count,
           (SELECT COUNT(*) FROM comments c WHERE c.post_id = p.id) AS comments_count,
           (SELECT COUNT(*) FROM reposts r WHERE r.post_id = p.id) AS reposts_count,
           EXISTS(SELECT 1 FROM likes l WHERE l.post_id = p.id AND l.user_id = ?) AS liked_by_user,
           EXISTS(SELECT 1 FROM bookmarks b WHERE b.post_id = p.id AND b.user_id = ?) AS bookmarked_by_user,
           EXISTS(SELECT 1 FROM reposts r WHERE r.post_id = p.id AND r.user_id = ?) AS reposted_by_user
    FROM posts p JOIN users u ON u.id = p.user_id
"""


def extract_mentions(text: str) -> List[str]:
    """Usernames mentioned with ``@`` in order of first appearance."""
    seen: List[str] = []
    for name in MENTION_PATTERN.findall(text or ""):
        if name not in seen:
            seen.append(name)
    return seen


def extract_hashtags(text: str) -> List[str]:
    """Lower-cased hashtags, one entry per occurrence."""
    return [tag.lower() for tag in HASHTAG_PATTERN.findall(text or "")]


def notify_mentions(
    cursor: sqlite3.Cursor,
    text: str,
    sender: dict,
    message: str,
    post_id: Optional[int] = None,
    comment_id: Optional[int] = None,
    exclude: Iterable[int] = (),
) -> List[int]:
    """Send one ``mention`` notification per mentioned user.

    The sender and every id in ``exclude`` are skipped.  Returns the ids
    of the users notified.
    """
    usernames = extract_mentions(text)
    if not usernames:
        return []
    rows = cursor.execute(
        "SELECT id FROM users WHERE username IN (%s)" % ",".join("?" * len(usernames)),
        tuple(usernames),
    ).fetchall()
    skip = set(exclude) | {sender["user_id"]}
    notified = []
    for row in rows:
        if row["id"] in skip:
            continue
        NotificationService._create(
            cursor, row["id"], sender["user_id"], "mention", "New mention",
            f"{sender.get('username')} {message}", post_id, comment_id,
        )
        notified.append(row["id"])
    return notified


def _viewer_params(viewer: Optional[dict]) -> tuple:
    viewer_id = viewer["user_id"] if viewer else None
    return (viewer_id, viewer_id, viewer_id)


def format_post(row: sqlite3.Row) -> Dict[str, Any]:
    post = row_to_dict(
        row,
        json_fields=("media_urls",),
        bool_fields=("liked_by_user", "bookmarked_by_user", "reposted_by_user"),
    )
    post["user"] = {
        "id": post["user_id"],
        "username": post.pop("author_username"),
        "full_name": post.pop("author_full_name"),
        "avatar_url": post.pop("author_avatar_url"),
    }
    post["media_urls"] = post.get("media_urls") or []
    post["shares_count"] = post["reposts_count"]
    return post


class PostService:
    """Service for the social feed."""

    @staticmethod
    def _require_post(cursor: sqlite3.Cursor, post_id: int) -> sqlite3.Row:
        row = cursor.execute("SELECT id, user_id FROM posts WHERE id = ?", (post_id,)).fetchone()
        if not row:
            raise NotFoundError("Post not found")
        return row

    @staticmethod
    def _select(
        cursor: sqlite3.Cursor,
        viewer: Optional[dict],
        where: Optional[str] = None,
        params: tuple = (),
        order: str = "p.created_at DESC, p.id DESC",
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        query = _POST_SELECT
        if where:
            query += f" WHERE {where}"
        query += f" ORDER BY {order}"
        args = _viewer_params(viewer) + params
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            args += (limit, offset)
        return [format_post(row) for row in cursor.execute(query, args).fetchall()]

    @classmethod
    async def list_feed(cls, viewer: Optional[dict], page: int = 1, limit: int = 10) -> Dict[str, Any]:
        page = max(page, 1)
        conn = get_connection()
        try:
            cursor = conn.cursor()
            total = cursor.execute("SELECT COUNT(*) AS c FROM posts").fetchone()["c"]
            posts = cls._select(cursor, viewer, limit=limit, offset=(page - 1) * limit)
            return {
                "posts": posts,
                "pagination": {
                    "page": page,
                    "limit": limit,
                    "total": total,
                    "totalPages": (total + limit - 1) // limit if limit else 0,
                },
            }
        finally:
            conn.close()

    @classmethod
    async def create_post(cls, data: Any, current_user: dict) -> Dict[str, Any]:
        """Publish a post and notify mentioned users.

        Content is trimmed and must not be empty.  A ``parent_id`` must
        reference an existing post.
        """
        content = (data.content or "").strip()
        if not content:
            raise ValidationError("Content is required")
        values = {name: getattr(data, name) for name in POST_FIELDS}
        values["media_urls"] = json.dumps(values["media_urls"]) if values["media_urls"] else None
        conn = get_connection()
        try:
            cursor = conn.cursor()
            if values["parent_id"] is not None:
                cls._require_post(cursor, values["parent_id"])
            columns = ("user_id", "content") + POST_FIELDS
            cursor.execute(
                f"INSERT INTO posts ({', '.join(columns)}) VALUES ({', '.join('?' * len(columns))})",
                (current_user["user_id"], content) + tuple(values.values()),
            )
            post_id = cursor.lastrowid
            notified = notify_mentions(cursor, content, current_user, "mentioned you in a post", post_id=post_id)
            conn.commit()
            post = cls._select(cursor, current_user, "p.id = ?", (post_id,))[0]
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        logger.info("User %s created post %s (%s mentions)", current_user["user_id"], post_id, len(notified))
        return post

    @classmethod
    async def get_post(cls, post_id: int, viewer: Optional[dict]) -> Dict[str, Any]:
        conn = get_connection()
        try:
            posts = cls._select(conn.cursor(), viewer, "p.id = ?", (post_id,))
        finally:
            conn.close()
        if not posts:
            raise NotFoundError("Post not found")
        return posts[0]

    @classmethod
    async def delete_post(cls, post_id: int, current_user: dict) -> None:
        conn = get_connection()
        try:
            cursor = conn.cursor()
            post = cls._require_post(cursor, post_id)
            if post["user_id"] != current_user["user_id"]:
                raise PermissionDeniedError("You can only delete your own posts")
            cursor.execute("DELETE FROM notifications WHERE post_id = ?", (post_id,))
            cursor.execute("DELETE FROM posts WHERE id = ?", (post_id,))
            conn.commit()
        finally:
            conn.close()
        await AuditService.record(
            user_id=current_user["user_id"], action="delete", object_type="post", object_id=post_id
        )

    # ------------------------------------------------------------------
    # likes, reposts and bookmarks
    # ------------------------------------------------------------------

    @staticmethod
    def _count(cursor: sqlite3.Cursor, table: str, post_id: int) -> int:
        return cursor.execute(f"SELECT COUNT(*) AS c FROM {table} WHERE post_id = ?", (post_id,)).fetchone()["c"]

    @classmethod
    async def like(cls, post_id: int, current_user: dict) -> Dict[str, Any]:
        user_id = current_user["user_id"]
        conn = get_connection()
        try:
            cursor = conn.cursor()
            post = cls._require_post(cursor, post_id)
            try:
                cursor.execute("INSERT INTO likes (post_id, user_id) VALUES (?, ?)", (post_id, user_id))
            except sqlite3.IntegrityError:
                raise ValidationError("Post already liked")
            NotificationService._create(
                cursor, post["user_id"], user_id, "like", "New like",
                f"{current_user.get('username')} liked your post", post_id=post_id,
            )
            likes = cls._count(cursor, "likes", post_id)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        return {"message": "Post liked successfully", "likes_count": likes, "liked_by_user": True}

    @classmethod
    async def unlike(cls, post_id: int, current_user: dict) -> Dict[str, Any]:
        conn = get_connection()
        try:
            cursor = conn.cursor()
            cls._require_post(cursor, post_id)
            cursor.execute(
                "DELETE FROM likes WHERE post_id = ? AND user_id = ?", (post_id, current_user["user_id"])
            )
            if cursor.rowcount == 0:
                raise ValidationError("Post is not liked")
            likes = cls._count(cursor, "likes", post_id)
            conn.commit()
        finally:
            conn.close()
        return {"message": "Post unliked successfully", "likes_count": likes, "liked_by_user": False}

    @classmethod
    async def repost(cls, post_id: int, current_user: dict) -> Dict[str, Any]:
        user_id = current_user["user_id"]
        conn = get_connection()
        try:
            cursor = conn.cursor()
            post = cls._require_post(cursor, post_id)
            try:
                cursor.execute("INSERT INTO reposts (post_id, user_id) VALUES (?, ?)", (post_id, user_id))
            except sqlite3.IntegrityError:
                raise ValidationError("Post already reposted")
            NotificationService._create(
                cursor, post["user_id"], user_id, "repost", "New repost",
                f"{current_user.get('username')} reposted your post", post_id=post_id,
            )
            reposts = cls._count(cursor, "reposts", post_id)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        return {"message": "Post reposted successfully", "reposts_count": reposts, "reposted_by_user": True}

    @classmethod
    async def undo_repost(cls, post_id: int, current_user: dict) -> Dict[str, Any]:
        conn = get_connection()
        try:
            cursor = conn.cursor()
            cls._require_post(cursor, post_id)
            cursor.execute(
                "DELETE FROM reposts WHERE post_id = ? AND user_id = ?", (post_id, current_user["user_id"])
            )
            if cursor.rowcount == 0:
                raise ValidationError("Post is not reposted")
            reposts = cls._count(cursor, "reposts", post_id)
            conn.commit()
        finally:
            conn.close()
        return {"message": "Repost removed successfully", "reposts_count": reposts, "reposted_by_user": False}

    @classmethod
    async def bookmark(cls, post_id: int, current_user: dict, collection_id: Optional[int] = None) -> Dict[str, Any]:
        user_id = current_user["user_id"]
        conn = get_connection()
        try:
            cursor = conn.cursor()
            cls._require_post(cursor, post_id)
            if collection_id is not None and not cursor.execute(
                "SELECT id FROM collections WHERE id = ? AND user_id = ?", (collection_id, user_id)
            ).fetchone():
                raise NotFoundError("Collection not found")
            try:
                cursor.execute(
                    "INSERT INTO bookmarks (post_id, user_id, collection_id) VALUES (?, ?, ?)",
                    (post_id, user_id, collection_id),
                )
            except sqlite3.IntegrityError:
                raise ValidationError("Post already bookmarked")
            bookmark = dict(cursor.execute("SELECT * FROM bookmarks WHERE id = ?", (cursor.lastrowid,)).fetchone())
            conn.commit()
        finally:
            conn.close()
        return {"message": "Post bookmarked successfully", "bookmarked_by_user": True, "bookmark": bookmark}

    @classmethod
    async def remove_bookmark(cls, post_id: int, current_user: dict) -> Dict[str, Any]:
        conn = get_connection()
        try:
            cursor = conn.cursor()
            cls._require_post(cursor, post_id)
            cursor.execute(
                "DELETE FROM bookmarks WHERE post_id = ? AND user_id = ?", (post_id, current_user["user_id"])
            )
            if cursor.rowcount == 0:
                raise ValidationError("Post is not bookmarked")
            conn.commit()
        finally:
            conn.close()
        return {"message": "Bookmark removed successfully", "bookmarked_by_user": False}

    # ------------------------------------------------------------------
    # discovery
    # ------------------------------------------------------------------

    @classmethod
    async def trending(
        cls, viewer: Optional[dict], category: Optional[str] = None, limit: int = 10
    ) -> List[Dict[str, Any]]:
        """Rank the newest posts by likes + 2*comments + 3*reposts."""
        where, params = None, ()
        if category and category != ALL_CATEGORIES:
            where, params = "p.sustainability_category = ?", (category,)
        conn = get_connection()
        try:
            posts = cls._select(conn.cursor(), viewer, where, params, limit=TRENDING_WINDOW)
        finally:
            conn.close()
        for post in posts:
            post["engagement_score"] = post["likes_count"] + 2 * post["comments_count"] + 3 * post["reposts_count"]
        # sorted() is stable, so equal scores keep newest-first order
        ranked = sorted(posts, key=lambda p: p["engagement_score"], reverse=True)[:limit]
        for post in ranked:
            post.pop("engagement_score")
        return ranked

    @classmethod
    async def recent(
        cls, viewer: Optional[dict], category: Optional[str] = None, limit: int = 10
    ) -> List[Dict[str, Any]]:
        where, params = None, ()
        if category and category != ALL_CATEGORIES:
            where, params = "p.sustainability_category = ?", (category,)
        conn = get_connection()
        try:
            return cls._select(conn.cursor(), viewer, where, params, limit=limit)
        finally:
            conn.close()

    @classmethod
    async def search(cls, viewer: Optional[dict], query: Optional[str], limit: int = 20) -> List[Dict[str, Any]]:
        if not query or not query.strip():
            raise ValidationError("Search query is required")
        conn = get_connection()
        try:
            return cls._select(conn.cursor(), viewer, "p.content LIKE ?", (f"%{query.strip()}%",), limit=limit)
        finally:
            conn.close()

    @classmethod
    async def trending_hashtags(cls, limit: int = 10) -> List[Dict[str, Any]]:
        """Most used hashtags in posts of the last seven days."""
        conn = get_connection()
        try:
            rows = conn.execute(
                "SELECT content FROM posts WHERE created_at >= datetime('now', '-7 days')"
            ).fetchall()
        finally:
            conn.close()
        counts = Counter(tag for row in rows for tag in extract_hashtags(row["content"]))
        return [{"hashtag": tag, "count": count, "trend": "up"} for tag, count in counts.most_common(limit)]

    @classmethod
    async def search_hashtags(cls, query: Optional[str], limit: int = 20) -> Dict[str, Any]:
        if not query:
            return {"hashtags": []}
        needle = query.lstrip("#").lower()
        conn = get_connection()
        try:
            rows = conn.execute(
                "SELECT content FROM posts WHERE content LIKE ? ORDER BY created_at DESC LIMIT 50",
                (f"%#{needle}%",),
            ).fetchall()
        finally:
            conn.close()
        counts = Counter(
            tag for row in rows for tag in extract_hashtags(row["content"]) if needle in tag
        )
        return {"hashtags": [{"name": tag, "count": count} for tag, count in counts.most_common(limit)]}

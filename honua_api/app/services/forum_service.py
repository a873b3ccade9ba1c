"""
Forums, their threads and thread discussions.

The user who creates a forum is its administrator (``admin_id``).  Only
the forum administrator may pin or lock threads, edit locked threads or
post into a private forum.
"""

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from honua_api.app.core.db import get_connection, row_to_dict
from honua_api.app.core.errors import NotFoundError, PermissionDeniedError, ValidationError
from honua_api.app.services.audit_service import AuditService
from honua_api.app.services.comment_service import select_comments

logger = logging.getLogger(__name__)

ALL_FORUM_CATEGORIES = "All"

_THREAD_SELECT = """
    SELECT t.*, u.username AS author_username, u.full_name AS author_full_name,
           u.avatar_url AS author_avatar_url,
           (SELECT COUNT(*) FROM comments c WHERE c.thread_id = t.id) AS comments_count
    FROM threads t JOIN users u ON u.id = t.author_id
"""


def _require(value: Optional[str], message: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(message)
    return value


def _format_thread(row: sqlite3.Row) -> Dict[str, Any]:
    thread = row_to_dict(row, bool_fields=("is_pinned", "is_locked"))
    thread["author"] = {
        "id": thread["author_id"],
        "username": thread.pop("author_username"),
        "full_name": thread.pop("author_full_name"),
        "avatar_url": thread.pop("author_avatar_url"),
    }
    return thread


class ForumService:
    """Service for forums and threads."""

    @staticmethod
    def _forum(cursor: sqlite3.Cursor, forum_id: int) -> sqlite3.Row:
        row = cursor.execute("SELECT * FROM forums WHERE id = ?", (forum_id,)).fetchone()
        if not row:
            raise NotFoundError("Forum not found")
        return row

    @staticmethod
    def _thread(cursor: sqlite3.Cursor, thread_id: int) -> sqlite3.Row:
        row = cursor.execute(
            """
            SELECT t.*, f.admin_id AS forum_admin_id, f.name AS forum_name, f.category AS forum_category
            FROM threads t JOIN forums f ON f.id = t.forum_id WHERE t.id = ?
            """,
            (thread_id,),
        ).fetchone()
        if not row:
            raise NotFoundError("Thread not found")
        return row

    @staticmethod
    def _forum_dict(cursor: sqlite3.Cursor, forum_id: int) -> Dict[str, Any]:
        row = cursor.execute(
            """
            SELECT f.*, (SELECT COUNT(*) FROM threads t WHERE t.forum_id = f.id) AS thread_count
            FROM forums f WHERE f.id = ?
            """,
            (forum_id,),
        ).fetchone()
        return row_to_dict(row, bool_fields=("is_private",))

    # ------------------------------------------------------------------
    # forums
    # ------------------------------------------------------------------

    @classmethod
    async def list_forums(cls, query: Optional[str] = None, category: Optional[str] = None) -> List[Dict[str, Any]]:
        where: List[str] = []
        params: List[Any] = []
        if query:
            where.append("(f.name LIKE ? OR f.description LIKE ?)")
            params.extend([f"%{query}%", f"%{query}%"])
        if category and category != ALL_FORUM_CATEGORIES:
            where.append("f.category = ?")
            params.append(category)
        sql = """
            SELECT f.*, (SELECT COUNT(*) FROM threads t WHERE t.forum_id = f.id) AS thread_count
            FROM forums f
        """
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY f.updated_at DESC, f.id DESC"
        conn = get_connection()
        try:
            return [row_to_dict(row, bool_fields=("is_private",)) for row in conn.execute(sql, tuple(params))]
        finally:
            conn.close()

    @classmethod
    async def create_forum(cls, data: Any, current_user: dict) -> Dict[str, Any]:
        name = _require(data.name, "Name is required")
        description = _require(data.description, "Description is required")
        category = _require(data.category, "Category is required")
        conn = get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT INTO forums (name, description, category, is_private, admin_id) VALUES (?, ?, ?, ?, ?)",
                (name, description, category, 1 if data.is_private else 0, current_user["user_id"]),
            )
            forum_id = cursor.lastrowid
            conn.commit()
            forum = cls._forum_dict(cursor, forum_id)
        finally:
            conn.close()
        await AuditService.record(
            user_id=current_user["user_id"], action="create", object_type="forum", object_id=forum_id
        )
        return forum

    @classmethod
    async def get_forum(cls, forum_id: int) -> Dict[str, Any]:
        conn = get_connection()
        try:
            cursor = conn.cursor()
            cls._forum(cursor, forum_id)
            forum = cls._forum_dict(cursor, forum_id)
            forum["threads"] = cls._threads(cursor, forum_id)
            return forum
        finally:
            conn.close()

    @classmethod
    async def update_forum(cls, forum_id: int, data: Any, current_user: dict) -> Dict[str, Any]:
        conn = get_connection()
        try:
            cursor = conn.cursor()
            forum = cls._forum(cursor, forum_id)
            if forum["admin_id"] != current_user["user_id"]:
                raise PermissionDeniedError("Only the forum admin can update this forum")
            updates = data.model_dump(exclude_unset=True)
            for field in ("name", "description", "category"):
                if field in updates:
                    updates[field] = _require(updates[field], f"{field.capitalize()} is required")
            if "is_private" in updates:
                updates["is_private"] = 1 if updates["is_private"] else 0
            if updates:
                assignments = ", ".join(f"{name} = ?" for name in updates)
                cursor.execute(
                    f"UPDATE forums SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    tuple(updates.values()) + (forum_id,),
                )
            conn.commit()
            return cls._forum_dict(cursor, forum_id)
        finally:
            conn.close()

    @classmethod
    async def delete_forum(cls, forum_id: int, current_user: dict) -> None:
        conn = get_connection()
        try:
            cursor = conn.cursor()
            forum = cls._forum(cursor, forum_id)
            if forum["admin_id"] != current_user["user_id"]:
                raise PermissionDeniedError("Only the forum admin can delete this forum")
            cursor.execute(
                "DELETE FROM comments WHERE thread_id IN (SELECT id FROM threads WHERE forum_id = ?)", (forum_id,)
            )
            cursor.execute("DELETE FROM forums WHERE id = ?", (forum_id,))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        await AuditService.record(
            user_id=current_user["user_id"], action="delete", object_type="forum", object_id=forum_id
        )

    # ------------------------------------------------------------------
    # threads
    # ------------------------------------------------------------------

    @staticmethod
    def _threads(cursor: sqlite3.Cursor, forum_id: int) -> List[Dict[str, Any]]:
        rows = cursor.execute(
            f"{_THREAD_SELECT} WHERE t.forum_id = ? ORDER BY t.is_pinned DESC, t.created_at DESC, t.id DESC",
            (forum_id,),
        ).fetchall()
        return [_format_thread(row) for row in rows]

    @classmethod
    async def list_threads(cls, forum_id: int) -> List[Dict[str, Any]]:
        """Threads of a forum, pinned first, then newest."""
        conn = get_connection()
        try:
            cursor = conn.cursor()
            cls._forum(cursor, forum_id)
            return cls._threads(cursor, forum_id)
        finally:
            conn.close()

    @classmethod
    async def create_thread(cls, forum_id: int, data: Any, current_user: dict) -> Dict[str, Any]:
        title = _require(data.title, "Title is required")
        content = _require(data.content, "Content is required")
        user_id = current_user["user_id"]
        conn = get_connection()
        try:
            cursor = conn.cursor()
            forum = cls._forum(cursor, forum_id)
            is_forum_admin = forum["admin_id"] == user_id
            if forum["is_private"] and not is_forum_admin:
                raise PermissionDeniedError("This forum is private")
            if (data.is_pinned or data.is_locked) and not is_forum_admin:
                raise PermissionDeniedError("Only the forum admin can pin or lock threads")
            cursor.execute(
                """
                INSERT INTO threads (forum_id, author_id, title, content, is_pinned, is_locked)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (forum_id, user_id, title, content, 1 if data.is_pinned else 0, 1 if data.is_locked else 0),
            )
            thread_id = cursor.lastrowid
            cursor.execute("UPDATE forums SET updated_at = CURRENT_TIMESTAMP WHERE id = ?", (forum_id,))
            conn.commit()
            thread = _format_thread(cursor.execute(f"{_THREAD_SELECT} WHERE t.id = ?", (thread_id,)).fetchone())
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        logger.info("User %s opened thread %s in forum %s", user_id, thread_id, forum_id)
        return thread

    @classmethod
    async def get_thread(cls, thread_id: int) -> Dict[str, Any]:
        conn = get_connection()
        try:
            cursor = conn.cursor()
            meta = cls._thread(cursor, thread_id)
            thread = _format_thread(cursor.execute(f"{_THREAD_SELECT} WHERE t.id = ?", (thread_id,)).fetchone())
            thread["forum"] = {"id": meta["forum_id"], "name": meta["forum_name"], "category": meta["forum_category"]}
            return thread
        finally:
            conn.close()

    @classmethod
    async def update_thread(cls, thread_id: int, data: Any, current_user: dict) -> Dict[str, Any]:
        """Edit a thread.

        The author may edit until the thread is locked; the forum admin
        may always edit and is the only one who changes the pinned and
        locked flags.
        """
        user_id = current_user["user_id"]
        title = _require(data.title, "Title is required")
        content = _require(data.content, "Content is required")
        conn = get_connection()
        try:
            cursor = conn.cursor()
            thread = cls._thread(cursor, thread_id)
            is_forum_admin = thread["forum_admin_id"] == user_id
            if not is_forum_admin:
                if thread["author_id"] != user_id:
                    raise PermissionDeniedError("You can only edit your own threads")
                if thread["is_locked"]:
                    raise PermissionDeniedError("This thread is locked")
                if data.is_pinned is not None or data.is_locked is not None:
                    raise PermissionDeniedError("Only the forum admin can pin or lock threads")
            updates: Dict[str, Any] = {"title": title, "content": content}
            if data.is_pinned is not None:
                updates["is_pinned"] = 1 if data.is_pinned else 0
            if data.is_locked is not None:
                updates["is_locked"] = 1 if data.is_locked else 0
            assignments = ", ".join(f"{name} = ?" for name in updates)
            cursor.execute(
                f"UPDATE threads SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                tuple(updates.values()) + (thread_id,),
            )
            conn.commit()
            return _format_thread(cursor.execute(f"{_THREAD_SELECT} WHERE t.id = ?", (thread_id,)).fetchone())
        finally:
            conn.close()

    @classmethod
    async def delete_thread(cls, thread_id: int, current_user: dict) -> None:
        user_id = current_user["user_id"]
        conn = get_connection()
        try:
            cursor = conn.cursor()
            thread = cls._thread(cursor, thread_id)
            if user_id not in (thread["author_id"], thread["forum_admin_id"]):
                raise PermissionDeniedError("Only the author or the forum admin can delete this thread")
            cursor.execute("DELETE FROM comments WHERE thread_id = ?", (thread_id,))
            cursor.execute("DELETE FROM threads WHERE id = ?", (thread_id,))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        await AuditService.record(user_id=user_id, action="delete", object_type="thread", object_id=thread_id)

    # ------------------------------------------------------------------
    # thread comments
    # ------------------------------------------------------------------

    @classmethod
    async def list_thread_comments(
        cls, thread_id: int, viewer: Optional[dict], page: int = 1, limit: int = 20
    ) -> Dict[str, Any]:
        """Top-level comments of a thread, each with its replies nested."""
        page = max(page, 1)
        conn = get_connection()
        try:
            cursor = conn.cursor()
            cls._thread(cursor, thread_id)
            total = cursor.execute(
                "SELECT COUNT(*) AS c FROM comments WHERE thread_id = ? AND parent_id IS NULL", (thread_id,)
            ).fetchone()["c"]
            top_level = select_comments(
                cursor, viewer, "c.thread_id = ? AND c.parent_id IS NULL",
                (thread_id, limit, (page - 1) * limit),
                "ORDER BY c.created_at ASC, c.id ASC LIMIT ? OFFSET ?",
            )
            replies = select_comments(
                cursor, viewer, "c.thread_id = ? AND c.parent_id IS NOT NULL", (thread_id,),
                "ORDER BY c.created_at ASC, c.id ASC",
            )
        finally:
            conn.close()
        by_parent: Dict[int, List[Dict[str, Any]]] = {}
        for reply in replies:
            by_parent.setdefault(reply["parent_id"], []).append(reply)
        for comment in top_level:
            comment["replies"] = by_parent.get(comment["id"], [])
        return {
            "comments": top_level,
            "pagination": {"page": page, "limit": limit, "total": total, "has_more": page * limit < total},
        }

    @classmethod
    async def create_thread_comment(cls, thread_id: int, data: Any, current_user: dict) -> Dict[str, Any]:
        content = _require(data.content, "Content is required")
        conn = get_connection()
        try:
            cursor = conn.cursor()
            thread = cls._thread(cursor, thread_id)
            if thread["is_locked"] and thread["forum_admin_id"] != current_user["user_id"]:
                raise PermissionDeniedError("This thread is locked")
            if data.parent_id is not None and not cursor.execute(
                "SELECT id FROM comments WHERE id = ? AND thread_id = ?", (data.parent_id, thread_id)
            ).fetchone():
                raise NotFoundError("Parent comment not found")
            cursor.execute(
                "INSERT INTO comments (thread_id, user_id, parent_id, content) VALUES (?, ?, ?, ?)",
                (thread_id, current_user["user_id"], data.parent_id, content),
            )
            comment_id = cursor.lastrowid
            cursor.execute("UPDATE threads SET updated_at = CURRENT_TIMESTAMP WHERE id = ?", (thread_id,))
            conn.commit()
            return select_comments(cursor, current_user, "c.id = ?", (comment_id,))[0]
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

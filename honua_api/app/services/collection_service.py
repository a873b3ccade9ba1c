"""Bookmark collections: named folders a user sorts bookmarked posts into."""

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from honua_api.app.core.db import get_connection
from honua_api.app.core.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class CollectionService:
    @staticmethod
    def _owned(cursor: sqlite3.Cursor, collection_id: int, user_id: int) -> sqlite3.Row:
        row = cursor.execute(
            "SELECT * FROM collections WHERE id = ? AND user_id = ?", (collection_id, user_id)
        ).fetchone()
        if not row:
            raise NotFoundError("Collection not found")
        return row

    @staticmethod
    def _clean_name(name: Optional[str]) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Collection name is required")
        return name

    @staticmethod
    def _with_count(cursor: sqlite3.Cursor, collection_id: int) -> Dict[str, Any]:
        row = cursor.execute(
            """
            SELECT c.*, (SELECT COUNT(*) FROM bookmarks b WHERE b.collection_id = c.id) AS bookmarks_count
            FROM collections c WHERE c.id = ?
            """,
            (collection_id,),
        ).fetchone()
        return dict(row)

    @classmethod
    async def list_collections(cls, current_user: dict) -> List[Dict[str, Any]]:
        conn = get_connection()
        try:
            rows = conn.execute(
                """
                SELECT c.*, (SELECT COUNT(*) FROM bookmarks b WHERE b.collection_id = c.id) AS bookmarks_count
                FROM collections c WHERE c.user_id = ?
                ORDER BY c.created_at DESC, c.id DESC
                """,
                (current_user["user_id"],),
            ).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()

    @classmethod
    async def create_collection(cls, data: Any, current_user: dict) -> Dict[str, Any]:
        name = cls._clean_name(data.name)
        conn = get_connection()
        try:
            cursor = conn.cursor()
            try:
                cursor.execute(
                    "INSERT INTO collections (user_id, name, description, color) VALUES (?, ?, ?, ?)",
                    (current_user["user_id"], name, data.description, data.color),
                )
            except sqlite3.IntegrityError:
                raise ConflictError("A collection with this name already exists")
            collection_id = cursor.lastrowid
            conn.commit()
            return cls._with_count(cursor, collection_id)
        finally:
            conn.close()

    @classmethod
    async def update_collection(cls, collection_id: int, data: Any, current_user: dict) -> Dict[str, Any]:
        name = cls._clean_name(data.name)
        conn = get_connection()
        try:
            cursor = conn.cursor()
            cls._owned(cursor, collection_id, current_user["user_id"])
            try:
                cursor.execute(
                    """
                    UPDATE collections SET name = ?, description = ?, color = ?, updated_at = CURRENT_TIMESTAMP
                    WHERE id = ?
                    """,
                    (name, data.description, data.color, collection_id),
                )
            except sqlite3.IntegrityError:
                raise ConflictError("A collection with this name already exists")
            conn.commit()
            return cls._with_count(cursor, collection_id)
        finally:
            conn.close()

    @classmethod
    async def delete_collection(cls, collection_id: int, current_user: dict) -> None:
        """Delete a collection; its bookmarks stay, unsorted."""
        conn = get_connection()
        try:
            cursor = conn.cursor()
            cls._owned(cursor, collection_id, current_user["user_id"])
            cursor.execute("DELETE FROM collections WHERE id = ?", (collection_id,))
            conn.commit()
        finally:
            conn.close()

    @classmethod
    async def clear_collections(cls, current_user: dict) -> Dict[str, Any]:
        conn = get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM collections WHERE user_id = ?", (current_user["user_id"],))
            deleted = cursor.rowcount
            conn.commit()
        finally:
            conn.close()
        logger.info("User %s cleared %s collections", current_user["user_id"], deleted)
        return {"message": "All collections deleted", "deleted": deleted}

    @classmethod
    async def move_bookmark(
        cls, bookmark_id: int, collection_id: Optional[int], current_user: dict
    ) -> Dict[str, Any]:
        """Move one of the caller's bookmarks into a collection (``None`` unsorts it)."""
        user_id = current_user["user_id"]
        conn = get_connection()
        try:
            cursor = conn.cursor()
            if not cursor.execute(
                "SELECT id FROM bookmarks WHERE id = ? AND user_id = ?", (bookmark_id, user_id)
            ).fetchone():
                raise NotFoundError("Bookmark not found")
            if collection_id is not None:
                cls._owned(cursor, collection_id, user_id)
            cursor.execute(
                "UPDATE bookmarks SET collection_id = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (collection_id, bookmark_id),
            )
            conn.commit()
            return dict(cursor.execute("SELECT * FROM bookmarks WHERE id = ?", (bookmark_id,)).fetchone())
        finally:
            conn.close()

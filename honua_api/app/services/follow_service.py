"""
Following between users.

The follow row and the two denormalised counters on ``users`` are
written in the same transaction, so ``followers_count`` and
``following_count`` always equal the number of follow rows.
"""

import logging
import sqlite3
from typing import Any, Dict

from honua_api.app.core.db import get_connection
from honua_api.app.core.errors import NotFoundError, ValidationError
from honua_api.app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


class FollowService:
    @staticmethod
    def _counts(cursor: sqlite3.Cursor, follower_id: int, following_id: int) -> Dict[str, int]:
        target = cursor.execute("SELECT followers_count FROM users WHERE id = ?", (following_id,)).fetchone()
        me = cursor.execute("SELECT following_count FROM users WHERE id = ?", (follower_id,)).fetchone()
        return {"follower_count": target["followers_count"], "following_count": me["following_count"]}

    @staticmethod
    def _ensure_target(cursor: sqlite3.Cursor, user_id: int) -> sqlite3.Row:
        row = cursor.execute("SELECT id, username FROM users WHERE id = ?", (user_id,)).fetchone()
        if not row:
            raise NotFoundError("User not found")
        return row

    @classmethod
    async def follow(cls, current_user: dict, target_id: int) -> Dict[str, Any]:
        follower_id = current_user["user_id"]
        if follower_id == target_id:
            raise ValidationError("You cannot follow yourself")
        conn = get_connection()
        try:
            cursor = conn.cursor()
            cls._ensure_target(cursor, target_id)
            try:
                cursor.execute(
                    "INSERT INTO follows (follower_id, following_id) VALUES (?, ?)", (follower_id, target_id)
                )
            except sqlite3.IntegrityError:
                raise ValidationError("Already following this user")
            cursor.execute("UPDATE users SET followers_count = followers_count + 1 WHERE id = ?", (target_id,))
            cursor.execute("UPDATE users SET following_count = following_count + 1 WHERE id = ?", (follower_id,))
            NotificationService._create(
                cursor,
                target_id,
                follower_id,
                "follow",
                "New follower",
                f"{current_user.get('username')} started following you",
            )
            counts = cls._counts(cursor, follower_id, target_id)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        logger.info("User %s followed user %s", follower_id, target_id)
        return {"message": "Successfully followed user", **counts}

    @classmethod
    async def unfollow(cls, current_user: dict, target_id: int) -> Dict[str, Any]:
        follower_id = current_user["user_id"]
        conn = get_connection()
        try:
            cursor = conn.cursor()
            cls._ensure_target(cursor, target_id)
            cursor.execute(
                "DELETE FROM follows WHERE follower_id = ? AND following_id = ?", (follower_id, target_id)
            )
            if cursor.rowcount == 0:
                raise ValidationError("You are not following this user")
            cursor.execute(
                "UPDATE users SET followers_count = MAX(followers_count - 1, 0) WHERE id = ?", (target_id,)
            )
            cursor.execute(
                "UPDATE users SET following_count = MAX(following_count - 1, 0) WHERE id = ?", (follower_id,)
            )
            counts = cls._counts(cursor, follower_id, target_id)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        logger.info("User %s unfollowed user %s", follower_id, target_id)
        return {"message": "Successfully unfollowed user", **counts}

    @classmethod
    async def status(cls, current_user: dict, target_id: int) -> Dict[str, bool]:
        """Whether the caller follows ``target_id`` and vice versa."""
        me = current_user["user_id"]
        conn = get_connection()
        try:
            cursor = conn.cursor()
            is_following = cursor.execute(
                "SELECT 1 FROM follows WHERE follower_id = ? AND following_id = ?", (me, target_id)
            ).fetchone()
            follows_you = cursor.execute(
                "SELECT 1 FROM follows WHERE follower_id = ? AND following_id = ?", (target_id, me)
            ).fetchone()
            return {"is_following": bool(is_following), "follows_you": bool(follows_you)}
        finally:
            conn.close()

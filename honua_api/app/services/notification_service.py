"""
Business logic for in-app notifications.

Other services create notifications through ``_create`` using their own
cursor, so the notification commits together with the like, follow or
comment that caused it.  Nobody is ever notified about their own
action.
"""

import logging
import sqlite3
from typing import Any, Dict, Optional

from honua_api.app.core.db import get_connection, row_to_dict
from honua_api.app.core.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = {"like", "comment", "follow", "mention", "repost", "order", "reward", "system"}

# Notification types listed under each inbox tab.
TAB_TYPES = {
    "likes": ("like",),
    "follows": ("follow",),
}


class NotificationService:
    """Service for creating and reading user notifications."""

    @staticmethod
    def _create(
        cursor: sqlite3.Cursor,
        recipient_id: int,
        sender_id: Optional[int],
        type_: str,
        title: str,
        message: str,
        post_id: Optional[int] = None,
        comment_id: Optional[int] = None,
    ) -> Optional[int]:
        """Insert a notification and return its id.

        Returns ``None`` without writing when the recipient is the
        sender.
        """
        if sender_id is not None and recipient_id == sender_id:
            return None
        cursor.execute(
            """
            INSERT INTO notifications (recipient_id, sender_id, type, title, message, post_id, comment_id)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (recipient_id, sender_id, type_, title, message, post_id, comment_id),
        )
        return cursor.lastrowid

    @classmethod
    async def list_notifications(
        cls,
        current_user: dict,
        tab: str = "all",
        limit: int = 20,
        offset: int = 0,
        read: Optional[bool] = None,
        count_only: bool = False,
    ) -> Dict[str, Any]:
        """List the caller's notifications for an inbox tab.

        ``tab`` is one of ``all``, ``unread``, ``likes`` or ``follows``.
        With ``count_only`` only the unread counter is returned.
        """
        user_id = current_user["user_id"]
        conn = get_connection()
        try:
            unread = conn.execute(
                "SELECT COUNT(*) AS c FROM notifications WHERE recipient_id = ? AND is_read = 0",
                (user_id,),
            ).fetchone()["c"]
            if count_only:
                return {"unread_count": unread}

            where = ["n.recipient_id = ?"]
            params: list = [user_id]
            if tab == "unread":
                where.append("n.is_read = 0")
            elif tab in TAB_TYPES:
                types = TAB_TYPES[tab]
                where.append("n.type IN (%s)" % ",".join("?" * len(types)))
                params.extend(types)
            if read is not None:
                where.append("n.is_read = ?")
                params.append(1 if read else 0)
            where_sql = " AND ".join(where)
            total = conn.execute(
                f"SELECT COUNT(*) AS c FROM notifications n WHERE {where_sql}", tuple(params)
            ).fetchone()["c"]
            rows = conn.execute(
                f"""
                SELECT n.*, u.username AS sender_username, u.full_name AS sender_full_name,
                       u.avatar_url AS sender_avatar_url
                FROM notifications n
                LEFT JOIN users u ON u.id = n.sender_id
                WHERE {where_sql}
                ORDER BY n.created_at DESC, n.id DESC
                LIMIT ? OFFSET ?
                """,
                tuple(params) + (limit, offset),
            ).fetchall()
            notifications = []
            for row in rows:
                item = row_to_dict(row, bool_fields=("is_read",))
                sender = {
                    "id": item["sender_id"],
                    "username": item.pop("sender_username"),
                    "full_name": item.pop("sender_full_name"),
                    "avatar_url": item.pop("sender_avatar_url"),
                }
                item["sender"] = sender if item["sender_id"] else None
                notifications.append(item)
            return {"notifications": notifications, "unread_count": unread, "total": total}
        finally:
            conn.close()

    @classmethod
    async def create_notification(cls, data: Any, current_user: dict) -> Dict[str, Any]:
        """Send a notification from the caller to another user."""
        if data.recipient_id == current_user["user_id"]:
            raise ValidationError("Cannot send a notification to yourself")
        if data.type not in NOTIFICATION_TYPES:
            raise ValidationError("Invalid notification type")
        conn = get_connection()
        try:
            cursor = conn.cursor()
            if not cursor.execute("SELECT id FROM users WHERE id = ?", (data.recipient_id,)).fetchone():
                raise NotFoundError("Recipient not found")
            notification_id = cls._create(
                cursor,
                data.recipient_id,
                current_user["user_id"],
                data.type,
                data.title,
                data.message,
                data.post_id,
                data.comment_id,
            )
            conn.commit()
            row = cursor.execute("SELECT * FROM notifications WHERE id = ?", (notification_id,)).fetchone()
            return row_to_dict(row, bool_fields=("is_read",))
        finally:
            conn.close()

    @classmethod
    async def mark_read(
        cls,
        current_user: dict,
        notification_id: Optional[int] = None,
        mark_all: bool = False,
    ) -> Dict[str, Any]:
        """Mark one notification, or all of the caller's, as read."""
        if not notification_id and not mark_all:
            raise ValidationError("notificationId or markAllAsRead is required")
        conn = get_connection()
        try:
            cursor = conn.cursor()
            if mark_all:
                cursor.execute(
                    "UPDATE notifications SET is_read = 1 WHERE recipient_id = ? AND is_read = 0",
                    (current_user["user_id"],),
                )
                updated = cursor.rowcount
                message = "All notifications marked as read"
            else:
                cursor.execute(
                    "UPDATE notifications SET is_read = 1 WHERE id = ? AND recipient_id = ?",
                    (notification_id, current_user["user_id"]),
                )
                if cursor.rowcount == 0:
                    raise NotFoundError("Notification not found")
                updated = 1
                message = "Notification marked as read"
            conn.commit()
            return {"success": True, "updated": updated, "message": message}
        finally:
            conn.close()

    @classmethod
    async def delete_notification(cls, notification_id: int, current_user: dict) -> None:
        conn = get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                "DELETE FROM notifications WHERE id = ? AND recipient_id = ?",
                (notification_id, current_user["user_id"]),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Notification not found")
            conn.commit()
        finally:
            conn.close()

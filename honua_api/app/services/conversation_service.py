"""
Direct conversations between two users and their messages.

A pair of users shares at most one conversation; starting a
conversation with somebody you already talk to returns the existing
one.
"""

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from honua_api.app.core.db import get_connection, row_to_dict
from honua_api.app.core.errors import NotFoundError, PermissionDeniedError, ValidationError

logger = logging.getLogger(__name__)


class ConversationService:
    @staticmethod
    def _participant(cursor: sqlite3.Cursor, user_id: int) -> Optional[Dict[str, Any]]:
        row = cursor.execute(
            "SELECT id, username, full_name, avatar_url FROM users WHERE id = ?", (user_id,)
        ).fetchone()
        return dict(row) if row else None

    @classmethod
    def _present(cls, cursor: sqlite3.Cursor, conversation: sqlite3.Row, user_id: int) -> Dict[str, Any]:
        data = dict(conversation)
        other_id = (
            conversation["participant_two_id"]
            if conversation["participant_one_id"] == user_id
            else conversation["participant_one_id"]
        )
        data["other_participant"] = cls._participant(cursor, other_id)
        last = cursor.execute(
            "SELECT * FROM messages WHERE conversation_id = ? ORDER BY created_at DESC, id DESC LIMIT 1",
            (conversation["id"],),
        ).fetchone()
        data["last_message"] = row_to_dict(last, bool_fields=("is_read",)) if last else None
        data["unread_count"] = cursor.execute(
            "SELECT COUNT(*) AS c FROM messages WHERE conversation_id = ? AND sender_id != ? AND is_read = 0",
            (conversation["id"], user_id),
        ).fetchone()["c"]
        return data

    @staticmethod
    def _member_conversation(cursor: sqlite3.Cursor, conversation_id: int, user_id: int) -> sqlite3.Row:
        row = cursor.execute("SELECT * FROM conversations WHERE id = ?", (conversation_id,)).fetchone()
        if not row or user_id not in (row["participant_one_id"], row["participant_two_id"]):
            raise NotFoundError("Conversation not found")
        return row

    @classmethod
    async def list_conversations(cls, current_user: dict) -> List[Dict[str, Any]]:
        user_id = current_user["user_id"]
        conn = get_connection()
        try:
            cursor = conn.cursor()
            rows = cursor.execute(
                """
                SELECT * FROM conversations
                WHERE participant_one_id = ? OR participant_two_id = ?
                ORDER BY updated_at DESC, id DESC
                """,
                (user_id, user_id),
            ).fetchall()
            return [cls._present(cursor, row, user_id) for row in rows]
        finally:
            conn.close()

    @classmethod
    async def start_conversation(cls, participant_id: Optional[int], current_user: dict) -> Dict[str, Any]:
        """Return the conversation with ``participant_id``, creating it if needed."""
        user_id = current_user["user_id"]
        if not participant_id:
            raise ValidationError("Participant ID is required")
        if participant_id == user_id:
            raise ValidationError("Cannot create a conversation with yourself")
        conn = get_connection()
        try:
            cursor = conn.cursor()
            if not cls._participant(cursor, participant_id):
                raise NotFoundError("User not found")
            existing = cursor.execute(
                """
                SELECT * FROM conversations
                WHERE (participant_one_id = ? AND participant_two_id = ?)
                   OR (participant_one_id = ? AND participant_two_id = ?)
                """,
                (user_id, participant_id, participant_id, user_id),
            ).fetchone()
            if existing:
                return {"conversation": cls._present(cursor, existing, user_id), "created": False}
            cursor.execute(
                "INSERT INTO conversations (participant_one_id, participant_two_id) VALUES (?, ?)",
                (user_id, participant_id),
            )
            conversation_id = cursor.lastrowid
            conn.commit()
            row = cursor.execute("SELECT * FROM conversations WHERE id = ?", (conversation_id,)).fetchone()
            logger.info("User %s started conversation %s with user %s", user_id, conversation_id, participant_id)
            return {"conversation": cls._present(cursor, row, user_id), "created": True}
        finally:
            conn.close()

    @classmethod
    async def get_conversation(cls, conversation_id: int, current_user: dict) -> Dict[str, Any]:
        user_id = current_user["user_id"]
        conn = get_connection()
        try:
            cursor = conn.cursor()
            row = cursor.execute("SELECT * FROM conversations WHERE id = ?", (conversation_id,)).fetchone()
            if not row:
                raise NotFoundError("Conversation not found")
            if user_id not in (row["participant_one_id"], row["participant_two_id"]):
                raise PermissionDeniedError("You are not a participant of this conversation")
            return cls._present(cursor, row, user_id)
        finally:
            conn.close()

    @classmethod
    async def list_messages(cls, conversation_id: Optional[int], current_user: dict) -> List[Dict[str, Any]]:
        """Messages of a conversation, oldest first; marks incoming ones as read."""
        if not conversation_id:
            raise ValidationError("Conversation ID is required")
        user_id = current_user["user_id"]
        conn = get_connection()
        try:
            cursor = conn.cursor()
            cls._member_conversation(cursor, conversation_id, user_id)
            rows = cursor.execute(
                """
                SELECT m.*, u.username AS sender_username, u.avatar_url AS sender_avatar_url
                FROM messages m JOIN users u ON u.id = m.sender_id
                WHERE m.conversation_id = ?
                ORDER BY m.created_at ASC, m.id ASC
                """,
                (conversation_id,),
            ).fetchall()
            cursor.execute(
                "UPDATE messages SET is_read = 1 WHERE conversation_id = ? AND sender_id != ? AND is_read = 0",
                (conversation_id, user_id),
            )
            conn.commit()
            return [row_to_dict(row, bool_fields=("is_read",)) for row in rows]
        finally:
            conn.close()

    @classmethod
    async def send_message(cls, data: Any, current_user: dict) -> Dict[str, Any]:
        content = (data.content or "").strip()
        if not content:
            raise ValidationError("Message content is required")
        user_id = current_user["user_id"]
        conn = get_connection()
        try:
            cursor = conn.cursor()
            cls._member_conversation(cursor, data.conversation_id, user_id)
            cursor.execute(
                "INSERT INTO messages (conversation_id, sender_id, content, media_url) VALUES (?, ?, ?, ?)",
                (data.conversation_id, user_id, content, data.media_url),
            )
            message_id = cursor.lastrowid
            cursor.execute(
                "UPDATE conversations SET updated_at = CURRENT_TIMESTAMP WHERE id = ?", (data.conversation_id,)
            )
            conn.commit()
            row = cursor.execute("SELECT * FROM messages WHERE id = ?", (message_id,)).fetchone()
            return row_to_dict(row, bool_fields=("is_read",))
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

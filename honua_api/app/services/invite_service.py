"""
Business logic for invite codes and referrals.

A user shares invite codes; when somebody accepts one, the invite row
records the invited user and both parties receive green points.  A
user can be referred only once: ``invites.invited_user_id`` is unique
and acceptance checks for an earlier referral before writing.
"""

import logging
import secrets
import sqlite3
import string
from typing import Any, Dict, List

from honua_api.app.core.config import settings
from honua_api.app.core.db import get_connection, row_to_dict
from honua_api.app.core.errors import NotFoundError, ValidationError
from honua_api.app.services.green_points_service import GreenPointsService
from honua_api.app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

INVITE_CODE_LENGTH = 10
BULK_INVITE_COUNT = 5
_CODE_ALPHABET = string.ascii_letters + string.digits + "_-"


def generate_invite_code(length: int = INVITE_CODE_LENGTH) -> str:
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))


class InviteService:
    """Generating, validating and accepting invite codes."""

    @staticmethod
    def _new_unique_code(cursor: sqlite3.Cursor) -> str:
        while True:
            code = generate_invite_code()
            if not cursor.execute("SELECT id FROM invites WHERE invite_code = ?", (code,)).fetchone():
                return code

    @classmethod
    async def generate(cls, current_user: dict, bulk: bool = False) -> Dict[str, Any]:
        """Return the caller's open invite code, or create new ones.

        A single request reuses an active, unused code when one exists.
        ``bulk`` always creates five fresh codes.
        """
        user_id = current_user["user_id"]
        conn = get_connection()
        try:
            cursor = conn.cursor()
            if not bulk:
                existing = cursor.execute(
                    """
                    SELECT invite_code FROM invites
                    WHERE inviter_id = ? AND is_active = 1 AND invited_user_id IS NULL
                    ORDER BY id LIMIT 1
                    """,
                    (user_id,),
                ).fetchone()
                if existing:
                    return {"inviteCode": existing["invite_code"]}
                code = cls._new_unique_code(cursor)
                cursor.execute("INSERT INTO invites (inviter_id, invite_code) VALUES (?, ?)", (user_id, code))
                conn.commit()
                logger.info("User %s generated invite code", user_id)
                return {"inviteCode": code}

            codes: List[str] = []
            for _ in range(BULK_INVITE_COUNT):
                code = cls._new_unique_code(cursor)
                cursor.execute("INSERT INTO invites (inviter_id, invite_code) VALUES (?, ?)", (user_id, code))
                codes.append(code)
            conn.commit()
            logger.info("User %s generated %s invite codes", user_id, len(codes))
            return {
                "inviteCodes": codes,
                "count": len(codes),
                "message": f"Successfully generated {len(codes)} invite codes",
            }
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @classmethod
    async def validate(cls, code: str) -> Dict[str, Any]:
        """Public lookup of an invite code and its inviter."""
        conn = get_connection()
        try:
            row = conn.execute(
                """
                SELECT i.invite_code, i.invited_user_id, u.full_name, u.username, u.avatar_url
                FROM invites i JOIN users u ON u.id = i.inviter_id
                WHERE i.invite_code = ? AND i.is_active = 1
                """,
                (code,),
            ).fetchone()
            if not row:
                raise NotFoundError("Invalid invite code")
            return {
                "invite_code": row["invite_code"],
                "inviter_name": row["full_name"],
                "inviter_username": row["username"],
                "inviter_avatar": row["avatar_url"],
                "is_valid": True,
                "is_used": row["invited_user_id"] is not None,
            }
        finally:
            conn.close()

    @classmethod
    async def accept(cls, code: str, current_user: dict) -> Dict[str, Any]:
        """Redeem an invite code for the caller.

        The referral itself is committed first; rewarding the inviter
        and the newcomer happens afterwards and a failure there is only
        logged.
        """
        user_id = current_user["user_id"]
        conn = get_connection()
        try:
            cursor = conn.cursor()
            invite = cursor.execute(
                "SELECT * FROM invites WHERE invite_code = ? AND is_active = 1", (code,)
            ).fetchone()
            if not invite:
                raise NotFoundError("Invalid invite code")
            if invite["invited_user_id"] is not None:
                raise ValidationError("Invite code has already been used")
            if invite["inviter_id"] == user_id:
                raise ValidationError("You cannot use your own invite code")
            if cursor.execute("SELECT id FROM invites WHERE invited_user_id = ?", (user_id,)).fetchone():
                raise ValidationError("You have already been referred by another user")
            cursor.execute(
                "UPDATE invites SET invited_user_id = ?, used_at = CURRENT_TIMESTAMP WHERE id = ?",
                (user_id, invite["id"]),
            )
            NotificationService._create(
                cursor,
                invite["inviter_id"],
                user_id,
                "reward",
                "Referral accepted",
                f"{current_user.get('username') or 'A new member'} joined with your invite",
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        logger.info("User %s accepted invite %s from user %s", user_id, invite["id"], invite["inviter_id"])

        rewards = {"inviter": 0, "invitee": 0}
        try:
            await GreenPointsService.award_points(
                invite["inviter_id"],
                settings.referral_inviter_points,
                "referral",
                "Successful referral",
                invite["id"],
            )
            rewards["inviter"] = settings.referral_inviter_points
            await GreenPointsService.award_points(
                user_id,
                settings.referral_invitee_points,
                "referral_bonus",
                "Welcome bonus",
                invite["id"],
            )
            rewards["invitee"] = settings.referral_invitee_points
        except Exception as exc:
            logger.warning("Referral points for invite %s could not be awarded: %s", invite["id"], exc)
        return {
            "success": True,
            "message": "Invite accepted successfully",
            "inviter_id": invite["inviter_id"],
            "points_awarded": rewards,
        }

    @classmethod
    async def stats(cls, current_user: dict) -> Dict[str, Any]:
        """Referral count and leaderboard position of the caller.

        Only users with at least one successful referral are ranked; the
        caller's rank is 0 until they have one.
        """
        conn = get_connection()
        try:
            rows = conn.execute(
                """
                SELECT inviter_id, COUNT(*) AS used FROM invites
                WHERE invited_user_id IS NOT NULL
                GROUP BY inviter_id
                ORDER BY used DESC, MIN(used_at) ASC
                """
            ).fetchall()
        finally:
            conn.close()
        invited_count = 0
        rank = 0
        for position, row in enumerate(rows, start=1):
            if row["inviter_id"] == current_user["user_id"]:
                invited_count = row["used"]
                rank = position
                break
        return {"invitedCount": invited_count, "rank": rank, "totalUsers": len(rows)}

    @classmethod
    async def list_invites(cls, limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
        """All invites with inviter and invitee usernames (administration)."""
        conn = get_connection()
        try:
            rows = conn.execute(
                """
                SELECT i.*, inviter.username AS inviter_username, invited.username AS invited_username
                FROM invites i
                JOIN users inviter ON inviter.id = i.inviter_id
                LEFT JOIN users invited ON invited.id = i.invited_user_id
                ORDER BY i.created_at DESC, i.id DESC
                LIMIT ? OFFSET ?
                """,
                (limit, offset),
            ).fetchall()
            return [row_to_dict(row, bool_fields=("is_active",)) for row in rows]
        finally:
            conn.close()

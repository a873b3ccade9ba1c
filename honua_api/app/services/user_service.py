"""
User service: accounts, profiles and community statistics.

Users double as public profiles.  The first account ever registered is
made super administrator so a fresh deployment can be managed without
touching the database; everybody after that starts as a regular user.
"""

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from honua_api.app.core.db import get_connection
from honua_api.app.core.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ServiceError,
    ValidationError,
)
from honua_api.app.core.security import (
    ROLE_SUPER_ADMIN,
    ROLE_USER,
    hash_password,
    is_admin,
    verify_password,
)
from honua_api.app.services.audit_service import AuditService
from honua_api.app.services.green_points_service import GreenPointsService
from honua_api.app.services.invite_service import InviteService
from honua_api.app.services.reputation_service import reputation_level

logger = logging.getLogger(__name__)

# Columns safe to return to any client.  ``password`` is never selected.
PUBLIC_COLUMNS = (
    "id, email, username, full_name, role_id, bio, location, website, avatar_url, cover_url, "
    "followers_count, following_count, reputation, disabled, created_at, updated_at"
)

PROFILE_FIELDS = ("full_name", "username", "bio", "location", "website", "avatar_url", "cover_url")


def _public(row: sqlite3.Row) -> Dict[str, Any]:
    data = dict(row)
    data.pop("password", None)
    data["disabled"] = bool(data.get("disabled"))
    return data


class UserService:
    """Service layer for user accounts and profiles."""

    @staticmethod
    def _fetch(cursor: sqlite3.Cursor, user_id: int) -> Optional[sqlite3.Row]:
        return cursor.execute(f"SELECT {PUBLIC_COLUMNS} FROM users WHERE id = ?", (user_id,)).fetchone()

    @classmethod
    async def register(cls, data: Any) -> Dict[str, Any]:
        """Create an account and optionally redeem an invite code.

        Parameters
        ----------
        data : UserCreate
            Registration payload with ``email``, ``username``,
            ``full_name``, ``password`` and an optional ``invite_code``.

        Returns
        -------
        dict
            ``{"user": ..., "referral": ...}``; ``referral`` is the
            invite acceptance result or ``None`` when no code was given
            or the code could not be redeemed.
        """
        conn = get_connection()
        try:
            cursor = conn.cursor()
            if cursor.execute("SELECT id FROM users WHERE email = ?", (data.email,)).fetchone():
                raise ConflictError("Email already registered")
            if cursor.execute("SELECT id FROM users WHERE username = ?", (data.username,)).fetchone():
                raise ConflictError("Username already taken")
            existing = cursor.execute("SELECT COUNT(*) AS c FROM users").fetchone()["c"]
            role_id = ROLE_SUPER_ADMIN if existing == 0 else ROLE_USER
            cursor.execute(
                """
                INSERT INTO users (email, username, full_name, password, role_id)
                VALUES (?, ?, ?, ?, ?)
                """,
                (data.email, data.username, data.full_name, hash_password(data.password), role_id),
            )
            user_id = cursor.lastrowid
            conn.commit()
            user = _public(cls._fetch(cursor, user_id))
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        logger.info("Registered user %s (%s) with role %s", user_id, data.username, role_id)
        await AuditService.record(user_id=user_id, action="register", object_type="user", object_id=user_id)

        referral = None
        if data.invite_code:
            try:
                referral = await InviteService.accept(
                    data.invite_code, {"user_id": user_id, "username": data.username, "role_id": role_id}
                )
            except ServiceError as exc:
                logger.warning("Invite code on registration of user %s not redeemed: %s", user_id, exc.message)
        return {"user": user, "referral": referral}

    @classmethod
    async def authenticate(cls, email: str, password: str) -> Optional[Dict[str, Any]]:
        """Return the user for valid credentials, otherwise ``None``.

        Disabled accounts never authenticate.
        """
        conn = get_connection()
        try:
            row = conn.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
        finally:
            conn.close()
        if not row or row["disabled"] or not verify_password(password, row["password"]):
            return None
        return _public(row)

    @classmethod
    async def get_profile(cls, user_id: int) -> Dict[str, Any]:
        """Full profile with green point balance, reputation level and post count."""
        conn = get_connection()
        try:
            cursor = conn.cursor()
            row = cls._fetch(cursor, user_id)
            if not row:
                raise NotFoundError("Profile not found")
            profile = _public(row)
            profile["posts_count"] = cursor.execute(
                "SELECT COUNT(*) AS c FROM posts WHERE user_id = ?", (user_id,)
            ).fetchone()["c"]
            profile["green_points"] = GreenPointsService._balance(cursor, user_id)
            profile["reputation_level"] = reputation_level(profile["reputation"])
            return profile
        finally:
            conn.close()

    @classmethod
    async def get_profile_by_username(cls, username: Optional[str]) -> Dict[str, Any]:
        if not username:
            raise ValidationError("Username is required")
        conn = get_connection()
        try:
            row = conn.execute("SELECT id FROM users WHERE username = ?", (username,)).fetchone()
        finally:
            conn.close()
        if not row:
            raise NotFoundError("Profile not found")
        profile = await cls.get_profile(row["id"])
        profile.pop("email", None)
        return profile

    @classmethod
    async def update_profile(cls, current_user: dict, data: Any) -> Dict[str, Any]:
        """Update the caller's profile; ``full_name`` and ``username`` are required."""
        if not (data.full_name or "").strip() or not (data.username or "").strip():
            raise ValidationError("Full name and username are required")
        user_id = current_user["user_id"]
        values = {name: getattr(data, name) for name in PROFILE_FIELDS}
        values["full_name"] = values["full_name"].strip()
        values["username"] = values["username"].strip()
        conn = get_connection()
        try:
            cursor = conn.cursor()
            taken = cursor.execute(
                "SELECT id FROM users WHERE username = ? AND id != ?", (values["username"], user_id)
            ).fetchone()
            if taken:
                raise ConflictError("Username is already taken")
            assignments = ", ".join(f"{name} = ?" for name in values)
            cursor.execute(
                f"UPDATE users SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                tuple(values.values()) + (user_id,),
            )
            conn.commit()
        finally:
            conn.close()
        await AuditService.record(
            user_id=user_id, action="update", object_type="profile", object_id=user_id, details=values
        )
        return await cls.get_profile(user_id)

    @classmethod
    async def search(cls, query: str, limit: int = 10) -> List[Dict[str, Any]]:
        if not query or not query.strip():
            return []
        pattern = f"%{query.strip()}%"
        conn = get_connection()
        try:
            rows = conn.execute(
                """
                SELECT id, username, full_name, avatar_url, bio, followers_count
                FROM users
                WHERE disabled = 0 AND (username LIKE ? OR full_name LIKE ?)
                ORDER BY username
                LIMIT ?
                """,
                (pattern, pattern, limit),
            ).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()

    @classmethod
    async def suggestions(cls, current_user: Optional[dict], limit: int = 5) -> List[Dict[str, Any]]:
        """Most followed users the caller does not follow yet."""
        where = ["u.disabled = 0"]
        params: List[Any] = []
        if current_user:
            where.append("u.id != ?")
            where.append("u.id NOT IN (SELECT following_id FROM follows WHERE follower_id = ?)")
            params.extend([current_user["user_id"], current_user["user_id"]])
        conn = get_connection()
        try:
            rows = conn.execute(
                f"""
                SELECT u.id, u.username, u.full_name, u.avatar_url, u.bio,
                       u.followers_count, u.following_count,
                       (SELECT COUNT(*) FROM posts p WHERE p.user_id = u.id) AS posts_count
                FROM users u
                WHERE {" AND ".join(where)}
                ORDER BY u.followers_count DESC, u.id ASC
                LIMIT ?
                """,
                tuple(params) + (limit,),
            ).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()

    @classmethod
    async def stats(cls, user_id: int) -> Dict[str, Any]:
        """Dashboard statistics and the two community leaderboards.

        ``points`` is the sum of the user's reputation actions and
        ``rank`` their position when all users are ordered by
        reputation.
        """
        conn = get_connection()
        try:
            cursor = conn.cursor()
            user = cursor.execute(
                "SELECT id, username, full_name, reputation FROM users WHERE id = ?", (user_id,)
            ).fetchone()
            if not user:
                raise NotFoundError("User not found")
            total_points = cursor.execute(
                "SELECT COALESCE(SUM(points), 0) AS s FROM reputation_actions WHERE user_id = ?", (user_id,)
            ).fetchone()["s"]
            tasks_completed = cursor.execute(
                "SELECT COUNT(*) AS c FROM task_completions WHERE user_id = ? AND status = 'verified'",
                (user_id,),
            ).fetchone()["c"]
            invites_sent = cursor.execute(
                "SELECT COUNT(*) AS c FROM invites WHERE inviter_id = ? AND invited_user_id IS NOT NULL",
                (user_id,),
            ).fetchone()["c"]
            rank = cursor.execute(
                """
                SELECT COUNT(*) + 1 AS r FROM users
                WHERE reputation > ? OR (reputation = ? AND id < ?)
                """,
                (user["reputation"], user["reputation"], user_id),
            ).fetchone()["r"]

            points_rows = cursor.execute(
                """
                SELECT u.id, u.username, u.full_name, u.avatar_url, u.reputation,
                       (SELECT COUNT(*) FROM task_completions tc
                        WHERE tc.user_id = u.id AND tc.status = 'verified') AS tasks_completed
                FROM users u
                ORDER BY u.reputation DESC, u.id ASC
                LIMIT 10
                """
            ).fetchall()
            invite_rows = cursor.execute(
                """
                SELECT u.id, u.username, u.full_name, u.avatar_url, COUNT(i.id) AS invites
                FROM invites i JOIN users u ON u.id = i.inviter_id
                WHERE i.invited_user_id IS NOT NULL
                GROUP BY u.id
                ORDER BY invites DESC, u.id ASC
                LIMIT 10
                """
            ).fetchall()
        finally:
            conn.close()

        def _entry_user(row: sqlite3.Row) -> Dict[str, Any]:
            return {
                "id": row["id"],
                "username": row["username"],
                "full_name": row["full_name"],
                "avatar_url": row["avatar_url"],
            }

        return {
            "user": {
                "id": user["id"],
                "username": user["username"],
                "full_name": user["full_name"],
                "points": total_points,
                "rank": rank,
                "tasks_completed": tasks_completed,
                "invites_sent": invites_sent,
            },
            "leaderboards": {
                "points": [
                    {
                        "rank": position,
                        "user": _entry_user(row),
                        "points": row["reputation"],
                        "tasks_completed": row["tasks_completed"],
                    }
                    for position, row in enumerate(points_rows, start=1)
                ],
                "invites": [
                    {"rank": position, "user": _entry_user(row), "invites": row["invites"]}
                    for position, row in enumerate(invite_rows, start=1)
                ],
            },
        }

    @classmethod
    async def list_users(cls, limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
        conn = get_connection()
        try:
            rows = conn.execute(
                f"SELECT {PUBLIC_COLUMNS} FROM users ORDER BY id LIMIT ? OFFSET ?", (limit, offset)
            ).fetchall()
            return [_public(row) for row in rows]
        finally:
            conn.close()

    @classmethod
    async def update_user(cls, user_id: int, data: Any, current_user: dict) -> Dict[str, Any]:
        """Administrative update of an account.

        Users may edit their own name and e-mail; changing a role or the
        disabled flag, or editing somebody else, requires an
        administrator.
        """
        admin = is_admin(current_user)
        if not admin and current_user["user_id"] != user_id:
            raise PermissionDeniedError("You can only update your own account")
        if not admin and (data.role_id is not None or data.disabled is not None):
            raise PermissionDeniedError("Only administrators can change roles or disable accounts")
        updates = data.model_dump(exclude_unset=True, exclude_none=True)
        if "password" in updates:
            updates["password"] = hash_password(updates["password"])
        if "disabled" in updates:
            updates["disabled"] = 1 if updates["disabled"] else 0
        conn = get_connection()
        try:
            cursor = conn.cursor()
            if not cls._fetch(cursor, user_id):
                raise NotFoundError("User not found")
            if "email" in updates and cursor.execute(
                "SELECT id FROM users WHERE email = ? AND id != ?", (updates["email"], user_id)
            ).fetchone():
                raise ConflictError("Email already registered")
            if "role_id" in updates and not cursor.execute(
                "SELECT id FROM roles WHERE id = ?", (updates["role_id"],)
            ).fetchone():
                raise ValidationError("Unknown role")
            if updates:
                assignments = ", ".join(f"{name} = ?" for name in updates)
                cursor.execute(
                    f"UPDATE users SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    tuple(updates.values()) + (user_id,),
                )
            conn.commit()
            row = cls._fetch(cursor, user_id)
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        updates.pop("password", None)
        await AuditService.record(
            user_id=current_user["user_id"], action="update", object_type="user", object_id=user_id, details=updates
        )
        return _public(row)

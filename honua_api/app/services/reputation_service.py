"""
Reputation points, levels and achievements.

Reputation is a running total on ``users.reputation`` backed by an
append-only ``reputation_actions`` log.  After every award the user's
achievements are re-evaluated; an achievement is granted at most once
and pays its own points as an ``achievement_earned`` action.
"""

import json
import logging
import sqlite3
from typing import Any, Dict, List, Optional

from honua_api.app.core.db import get_connection, row_to_dict
from honua_api.app.core.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

VALID_ACTION_TYPES = {
    "post_created",
    "post_liked",
    "post_shared",
    "post_reported",
    "comment_created",
    "comment_liked",
    "comment_helpful",
    "task_completed",
    "achievement_earned",
    "verified_action",
    "community_participation",
    "educational_content",
    "sustainability_impact",
    "peer_recognition",
    "consistency_bonus",
    "inactivity_penalty",
}

ACHIEVEMENT_CATEGORIES = {"sustainability", "community", "engagement", "milestone", "special"}
# requirement keys _qualifies can measure
REQUIREMENT_KEYS = ("posts", "likes", "reputation")

# (minimum reputation, level definition), highest first.
REPUTATION_LEVELS = [
    (901, {
        "level_name": "Sustainability Leader",
        "badge_color": "#F59E0B",
        "badge_icon": "👑",
        "description": "Top-tier community leader driving real change.",
        "benefits": {"features": ["All features", "Leadership badge", "Priority support"]},
    }),
    (601, {
        "level_name": "Community Expert",
        "badge_color": "#8B5CF6",
        "badge_icon": "🏆",
        "description": "Recognized expert in sustainability topics.",
        "benefits": {"features": ["Mentor others", "Verify tasks", "Expert badge"]},
    }),
    (301, {
        "level_name": "Trusted Member",
        "badge_color": "#3B82F6",
        "badge_icon": "🌳",
        "description": "Established community member with proven engagement.",
        "benefits": {"features": ["Moderate comments", "Create events", "Advanced tasks"]},
    }),
    (101, {
        "level_name": "Active Contributor",
        "badge_color": "#10B981",
        "badge_icon": "🌿",
        "description": "Regular participant making positive contributions.",
        "benefits": {"features": ["Create polls", "Join forums", "Basic task access"]},
    }),
    (0, {
        "level_name": "New Member",
        "badge_color": "#6B7280",
        "badge_icon": "🌱",
        "description": "Welcome to the community! Start your sustainability journey.",
        "benefits": {"features": ["Basic posting", "Comment on posts", "Like posts"]},
    }),
]


def reputation_level(reputation: int) -> Dict[str, Any]:
    """Return the level definition for a reputation score.

    Scores below zero (after penalties) still map to New Member.
    """
    for minimum, level in REPUTATION_LEVELS:
        if reputation >= minimum:
            return {"min_points": minimum, **level}
    return {"min_points": 0, **REPUTATION_LEVELS[-1][1]}


def _valid_requirements(requirements: Any) -> bool:
    """Known keys only, each with a non-negative integer threshold."""
    if not isinstance(requirements, dict):
        return False
    return all(
        key in REQUIREMENT_KEYS and isinstance(value, int) and not isinstance(value, bool) and value >= 0
        for key, value in requirements.items()
    )


class ReputationService:
    """Awarding reputation and evaluating achievements."""

    @staticmethod
    def _add_reputation(
        cursor: sqlite3.Cursor,
        user_id: int,
        action_type: str,
        points: int,
        reference_id: Optional[int] = None,
        reference_type: Optional[str] = None,
        description: Optional[str] = None,
    ) -> int:
        """Log the action and move the user's running total; return the new total."""
        cursor.execute(
            """
            INSERT INTO reputation_actions (user_id, action_type, points, reference_id, reference_type, description)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (user_id, action_type, points, reference_id, reference_type, description),
        )
        cursor.execute(
            "UPDATE users SET reputation = reputation + ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (points, user_id),
        )
        return cursor.execute("SELECT reputation FROM users WHERE id = ?", (user_id,)).fetchone()["reputation"]

    @staticmethod
    def _qualifies(cursor: sqlite3.Cursor, user_id: int, achievement: sqlite3.Row) -> bool:
        """Evaluate an achievement's requirements for a user.

        Requirements are a JSON object; every key present must be met.
        ``posts`` counts the user's posts, ``likes`` the likes they
        have given and ``reputation`` their running total.
        """
        try:
            requirements = json.loads(achievement["requirements"] or "{}")
        except json.JSONDecodeError:
            logger.warning("Achievement %s has unreadable requirements", achievement["id"])
            return False
        if not requirements or not _valid_requirements(requirements):
            if requirements:
                logger.warning("Achievement %s has unsupported requirements", achievement["id"])
            return False
        if "posts" in requirements:
            count = cursor.execute("SELECT COUNT(*) AS c FROM posts WHERE user_id = ?", (user_id,)).fetchone()["c"]
            if count < requirements["posts"]:
                return False
        if "likes" in requirements:
            count = cursor.execute("SELECT COUNT(*) AS c FROM likes WHERE user_id = ?", (user_id,)).fetchone()["c"]
            if count < requirements["likes"]:
                return False
        if "reputation" in requirements:
            score = cursor.execute("SELECT reputation FROM users WHERE id = ?", (user_id,)).fetchone()["reputation"]
            if score < requirements["reputation"]:
                return False
        return True

    @classmethod
    def _check_achievements(cls, cursor: sqlite3.Cursor, user_id: int) -> List[Dict[str, Any]]:
        """Grant every achievement the user newly qualifies for.

        Granting pays points, which may unlock a reputation-based
        achievement in turn, so evaluation repeats until nothing new is
        earned.
        """
        earned: List[Dict[str, Any]] = []
        while True:
            pending = cursor.execute(
                """
                SELECT a.* FROM achievements a
                WHERE a.id NOT IN (SELECT achievement_id FROM user_achievements WHERE user_id = ?)
                ORDER BY a.points, a.id
                """,
                (user_id,),
            ).fetchall()
            newly = [a for a in pending if cls._qualifies(cursor, user_id, a)]
            if not newly:
                return earned
            for achievement in newly:
                cursor.execute(
                    "INSERT INTO user_achievements (user_id, achievement_id) VALUES (?, ?)",
                    (user_id, achievement["id"]),
                )
                cls._add_reputation(
                    cursor,
                    user_id,
                    "achievement_earned",
                    achievement["points"],
                    reference_id=achievement["id"],
                    reference_type="achievement",
                    description=f"Earned achievement: {achievement['name']}",
                )
                logger.info("User %s earned achievement %s", user_id, achievement["name"])
                earned.append(row_to_dict(achievement, json_fields=("requirements",)))

    @classmethod
    def _award(
        cls,
        cursor: sqlite3.Cursor,
        user_id: int,
        action_type: str,
        points: int,
        reference_id: Optional[int] = None,
        reference_type: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Cursor-level equivalent of ``award`` used by the task service."""
        cls._add_reputation(cursor, user_id, action_type, points, reference_id, reference_type, description)
        achievements = cls._check_achievements(cursor, user_id)
        total = cursor.execute("SELECT reputation FROM users WHERE id = ?", (user_id,)).fetchone()["reputation"]
        return {"newReputation": total, "newAchievements": achievements}

    @classmethod
    async def award(cls, data: Any) -> Dict[str, Any]:
        """Award reputation to a user and evaluate achievements."""
        if data.actionType not in VALID_ACTION_TYPES:
            raise ValidationError("Invalid action type")
        conn = get_connection()
        try:
            cursor = conn.cursor()
            if not cursor.execute("SELECT id FROM users WHERE id = ?", (data.userId,)).fetchone():
                raise NotFoundError("User not found")
            result = cls._award(
                cursor,
                data.userId,
                data.actionType,
                data.points,
                data.referenceId,
                data.referenceType,
                data.description,
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        logger.info("Awarded %s reputation to user %s for %s", data.points, data.userId, data.actionType)
        return {"success": True, "pointsAwarded": data.points, **result}

    @classmethod
    async def get_reputation(cls, user_id: Optional[int] = None, username: Optional[str] = None) -> Dict[str, Any]:
        """Reputation summary for a user identified by id or username."""
        if not user_id and not username:
            raise ValidationError("User ID or username is required")
        conn = get_connection()
        try:
            cursor = conn.cursor()
            if user_id:
                user = cursor.execute(
                    "SELECT id, username, reputation FROM users WHERE id = ?", (user_id,)
                ).fetchone()
            else:
                user = cursor.execute(
                    "SELECT id, username, reputation FROM users WHERE username = ?", (username,)
                ).fetchone()
            if not user:
                raise NotFoundError("User not found")
            actions = cursor.execute(
                """
                SELECT * FROM reputation_actions WHERE user_id = ?
                ORDER BY created_at DESC, id DESC LIMIT 10
                """,
                (user["id"],),
            ).fetchall()
            return {
                "user": dict(user),
                "level": reputation_level(user["reputation"]),
                "recentActions": [dict(row) for row in actions],
                "achievements": cls._user_achievements(cursor, user["id"]),
            }
        finally:
            conn.close()

    @staticmethod
    def _user_achievements(cursor: sqlite3.Cursor, user_id: int) -> List[Dict[str, Any]]:
        rows = cursor.execute(
            """
            SELECT ua.earned_at, a.id, a.name, a.description, a.icon, a.category, a.points
            FROM user_achievements ua JOIN achievements a ON a.id = ua.achievement_id
            WHERE ua.user_id = ?
            ORDER BY ua.earned_at DESC, ua.id DESC
            """,
            (user_id,),
        ).fetchall()
        return [
            {
                "earned_at": row["earned_at"],
                "achievement": {
                    "id": row["id"],
                    "name": row["name"],
                    "description": row["description"],
                    "icon": row["icon"],
                    "category": row["category"],
                    "points": row["points"],
                },
            }
            for row in rows
        ]

    @classmethod
    async def list_achievements(
        cls,
        user_id: Optional[int] = None,
        category: Optional[str] = None,
    ) -> Dict[str, Any]:
        """A user's earned achievements, or the whole catalogue."""
        conn = get_connection()
        try:
            cursor = conn.cursor()
            if user_id:
                return {"achievements": cls._user_achievements(cursor, user_id)}
            query = "SELECT * FROM achievements"
            params: tuple = ()
            if category:
                query += " WHERE category = ?"
                params = (category,)
            query += " ORDER BY category ASC, points ASC"
            rows = cursor.execute(query, params).fetchall()
            return {"achievements": [row_to_dict(row, json_fields=("requirements",)) for row in rows]}
        finally:
            conn.close()

    @classmethod
    async def create_achievement(cls, data: Any) -> Dict[str, Any]:
        if not data.name or not data.description or not data.icon or not data.category:
            raise ValidationError("Name, description, icon, and category are required")
        if data.category not in ACHIEVEMENT_CATEGORIES:
            raise ValidationError("Invalid category")
        if data.requirements and not _valid_requirements(data.requirements):
            raise ValidationError(
                "Requirements may only use " + ", ".join(REQUIREMENT_KEYS) + " with non-negative integer values"
            )
        conn = get_connection()
        try:
            cursor = conn.cursor()
            try:
                cursor.execute(
                    """
                    INSERT INTO achievements (name, description, icon, category, points, requirements)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        data.name,
                        data.description,
                        data.icon,
                        data.category,
                        data.points,
                        json.dumps(data.requirements) if data.requirements else None,
                    ),
                )
            except sqlite3.IntegrityError:
                raise ConflictError("An achievement with this name already exists")
            achievement_id = cursor.lastrowid
            conn.commit()
            row = cursor.execute("SELECT * FROM achievements WHERE id = ?", (achievement_id,)).fetchone()
            return row_to_dict(row, json_fields=("requirements",))
        finally:
            conn.close()

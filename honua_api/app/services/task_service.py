"""
Sustainability tasks and their completions.

Completing a task that needs no verification pays out immediately:
reputation (``task_completed``) and green points worth the task's
points.  Tasks that need verification are stored as ``pending`` until an
administrator verifies or rejects them; verification pays reputation as
``verified_action`` plus the green points.
"""

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from honua_api.app.core.db import get_connection, row_to_dict
from honua_api.app.core.errors import NotFoundError, ValidationError
from honua_api.app.services.audit_service import AuditService
from honua_api.app.services.green_points_service import GreenPointsService
from honua_api.app.services.reputation_service import ReputationService

logger = logging.getLogger(__name__)

DIFFICULTIES = ("easy", "medium", "hard")
VERIFICATION_STATUSES = ("verified", "rejected")
MIN_TASK_VALUE = 1
MAX_TASK_VALUE = 1000

TASK_BOOL_FIELDS = ("verification_required", "is_active")

_DIFFICULTY_ORDER = "CASE t.difficulty WHEN 'easy' THEN 0 WHEN 'medium' THEN 1 WHEN 'hard' THEN 2 ELSE 3 END"


def _task_dict(row: sqlite3.Row) -> Dict[str, Any]:
    return row_to_dict(row, bool_fields=TASK_BOOL_FIELDS)


def _validate_task_values(difficulty: Optional[str], points: Any, impact_score: Any) -> None:
    if difficulty not in DIFFICULTIES:
        raise ValidationError("Difficulty must be easy, medium, or hard")
    for value in (points, impact_score):
        if value is None or not MIN_TASK_VALUE <= value <= MAX_TASK_VALUE:
            raise ValidationError("Points and impact score must be between 1 and 1000")


class TaskService:
    """Task catalogue, completions and verification."""

    @staticmethod
    def _require_task(cursor: sqlite3.Cursor, task_id: int) -> sqlite3.Row:
        task = cursor.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if not task:
            raise NotFoundError("Task not found")
        return task

    @staticmethod
    def _pay_out(cursor: sqlite3.Cursor, user_id: int, task: sqlite3.Row, action_type: str, description: str) -> Dict[str, Any]:
        reputation = ReputationService._award(
            cursor, user_id, action_type, task["points"], task["id"], "task", description
        )
        GreenPointsService._add(cursor, user_id, task["points"], "task_completed", description, task["id"])
        return reputation

    @classmethod
    async def list_tasks(
        cls,
        viewer: Optional[dict],
        user_id: Optional[int] = None,
        completed: Optional[bool] = None,
        category: Optional[str] = None,
        difficulty: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Active tasks, or a user's completions when ``completed`` is set.

        Each task carries ``completion_status`` for ``user_id`` (or the
        viewer): ``pending``, ``verified``, ``rejected`` or ``None``.
        """
        target = user_id or (viewer["user_id"] if viewer else None)
        conn = get_connection()
        try:
            cursor = conn.cursor()
            if user_id and completed:
                rows = cursor.execute(
                    """
                    SELECT c.id AS completion_id, c.status AS verification_status, c.evidence,
                           c.completed_at, c.verified_at, t.*
                    FROM task_completions c JOIN tasks t ON t.id = c.task_id
                    WHERE c.user_id = ?
                    ORDER BY c.completed_at DESC, c.id DESC
                    """,
                    (user_id,),
                ).fetchall()
                return [_task_dict(row) for row in rows]
            where = ["t.is_active = 1"]
            params: List[Any] = []
            if category:
                where.append("t.category = ?")
                params.append(category)
            if difficulty:
                where.append("t.difficulty = ?")
                params.append(difficulty)
            rows = cursor.execute(
                f"""
                SELECT t.*,
                       (SELECT c.status FROM task_completions c WHERE c.task_id = t.id AND c.user_id = ?)
                           AS completion_status
                FROM tasks t
                WHERE {' AND '.join(where)}
                ORDER BY {_DIFFICULTY_ORDER}, t.points, t.id
                """,
                (target,) + tuple(params),
            ).fetchall()
            return [_task_dict(row) for row in rows]
        finally:
            conn.close()

    @classmethod
    async def complete_task(cls, task_id: Optional[int], evidence: Optional[str], current_user: dict) -> Dict[str, Any]:
        if not task_id:
            raise ValidationError("taskId is required")
        user_id = current_user["user_id"]
        conn = get_connection()
        try:
            cursor = conn.cursor()
            task = cls._require_task(cursor, task_id)
            if cursor.execute(
                "SELECT id FROM task_completions WHERE task_id = ? AND user_id = ?", (task_id, user_id)
            ).fetchone():
                raise ValidationError("Task already completed")
            status = "pending" if task["verification_required"] else "verified"
            cursor.execute(
                "INSERT INTO task_completions (task_id, user_id, status, evidence) VALUES (?, ?, ?, ?)",
                (task_id, user_id, status, evidence),
            )
            completion_id = cursor.lastrowid
            reward = None
            if status == "verified":
                reward = cls._pay_out(cursor, user_id, task, "task_completed", f"Completed task: {task['title']}")
            conn.commit()
            completion = dict(
                cursor.execute("SELECT * FROM task_completions WHERE id = ?", (completion_id,)).fetchone()
            )
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        logger.info("User %s completed task %s (%s)", user_id, task_id, status)
        result = {
            "completion": completion,
            "message": "Task submitted for verification" if status == "pending" else "Task completed successfully",
        }
        if reward:
            result["pointsAwarded"] = task["points"]
            result["newAchievements"] = reward["newAchievements"]
        return result

    @classmethod
    async def verify_completion(
        cls, completion_id: Optional[int], status: Optional[str], current_user: dict
    ) -> Dict[str, Any]:
        """Verify or reject a pending completion."""
        if not completion_id or not status:
            raise ValidationError("completionId and status are required")
        if status not in VERIFICATION_STATUSES:
            raise ValidationError("Invalid verification status")
        conn = get_connection()
        try:
            cursor = conn.cursor()
            completion = cursor.execute(
                "SELECT * FROM task_completions WHERE id = ?", (completion_id,)
            ).fetchone()
            if not completion:
                raise NotFoundError("Task completion not found")
            if completion["status"] != "pending":
                raise ValidationError(f"Task completion is already {completion['status']}")
            cursor.execute(
                """
                UPDATE task_completions SET status = ?, verified_by = ?, verified_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (status, current_user["user_id"], completion_id),
            )
            if status == "verified":
                task = cls._require_task(cursor, completion["task_id"])
                cls._pay_out(
                    cursor, completion["user_id"], task, "verified_action", f"Task verified: {task['title']}"
                )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        await AuditService.record(
            user_id=current_user["user_id"],
            action=status,
            object_type="task_completion",
            object_id=completion_id,
        )
        return {"success": True, "message": f"Task {status} successfully"}

    # ------------------------------------------------------------------
    # administration
    # ------------------------------------------------------------------

    @classmethod
    async def list_all(cls) -> List[Dict[str, Any]]:
        conn = get_connection()
        try:
            rows = conn.execute(
                """
                SELECT t.*, (SELECT COUNT(*) FROM task_completions c WHERE c.task_id = t.id) AS completion_count
                FROM tasks t ORDER BY t.created_at DESC, t.id DESC
                """
            ).fetchall()
        finally:
            conn.close()
        return [_task_dict(row) for row in rows]

    @classmethod
    async def get_task(cls, task_id: int) -> Dict[str, Any]:
        conn = get_connection()
        try:
            return _task_dict(cls._require_task(conn.cursor(), task_id))
        finally:
            conn.close()

    @classmethod
    async def create_task(cls, data: Any, current_user: dict, strict: bool = True) -> Dict[str, Any]:
        """Create a task.

        ``strict`` applies the admin console bounds (points and impact
        score in 1..1000); the quick create of ``POST /tasks`` only
        checks the difficulty.
        """
        if not data.title or not data.description or not data.category:
            raise ValidationError("Title, description, and category are required")
        if strict:
            _validate_task_values(data.difficulty, data.points, data.impact_score)
        elif data.difficulty not in DIFFICULTIES:
            raise ValidationError("Invalid difficulty level")
        conn = get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO tasks (title, description, category, difficulty, points, impact_score,
                                   verification_required, created_by)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    data.title,
                    data.description,
                    data.category,
                    data.difficulty,
                    data.points or 0,
                    data.impact_score or 0,
                    1 if data.verification_required else 0,
                    current_user["user_id"],
                ),
            )
            task_id = cursor.lastrowid
            conn.commit()
            task = _task_dict(cls._require_task(cursor, task_id))
        finally:
            conn.close()
        logger.info("User %s created task %s", current_user["user_id"], task_id)
        await AuditService.record(user_id=current_user["user_id"], action="create", object_type="task", object_id=task_id)
        return task

    @classmethod
    async def update_task(cls, task_id: int, data: Any, current_user: dict) -> Dict[str, Any]:
        if not data.title or not data.description or not data.category:
            raise ValidationError("Title, description, and category are required")
        _validate_task_values(data.difficulty, data.points, data.impact_score)
        conn = get_connection()
        try:
            cursor = conn.cursor()
            current = cls._require_task(cursor, task_id)
            cursor.execute(
                """
                UPDATE tasks SET title = ?, description = ?, category = ?, difficulty = ?, points = ?,
                                 impact_score = ?, verification_required = ?, is_active = ?,
                                 updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (
                    data.title,
                    data.description,
                    data.category,
                    data.difficulty,
                    data.points,
                    data.impact_score,
                    1 if data.verification_required else 0,
                    current["is_active"] if data.is_active is None else int(data.is_active),
                    task_id,
                ),
            )
            conn.commit()
            task = _task_dict(cls._require_task(cursor, task_id))
        finally:
            conn.close()
        await AuditService.record(user_id=current_user["user_id"], action="update", object_type="task", object_id=task_id)
        return task

    @classmethod
    async def delete_task(cls, task_id: int, current_user: dict) -> None:
        """Delete a task together with its completions."""
        conn = get_connection()
        try:
            cursor = conn.cursor()
            cls._require_task(cursor, task_id)
            cursor.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            conn.commit()
        finally:
            conn.close()
        await AuditService.record(user_id=current_user["user_id"], action="delete", object_type="task", object_id=task_id)

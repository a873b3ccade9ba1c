"""
Business logic for the green points economy.

Green points are an in-app currency.  Every change is a row in
``green_points_transactions`` (positive for earned, negative for spent)
and a user's balance is the sum of their rows.  Earning is governed by
``green_points_rules``: each rule fixes the points paid per action and
an optional daily cap, counted from UTC midnight.

The ``_``-prefixed static helpers take a cursor so other services
(orders, invites, tasks) can move points inside their own transaction.
"""

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from honua_api.app.core.db import get_connection, row_to_dict
from honua_api.app.core.errors import (
    ConflictError,
    LimitExceededError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from honua_api.app.core.security import is_admin
from honua_api.app.services.audit_service import AuditService

logger = logging.getLogger(__name__)

RULE_FIELDS = ("points_per_action", "daily_limit", "description", "is_active")
RULE_REQUIRED_FIELDS = ("points_per_action", "description", "is_active")


class GreenPointsService:
    """Balances, transactions and earning rules."""

    # ------------------------------------------------------------------
    # cursor-level helpers shared with other services
    # ------------------------------------------------------------------

    @staticmethod
    def _balance(cursor: sqlite3.Cursor, user_id: int) -> int:
        row = cursor.execute(
            "SELECT COALESCE(SUM(points), 0) AS balance FROM green_points_transactions WHERE user_id = ?",
            (user_id,),
        ).fetchone()
        return int(row["balance"])

    @staticmethod
    def _earned_today(cursor: sqlite3.Cursor, user_id: int, action_type: str) -> int:
        row = cursor.execute(
            """
            SELECT COALESCE(SUM(points), 0) AS earned FROM green_points_transactions
            WHERE user_id = ? AND action_type = ? AND points > 0
              AND date(created_at) = date('now')
            """,
            (user_id, action_type),
        ).fetchone()
        return int(row["earned"])

    @staticmethod
    def _active_rule(cursor: sqlite3.Cursor, action_type: str) -> Optional[sqlite3.Row]:
        return cursor.execute(
            "SELECT * FROM green_points_rules WHERE action_type = ? AND is_active = 1",
            (action_type,),
        ).fetchone()

    @staticmethod
    def _add(
        cursor: sqlite3.Cursor,
        user_id: int,
        points: int,
        action_type: str,
        description: Optional[str] = None,
        reference_id: Optional[int] = None,
    ) -> int:
        """Append a transaction row and return its id."""
        cursor.execute(
            """
            INSERT INTO green_points_transactions (user_id, points, action_type, description, reference_id)
            VALUES (?, ?, ?, ?, ?)
            """,
            (user_id, points, action_type, description, reference_id),
        )
        return cursor.lastrowid

    @classmethod
    async def award_points(
        cls,
        user_id: int,
        points: int,
        action_type: str,
        description: Optional[str] = None,
        reference_id: Optional[int] = None,
    ) -> int:
        """Credit points outside any rule in a transaction of its own."""
        conn = get_connection()
        try:
            transaction_id = cls._add(conn.cursor(), user_id, points, action_type, description, reference_id)
            conn.commit()
            logger.info("Awarded %s green points to user %s for %s", points, user_id, action_type)
            return transaction_id
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # balance and rule-based awarding
    # ------------------------------------------------------------------

    @classmethod
    async def get_balance(
        cls,
        user_id: int,
        include_history: bool = False,
        limit: int = 20,
        offset: int = 0,
    ) -> Dict[str, Any]:
        conn = get_connection()
        try:
            cursor = conn.cursor()
            result: Dict[str, Any] = {"user_id": user_id, "balance": cls._balance(cursor, user_id)}
            if include_history:
                rows = cursor.execute(
                    """
                    SELECT * FROM green_points_transactions WHERE user_id = ?
                    ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?
                    """,
                    (user_id, min(limit, 100), offset),
                ).fetchall()
                result["history"] = [dict(row) for row in rows]
            return result
        finally:
            conn.close()

    @classmethod
    async def award_for_action(
        cls,
        current_user: dict,
        action_type: str,
        description: Optional[str] = None,
        reference_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Award the caller the points of the active rule for ``action_type``.

        When the rule has a daily limit, the award is capped at what is
        left for today; if nothing is left a ``LimitExceededError``
        carrying ``daily_limit`` and ``earned_today`` is raised.
        """
        user_id = current_user["user_id"]
        conn = get_connection()
        try:
            cursor = conn.cursor()
            rule = cls._active_rule(cursor, action_type)
            if not rule:
                raise ValidationError(f"No active rule found for action type '{action_type}'")
            points = rule["points_per_action"]
            remaining = None
            if rule["daily_limit"]:
                earned_today = cls._earned_today(cursor, user_id, action_type)
                if earned_today >= rule["daily_limit"]:
                    raise LimitExceededError(
                        "Daily limit reached for this action",
                        extra={"daily_limit": rule["daily_limit"], "earned_today": earned_today},
                    )
                points = min(points, rule["daily_limit"] - earned_today)
                remaining = rule["daily_limit"] - earned_today - points
            transaction_id = cls._add(
                cursor, user_id, points, action_type, description or rule["description"], reference_id
            )
            new_balance = cls._balance(cursor, user_id)
            conn.commit()
            logger.info("User %s earned %s green points for %s", user_id, points, action_type)
            return {
                "success": True,
                "points_awarded": points,
                "new_balance": new_balance,
                "transaction_id": transaction_id,
                "daily_limit_remaining": remaining,
            }
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # transactions
    # ------------------------------------------------------------------

    @classmethod
    async def list_transactions(
        cls,
        current_user: dict,
        type_: Optional[str] = None,
        action_type: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """List the caller's transactions.

        ``type_`` is ``earned`` (positive rows) or ``spent`` (negative).
        """
        where = ["user_id = ?"]
        params: List[Any] = [current_user["user_id"]]
        if type_ == "earned":
            where.append("points > 0")
        elif type_ == "spent":
            where.append("points < 0")
        if action_type:
            where.append("action_type = ?")
            params.append(action_type)
        if start_date:
            where.append("created_at >= ?")
            params.append(start_date)
        if end_date:
            where.append("created_at <= ?")
            params.append(end_date)
        where_sql = " AND ".join(where)
        conn = get_connection()
        try:
            total = conn.execute(
                f"SELECT COUNT(*) AS c FROM green_points_transactions WHERE {where_sql}", tuple(params)
            ).fetchone()["c"]
            rows = conn.execute(
                f"""
                SELECT * FROM green_points_transactions WHERE {where_sql}
                ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?
                """,
                tuple(params) + (limit, offset),
            ).fetchall()
            return {
                "transactions": [dict(row) for row in rows],
                "pagination": {
                    "total": total,
                    "limit": limit,
                    "offset": offset,
                    "has_more": offset + limit < total,
                },
            }
        finally:
            conn.close()

    @classmethod
    async def create_transaction(cls, data: Any, current_user: dict) -> Dict[str, Any]:
        """Record a manual earn or spend.

        Only administrators may target another user or award an amount
        different from the rule.  Positive amounts respect the rule's
        daily limit; negative amounts may not overdraw the balance.
        """
        admin = is_admin(current_user)
        target_id = data.target_user_id or current_user["user_id"]
        if target_id != current_user["user_id"] and not admin:
            raise PermissionDeniedError("Only administrators can create transactions for other users")
        if data.points == 0:
            raise ValidationError("Points must be a non-zero number")
        conn = get_connection()
        try:
            cursor = conn.cursor()
            if not cursor.execute("SELECT id FROM users WHERE id = ?", (target_id,)).fetchone():
                raise NotFoundError("Target user not found")
            if data.points > 0:
                rule = cls._active_rule(cursor, data.action_type)
                if not rule:
                    raise ValidationError(f"No active rule found for action type '{data.action_type}'")
                if not admin and data.points != rule["points_per_action"]:
                    raise ValidationError(
                        f"Points must be {rule['points_per_action']} for action type '{data.action_type}'"
                    )
                if rule["daily_limit"]:
                    earned_today = cls._earned_today(cursor, target_id, data.action_type)
                    if earned_today + data.points > rule["daily_limit"]:
                        raise ValidationError(
                            "Daily limit exceeded for this action",
                            extra={"daily_limit": rule["daily_limit"], "earned_today": earned_today},
                        )
            else:
                balance = cls._balance(cursor, target_id)
                if balance + data.points < 0:
                    raise ValidationError(
                        "Insufficient balance",
                        extra={"balance": balance, "requested": -data.points},
                    )
            transaction_id = cls._add(
                cursor, target_id, data.points, data.action_type, data.description, data.reference_id
            )
            new_balance = cls._balance(cursor, target_id)
            conn.commit()
            row = cursor.execute(
                "SELECT * FROM green_points_transactions WHERE id = ?", (transaction_id,)
            ).fetchone()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        await AuditService.record(
            user_id=current_user["user_id"],
            action="create",
            object_type="green_points_transaction",
            object_id=transaction_id,
            details={"target_user_id": target_id, "points": data.points, "action_type": data.action_type},
        )
        verb = "awarded" if data.points > 0 else "spent"
        return {
            "transaction": dict(row),
            "new_balance": new_balance,
            "message": f"{abs(data.points)} green points {verb} successfully",
        }

    # ------------------------------------------------------------------
    # rules
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_rule_values(points_per_action: Any, daily_limit: Any) -> None:
        if points_per_action is not None and points_per_action <= 0:
            raise ValidationError("points_per_action must be greater than 0")
        if daily_limit is not None and daily_limit <= 0:
            raise ValidationError("daily_limit must be null or greater than 0")

    @classmethod
    def _validate_rule_update(cls, updates: Dict[str, Any]) -> None:
        """Partial updates may omit fields but not null out required ones."""
        for name in RULE_REQUIRED_FIELDS:
            if name in updates and updates[name] is None:
                raise ValidationError(f"{name} cannot be null")
        cls._validate_rule_values(updates.get("points_per_action"), updates.get("daily_limit"))

    @staticmethod
    def _rule_dict(row: sqlite3.Row) -> Dict[str, Any]:
        return row_to_dict(row, bool_fields=("is_active",))

    @classmethod
    async def list_rules(
        cls,
        include_inactive: bool = False,
        action_type: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        query = "SELECT * FROM green_points_rules"
        where: List[str] = []
        params: List[Any] = []
        if not include_inactive:
            where.append("is_active = 1")
        if action_type:
            where.append("action_type = ?")
            params.append(action_type)
        if where:
            query += " WHERE " + " AND ".join(where)
        query += " ORDER BY action_type"
        conn = get_connection()
        try:
            return [cls._rule_dict(row) for row in conn.execute(query, tuple(params)).fetchall()]
        finally:
            conn.close()

    @classmethod
    async def get_rule(cls, rule_id: int) -> Dict[str, Any]:
        conn = get_connection()
        try:
            row = conn.execute("SELECT * FROM green_points_rules WHERE id = ?", (rule_id,)).fetchone()
            if not row:
                raise NotFoundError("Rule not found")
            return cls._rule_dict(row)
        finally:
            conn.close()

    @classmethod
    async def create_rule(cls, data: Any, current_user: dict) -> Dict[str, Any]:
        if not data.action_type or data.points_per_action is None or not data.description:
            raise ValidationError("action_type, points_per_action, and description are required")
        cls._validate_rule_values(data.points_per_action, data.daily_limit)
        conn = get_connection()
        try:
            cursor = conn.cursor()
            if cursor.execute(
                "SELECT id FROM green_points_rules WHERE action_type = ?", (data.action_type,)
            ).fetchone():
                raise ConflictError("A rule for this action type already exists")
            cursor.execute(
                """
                INSERT INTO green_points_rules (action_type, points_per_action, daily_limit, description, is_active)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    data.action_type,
                    data.points_per_action,
                    data.daily_limit,
                    data.description,
                    1 if data.is_active else 0,
                ),
            )
            rule_id = cursor.lastrowid
            conn.commit()
            row = cursor.execute("SELECT * FROM green_points_rules WHERE id = ?", (rule_id,)).fetchone()
        finally:
            conn.close()
        await AuditService.record(
            user_id=current_user["user_id"],
            action="create",
            object_type="green_points_rule",
            object_id=rule_id,
            details={"action_type": data.action_type},
        )
        return cls._rule_dict(row)

    @staticmethod
    def _apply_rule_update(cursor: sqlite3.Cursor, rule_id: int, updates: Dict[str, Any]) -> None:
        fields = {k: v for k, v in updates.items() if k in RULE_FIELDS}
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        if not fields:
            return
        assignments = ", ".join(f"{name} = ?" for name in fields)
        cursor.execute(
            f"UPDATE green_points_rules SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            tuple(fields.values()) + (rule_id,),
        )

    @classmethod
    async def update_rule(cls, rule_id: int, updates: Dict[str, Any], current_user: dict) -> Dict[str, Any]:
        cls._validate_rule_update(updates)
        conn = get_connection()
        try:
            cursor = conn.cursor()
            if not cursor.execute("SELECT id FROM green_points_rules WHERE id = ?", (rule_id,)).fetchone():
                raise NotFoundError("Rule not found")
            cls._apply_rule_update(cursor, rule_id, updates)
            conn.commit()
            row = cursor.execute("SELECT * FROM green_points_rules WHERE id = ?", (rule_id,)).fetchone()
        finally:
            conn.close()
        await AuditService.record(
            user_id=current_user["user_id"],
            action="update",
            object_type="green_points_rule",
            object_id=rule_id,
            details=updates,
        )
        return cls._rule_dict(row)

    @classmethod
    async def bulk_update_rules(cls, rules: List[Dict[str, Any]], current_user: dict) -> List[Dict[str, Any]]:
        """Update several rules at once; all or nothing."""
        if not rules:
            raise ValidationError("rules must be a non-empty array")
        for rule in rules:
            if not rule.get("id"):
                raise ValidationError("Each rule must include an id")
            cls._validate_rule_update(rule)
        conn = get_connection()
        try:
            cursor = conn.cursor()
            updated = []
            for rule in rules:
                if not cursor.execute("SELECT id FROM green_points_rules WHERE id = ?", (rule["id"],)).fetchone():
                    raise NotFoundError(f"Rule {rule['id']} not found")
                cls._apply_rule_update(cursor, rule["id"], rule)
                updated.append(rule["id"])
            conn.commit()
            rows = cursor.execute(
                "SELECT * FROM green_points_rules WHERE id IN (%s) ORDER BY action_type" % ",".join("?" * len(updated)),
                tuple(updated),
            ).fetchall()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        logger.info("User %s updated %s green point rules", current_user["user_id"], len(updated))
        return [cls._rule_dict(row) for row in rows]

    @classmethod
    async def delete_rule(cls, rule_id: int, current_user: dict) -> None:
        conn = get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM green_points_rules WHERE id = ?", (rule_id,))
            if cursor.rowcount == 0:
                raise NotFoundError("Rule not found")
            conn.commit()
        finally:
            conn.close()
        await AuditService.record(
            user_id=current_user["user_id"],
            action="delete",
            object_type="green_points_rule",
            object_id=rule_id,
        )

"""
Audit service for recording and querying significant actions.

Writes go to the ``audit_logs`` table.  ``record`` is the variant the
other services call after a successful write: an audit failure is
logged and never undoes the user's action.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from honua_api.app.core.db import get_connection, row_to_dict

logger = logging.getLogger(__name__)


class AuditService:
    """Service class for writing and retrieving audit logs."""

    @classmethod
    async def log(
        cls,
        user_id: Optional[int],
        action: str,
        object_type: str,
        object_id: Optional[int] = None,
        details: Optional[dict] = None,
    ) -> None:
        """Insert a new audit record.

        Parameters
        ----------
        user_id : Optional[int]
            ID of the acting user, ``None`` for system actions.
        action : str
            Short verb such as ``"create"``, ``"update"`` or ``"delete"``.
        object_type : str
            Kind of object affected (``"order"``, ``"product"``...).
        object_id : Optional[int]
            Primary key of the affected object, if any.
        details : Optional[dict]
            Extra structured data, stored as JSON.
        """
        conn = get_connection()
        try:
            conn.execute(
                """
                INSERT INTO audit_logs (user_id, action, object_type, object_id, details)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, action, object_type, object_id, json.dumps(details) if details else None),
            )
            conn.commit()
        finally:
            conn.close()

    @classmethod
    async def record(cls, *args: Any, **kwargs: Any) -> None:
        """``log`` that swallows and reports its own failures."""
        try:
            await cls.log(*args, **kwargs)
        except Exception as exc:
            logger.warning("Failed to write audit log entry: %s", exc)

    @classmethod
    async def list_logs(
        cls,
        user_id: Optional[int] = None,
        object_type: Optional[str] = None,
        action: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """Retrieve audit records, newest first, with optional filters.

        Date filters accept ISO strings and apply to ``timestamp``.
        """
        where_clauses: List[str] = []
        params: List[Any] = []
        if user_id is not None:
            where_clauses.append("user_id = ?")
            params.append(user_id)
        if object_type:
            where_clauses.append("object_type = ?")
            params.append(object_type)
        if action:
            where_clauses.append("action = ?")
            params.append(action)
        if start_date:
            where_clauses.append("timestamp >= ?")
            params.append(start_date)
        if end_date:
            where_clauses.append("timestamp <= ?")
            params.append(end_date)
        query = "SELECT id, user_id, action, object_type, object_id, timestamp, details FROM audit_logs"
        if where_clauses:
            query += " WHERE " + " AND ".join(where_clauses)
        query += " ORDER BY timestamp DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        conn = get_connection()
        try:
            rows = conn.execute(query, tuple(params)).fetchall()
            return [row_to_dict(row, json_fields=("details",)) for row in rows]
        finally:
            conn.close()

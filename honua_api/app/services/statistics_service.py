"""
Service layer for administrator statistics.

Counts across the social and marketplace tables for the admin
dashboard.  All queries are read-only.
"""

import logging
from typing import Any, Dict

from honua_api.app.core.db import get_connection

logger = logging.getLogger(__name__)


class StatisticsService:
    """Aggregated metrics for administrators."""

    @classmethod
    async def overview(cls) -> Dict[str, Any]:
        """Return high-level system metrics.

        Disabled users are excluded from the user count; deleted
        products from the product count.  ``green_points_issued`` sums
        only positive transactions, and ``invites_used`` counts invites
        that brought in a new user.
        """
        conn = get_connection()
        try:
            cursor = conn.cursor()
            users_count = cursor.execute("SELECT COUNT(*) FROM users WHERE disabled = 0").fetchone()[0]
            posts_count = cursor.execute("SELECT COUNT(*) FROM posts").fetchone()[0]
            products_count = cursor.execute(
                "SELECT COUNT(*) FROM marketplace_products WHERE status != 'deleted'"
            ).fetchone()[0]
            orders_count = cursor.execute("SELECT COUNT(*) FROM marketplace_orders").fetchone()[0]
            revenue = cursor.execute(
                "SELECT COALESCE(SUM(total_price), 0) FROM marketplace_orders WHERE order_status != 'cancelled'"
            ).fetchone()[0]
            points_issued = cursor.execute(
                "SELECT COALESCE(SUM(points), 0) FROM green_points_transactions WHERE points > 0"
            ).fetchone()[0]
            invites_used = cursor.execute(
                "SELECT COUNT(*) FROM invites WHERE invited_user_id IS NOT NULL"
            ).fetchone()[0]
            pending_tasks = cursor.execute(
                "SELECT COUNT(*) FROM task_completions WHERE status = 'pending'"
            ).fetchone()[0]
            return {
                "users_count": users_count,
                "posts_count": posts_count,
                "products_count": products_count,
                "orders_count": orders_count,
                "total_revenue": revenue,
                "green_points_issued": points_issued,
                "invites_used": invites_used,
                "pending_task_verifications": pending_tasks,
            }
        finally:
            conn.close()

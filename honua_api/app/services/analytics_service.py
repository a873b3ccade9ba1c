"""
Seller analytics.

Everything here is computed on request from three raw sources: the
``product_view_logs`` table (one row per tracked view), the seller's
orders and the marketplace messages about their products.  Cancelled
orders are excluded from order counts and revenue.

Time ranges are ``7d``, ``30d``, ``90d`` and ``1y``; unknown values fall
back to ``30d``.
"""

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from honua_api.app.core.db import get_connection
from honua_api.app.core.errors import NotFoundError, PermissionDeniedError, ValidationError
from honua_api.app.core.security import is_admin

logger = logging.getLogger(__name__)

TIME_RANGES = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}
DEFAULT_TIME_RANGE = "30d"
TOP_PRODUCTS_LIMIT = 10
PURCHASE_HISTORY_LIMIT = 100
NEW_CUSTOMER_DAYS = 30

_SQL_TIME = "%Y-%m-%d %H:%M:%S"


def resolve_time_range(time_range: Optional[str], now: Optional[datetime] = None) -> Tuple[str, datetime, datetime]:
    """Return the effective range key with its start and end instants (UTC)."""
    key = time_range if time_range in TIME_RANGES else DEFAULT_TIME_RANGE
    end = now or datetime.now(timezone.utc).replace(tzinfo=None)
    return key, end - timedelta(days=TIME_RANGES[key]), end


def week_start(day: str) -> str:
    """Sunday starting the week that contains ``day`` (``YYYY-MM-DD``)."""
    value = date.fromisoformat(day)
    return (value - timedelta(days=(value.weekday() + 1) % 7)).isoformat()


def _percent(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def _authorize(seller_id: Optional[int], current_user: dict) -> int:
    if not seller_id:
        raise ValidationError("Seller ID is required")
    if seller_id != current_user["user_id"] and not is_admin(current_user):
        raise PermissionDeniedError("You can only view your own analytics")
    return seller_id


class AnalyticsService:
    """View tracking and seller dashboards."""

    @staticmethod
    def _daily(cursor, seller_id: int, start: str, end: str, product_id: Optional[int] = None) -> List[Dict[str, Any]]:
        product_sql = " AND product_id = ?" if product_id else ""
        extra = (product_id,) if product_id else ()
        days: Dict[str, Dict[str, Any]] = defaultdict(
            lambda: {"views": 0, "unique_views": 0, "orders": 0, "revenue": 0.0, "messages": 0}
        )
        for row in cursor.execute(
            f"""
            SELECT date(viewed_at) AS day, COUNT(*) AS views, COUNT(DISTINCT viewer_id) AS unique_views
            FROM product_view_logs
            WHERE seller_id = ? AND viewed_at >= ? AND viewed_at <= ?{product_sql}
            GROUP BY day
            """,
            (seller_id, start, end) + extra,
        ):
            days[row["day"]].update(views=row["views"], unique_views=row["unique_views"])
        for row in cursor.execute(
            f"""
            SELECT date(created_at) AS day, COUNT(*) AS orders, COALESCE(SUM(total_price), 0) AS revenue
            FROM marketplace_orders
            WHERE seller_id = ? AND order_status != 'cancelled' AND created_at >= ? AND created_at <= ?{product_sql}
            GROUP BY day
            """,
            (seller_id, start, end) + extra,
        ):
            days[row["day"]].update(orders=row["orders"], revenue=row["revenue"])
        for row in cursor.execute(
            f"""
            SELECT date(m.created_at) AS day, COUNT(*) AS messages
            FROM marketplace_messages m JOIN marketplace_products p ON p.id = m.product_id
            WHERE p.seller_id = ? AND m.created_at >= ? AND m.created_at <= ?{product_sql.replace('product_id', 'p.id')}
            GROUP BY day
            """,
            (seller_id, start, end) + extra,
        ):
            days[row["day"]]["messages"] = row["messages"]
        return [{"date": day, **values} for day, values in sorted(days.items())]

    @staticmethod
    def _traffic_sources(
        cursor, seller_id: int, start: str, end: str, product_id: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        product_sql = " AND product_id = ?" if product_id else ""
        rows = cursor.execute(
            f"""
            SELECT COALESCE(source, 'direct') AS source, COUNT(*) AS count
            FROM product_view_logs
            WHERE seller_id = ? AND viewed_at >= ? AND viewed_at <= ?{product_sql}
            GROUP BY COALESCE(source, 'direct')
            ORDER BY count DESC, source
            LIMIT 10
            """,
            (seller_id, start, end) + ((product_id,) if product_id else ()),
        ).fetchall()
        return [dict(row) for row in rows]

    @classmethod
    async def seller_analytics(
        cls, seller_id: Optional[int], time_range: Optional[str], current_user: dict
    ) -> Dict[str, Any]:
        """Dashboard totals for a seller over a time range.

        Returns
        -------
        dict
            ``dailyAnalytics``, ``topProducts``, ``engagementMetrics``,
            ``trafficSources`` and ``summary``.
        """
        seller_id = _authorize(seller_id, current_user)
        key, start_at, end_at = resolve_time_range(time_range)
        start, end = start_at.strftime(_SQL_TIME), end_at.strftime(_SQL_TIME)
        conn = get_connection()
        try:
            cursor = conn.cursor()
            daily = cls._daily(cursor, seller_id, start, end)
            top_products = [
                dict(row)
                for row in cursor.execute(
                    """
                    SELECT p.id AS product_id, p.title, p.likes_count AS likes,
                           (SELECT COUNT(*) FROM product_view_logs v
                            WHERE v.product_id = p.id AND v.viewed_at >= ? AND v.viewed_at <= ?) AS views,
                           (SELECT COUNT(*) FROM marketplace_orders o
                            WHERE o.product_id = p.id AND o.order_status != 'cancelled'
                              AND o.created_at >= ? AND o.created_at <= ?) AS orders,
                           (SELECT COALESCE(SUM(o.total_price), 0) FROM marketplace_orders o
                            WHERE o.product_id = p.id AND o.order_status != 'cancelled'
                              AND o.created_at >= ? AND o.created_at <= ?) AS revenue
                    FROM marketplace_products p
                    WHERE p.seller_id = ? AND p.status != 'deleted'
                    ORDER BY revenue DESC, views DESC, p.id
                    LIMIT ?
                    """,
                    (start, end, start, end, start, end, seller_id, TOP_PRODUCTS_LIMIT),
                )
            ]
            total_products = cursor.execute(
                "SELECT COUNT(*) AS c FROM marketplace_products WHERE seller_id = ? AND status != 'deleted'",
                (seller_id,),
            ).fetchone()["c"]
            total_likes = cursor.execute(
                "SELECT COALESCE(SUM(likes_count), 0) AS c FROM marketplace_products WHERE seller_id = ?",
                (seller_id,),
            ).fetchone()["c"]
            traffic = cls._traffic_sources(cursor, seller_id, start, end)
        finally:
            conn.close()
        return {
            "dailyAnalytics": daily,
            "topProducts": top_products,
            "engagementMetrics": {
                "totalViews": sum(day["views"] for day in daily),
                "totalUniqueViews": sum(day["unique_views"] for day in daily),
                "totalLikes": total_likes,
                "totalMessages": sum(day["messages"] for day in daily),
                "totalOrders": sum(day["orders"] for day in daily),
                "totalRevenue": sum(day["revenue"] for day in daily),
                "dailyData": daily,
            },
            "trafficSources": traffic,
            "summary": {
                "timeRange": key,
                "startDate": start_at.isoformat(),
                "endDate": end_at.isoformat(),
                "totalProducts": total_products,
            },
        }

    @classmethod
    async def track_view(cls, data: Any, current_user: Optional[dict] = None) -> Dict[str, Any]:
        """Log one product view."""
        if not data.productId or not data.sellerId:
            raise ValidationError("Product ID and Seller ID are required")
        viewer_id = data.viewerId or (current_user["user_id"] if current_user else None)
        conn = get_connection()
        try:
            cursor = conn.cursor()
            product = cursor.execute(
                "SELECT seller_id FROM marketplace_products WHERE id = ?", (data.productId,)
            ).fetchone()
            if not product:
                raise NotFoundError("Product not found")
            if product["seller_id"] != data.sellerId:
                raise ValidationError("Seller does not own this product")
            cursor.execute(
                """
                INSERT INTO product_view_logs (product_id, seller_id, viewer_id, source, user_agent, ip_address)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (data.productId, data.sellerId, viewer_id, data.source or "direct", data.userAgent, data.ipAddress),
            )
            conn.commit()
        finally:
            conn.close()
        return {"success": True}

    @classmethod
    async def product_analytics(
        cls,
        seller_id: Optional[int],
        product_id: Optional[int],
        time_range: Optional[str],
        current_user: dict,
    ) -> Dict[str, Any]:
        """Per-product daily views, a weekly roll-up and the trend against the previous period."""
        seller_id = _authorize(seller_id, current_user)
        key, start_at, end_at = resolve_time_range(time_range)
        start, end = start_at.strftime(_SQL_TIME), end_at.strftime(_SQL_TIME)
        previous_start = (start_at - (end_at - start_at)).strftime(_SQL_TIME)
        conn = get_connection()
        try:
            cursor = conn.cursor()
            daily = cls._daily(cursor, seller_id, start, end, product_id)
            previous = cls._daily(cursor, seller_id, previous_start, start, product_id)
            referrers = cls._traffic_sources(cursor, seller_id, start, end, product_id)
            likes_sql = "SELECT COALESCE(SUM(likes_count), 0) AS c FROM marketplace_products WHERE seller_id = ?"
            likes_params: tuple = (seller_id,)
            if product_id:
                likes_sql += " AND id = ?"
                likes_params += (product_id,)
            likes = cursor.execute(likes_sql, likes_params).fetchone()["c"]
        finally:
            conn.close()

        weeks: Dict[str, Dict[str, Any]] = {}
        for day in daily:
            key_week = week_start(day["date"])
            week = weeks.setdefault(key_week, {"week": key_week, "views": 0, "orders": 0, "revenue": 0.0})
            week["views"] += day["views"]
            week["orders"] += day["orders"]
            week["revenue"] += day["revenue"]
        for week in weeks.values():
            week["conversion_rate"] = _percent(week["orders"], week["views"])

        views = sum(day["views"] for day in daily)
        orders = sum(day["orders"] for day in daily)
        previous_views = sum(day["views"] for day in previous)
        return {
            "metrics": {
                "views": views,
                "unique_views": sum(day["unique_views"] for day in daily),
                "likes": likes,
                "messages": sum(day["messages"] for day in daily),
                "orders": orders,
                "revenue": sum(day["revenue"] for day in daily),
                "conversion_rate": _percent(orders, views),
                "trend": _percent(views - previous_views, previous_views),
            },
            "dailyViews": [
                {"date": day["date"], "views": day["views"], "unique_views": day["unique_views"]} for day in daily
            ],
            "weeklyPerformance": [weeks[k] for k in sorted(weeks)],
            "topReferrers": referrers,
            "previousPeriod": {"views": previous_views, "orders": sum(day["orders"] for day in previous)},
            "summary": {
                "timeRange": key,
                "startDate": start_at.isoformat(),
                "endDate": end_at.isoformat(),
                "productId": product_id or "all",
            },
        }

    @classmethod
    async def customers(
        cls, seller_id: Optional[int], customer_id: Optional[int], current_user: dict
    ) -> Dict[str, Any]:
        """Customers of a seller aggregated from their orders."""
        seller_id = _authorize(seller_id, current_user)
        conn = get_connection()
        try:
            cursor = conn.cursor()
            history_sql = """
                SELECT o.id, o.buyer_id AS customer_id, u.full_name AS customer_name, u.email AS customer_email,
                       o.product_id, p.title AS product_name, o.quantity, o.total_price AS total_amount,
                       o.order_status AS status, o.created_at
                FROM marketplace_orders o
                JOIN users u ON u.id = o.buyer_id
                JOIN marketplace_products p ON p.id = o.product_id
                WHERE o.seller_id = ?
            """
            if customer_id:
                profile = cursor.execute(
                    "SELECT id, username, full_name, email, avatar_url, created_at FROM users WHERE id = ?",
                    (customer_id,),
                ).fetchone()
                if not profile:
                    raise NotFoundError("Customer not found")
                history = [
                    dict(row)
                    for row in cursor.execute(
                        history_sql + " AND o.buyer_id = ? ORDER BY o.created_at DESC, o.id DESC",
                        (seller_id, customer_id),
                    )
                ]
                return {
                    "customer": {
                        **dict(profile),
                        "total_orders": len(history),
                        "total_spent": sum(order["total_amount"] for order in history),
                        "last_order_date": history[0]["created_at"] if history else None,
                    },
                    "purchaseHistory": history,
                }
            customers = [
                dict(row)
                for row in cursor.execute(
                    """
                    SELECT u.id, u.username, u.full_name, u.email, u.avatar_url, u.created_at,
                           COUNT(o.id) AS total_orders, COALESCE(SUM(o.total_price), 0) AS total_spent,
                           MIN(o.created_at) AS first_order_date, MAX(o.created_at) AS last_order_date
                    FROM marketplace_orders o JOIN users u ON u.id = o.buyer_id
                    WHERE o.seller_id = ?
                    GROUP BY u.id
                    ORDER BY last_order_date DESC
                    """,
                    (seller_id,),
                )
            ]
            history = [
                dict(row)
                for row in cursor.execute(
                    history_sql + " ORDER BY o.created_at DESC, o.id DESC LIMIT ?",
                    (seller_id, PURCHASE_HISTORY_LIMIT),
                )
            ]
        finally:
            conn.close()

        cutoff = (datetime.now(timezone.utc) - timedelta(days=NEW_CUSTOMER_DAYS)).strftime(_SQL_TIME)
        total_customers = len(customers)
        total_revenue = sum(c["total_spent"] for c in customers)
        total_orders = sum(c["total_orders"] for c in customers)
        top = sorted(customers, key=lambda c: c["total_spent"], reverse=True)[:10]
        return {
            "customers": customers,
            "analytics": {
                "total_customers": total_customers,
                "new_customers": sum(1 for c in customers if c["first_order_date"] >= cutoff),
                "avg_order_value": total_revenue / total_orders if total_orders else 0,
                "customer_ltv": total_revenue / total_customers if total_customers else 0,
                "repeat_rate": _percent(sum(1 for c in customers if c["total_orders"] > 1), max(total_customers, 1)),
                "top_customers": [
                    {
                        "customer_id": c["id"],
                        "customer_name": c["full_name"] or c["username"],
                        "total_orders": c["total_orders"],
                        "total_spent": c["total_spent"],
                    }
                    for c in top
                ],
            },
            "purchaseHistory": history,
            "summary": {"total_revenue": total_revenue, "total_orders": total_orders},
        }

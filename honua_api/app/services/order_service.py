"""
Marketplace orders.

Placing an order is one SQLite transaction: the order row, the buyer's
green point spend, the stock reservation and the seller's sale reward
are committed together or not at all.  For card payments the Stripe
payment intent is created inside that transaction as well, so a failed
Stripe call leaves no order behind.

Cancelling an order undoes the reservation and refunds spent points.
"""

import json
import logging
import math
import secrets
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from honua_api.app.core.config import settings
from honua_api.app.core.db import get_connection, row_to_dict
from honua_api.app.core.errors import (
    ConfigurationError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from honua_api.app.services.audit_service import AuditService
from honua_api.app.services.email_service import STATUS_EMAILS, EmailService
from honua_api.app.services.green_points_service import GreenPointsService
from honua_api.app.services.notification_service import NotificationService
from honua_api.app.services.payment_service import PaymentService, to_minor_units
from honua_api.app.services.product_service import ProductService

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("green_points", "stripe", "mixed")
CARD_METHODS = ("stripe", "mixed")
ORDER_STATUSES = ("pending", "confirmed", "shipped", "delivered", "cancelled")
PAYMENT_STATUSES = ("pending", "completed", "failed", "canceled", "refunded")
MAX_PAGE_SIZE = 50

_ORDER_SELECT = """
    SELECT o.*,
           p.title AS product_title, p.images AS product_images, p.type AS product_type,
           b.username AS buyer_username, b.full_name AS buyer_full_name, b.avatar_url AS buyer_avatar_url,
           s.username AS seller_username, s.full_name AS seller_full_name, s.avatar_url AS seller_avatar_url
    FROM marketplace_orders o
    JOIN marketplace_products p ON p.id = o.product_id
    JOIN users b ON b.id = o.buyer_id
    JOIN users s ON s.id = o.seller_id
"""


def _same_amount(a: Optional[float], b: float) -> bool:
    return a is not None and abs(a - b) < 0.005


def generate_order_number() -> str:
    return f"HN-{datetime.now(timezone.utc):%Y%m%d}-{secrets.token_hex(4).upper()}"


def format_order(row: sqlite3.Row) -> Dict[str, Any]:
    order = row_to_dict(row, json_fields=("shipping_address", "product_images"))
    order["product"] = {
        "id": order["product_id"],
        "title": order.pop("product_title"),
        "images": order.pop("product_images"),
        "type": order.pop("product_type"),
    }
    for role in ("buyer", "seller"):
        order[role] = {
            "id": order[f"{role}_id"],
            "username": order.pop(f"{role}_username"),
            "full_name": order.pop(f"{role}_full_name"),
            "avatar_url": order.pop(f"{role}_avatar_url"),
        }
    return order


class OrderService:
    """Placing, reading and progressing marketplace orders."""

    @staticmethod
    def _load(cursor: sqlite3.Cursor, order_id: int) -> Dict[str, Any]:
        row = cursor.execute(f"{_ORDER_SELECT} WHERE o.id = ?", (order_id,)).fetchone()
        if not row:
            raise NotFoundError("Order not found")
        return format_order(row)

    @classmethod
    async def list_orders(
        cls,
        current_user: dict,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        type_: Optional[str] = None,
    ) -> Dict[str, Any]:
        """The caller's purchases, or their sales when ``type_`` is ``seller``."""
        page = max(page, 1)
        limit = max(min(limit, MAX_PAGE_SIZE), 1)
        column = "o.seller_id" if type_ == "seller" else "o.buyer_id"
        where = [f"{column} = ?"]
        params: List[Any] = [current_user["user_id"]]
        if status:
            where.append("o.order_status = ?")
            params.append(status)
        where_sql = " AND ".join(where)
        conn = get_connection()
        try:
            total = conn.execute(
                f"SELECT COUNT(*) AS c FROM marketplace_orders o WHERE {where_sql}", tuple(params)
            ).fetchone()["c"]
            rows = conn.execute(
                f"{_ORDER_SELECT} WHERE {where_sql} ORDER BY o.created_at DESC, o.id DESC LIMIT ? OFFSET ?",
                tuple(params) + (limit, (page - 1) * limit),
            ).fetchall()
        finally:
            conn.close()
        return {
            "orders": [format_order(row) for row in rows],
            "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)},
        }

    @classmethod
    async def create_order(cls, data: Any, current_user: dict) -> Dict[str, Any]:
        """Place an order.

        Checks run in a fixed order: required product, payment method,
        quantity, product existence and ownership, stock and shipping
        address for physical goods, then the payment amounts.  Client
        supplied totals are compared with the catalogue price, never
        trusted.

        Returns
        -------
        dict
            ``{"order", "requires_payment"}`` plus ``client_secret`` and
            ``payment_intent_id`` for card payments.
        """
        if not data.product_id:
            raise ValidationError("Product ID is required")
        if data.payment_method not in PAYMENT_METHODS:
            raise ValidationError("Valid payment method is required (green_points, stripe, or mixed)")
        if data.quantity is None or data.quantity < 1:
            raise ValidationError("Valid quantity is required")
        buyer_id = current_user["user_id"]
        quantity = data.quantity
        conn = get_connection()
        try:
            cursor = conn.cursor()
            product = cursor.execute(
                "SELECT * FROM marketplace_products WHERE id = ? AND status = 'active'", (data.product_id,)
            ).fetchone()
            if not product:
                raise NotFoundError("Product not found")
            if product["seller_id"] == buyer_id:
                raise ValidationError("You cannot purchase your own product")

            physical = product["type"] == "physical"
            if physical:
                inventory = cursor.execute(
                    "SELECT quantity FROM product_inventory WHERE product_id = ?", (product["id"],)
                ).fetchone()
                if not inventory or inventory["quantity"] < quantity:
                    raise ValidationError("Insufficient stock available")
                if not data.shipping_address:
                    raise ValidationError("Shipping address is required for physical products")

            expected_total = product["price"] * quantity
            points_used = 0
            card_amount = 0.0
            if data.payment_method == "green_points":
                if not product["green_points_price"]:
                    raise ValidationError("This product is not available for green points purchase")
                points_used = product["green_points_price"] * quantity
                if data.green_points_used != points_used:
                    raise ValidationError("Invalid green points amount")
            else:
                if not _same_amount(data.total_price, expected_total):
                    raise ValidationError("Invalid total price")
                if not _same_amount(data.unit_price, product["price"]):
                    raise ValidationError("Invalid unit price")
                points_used = (data.green_points_used or 0) if data.payment_method == "mixed" else 0
                if points_used < 0:
                    raise ValidationError("Invalid green points amount")
                card_amount = expected_total - points_used
                if card_amount <= 0:
                    raise ValidationError("Invalid Stripe payment amount")
                if not settings.stripe_secret_key:
                    raise ConfigurationError("Payment system configuration error")
            if points_used and GreenPointsService._balance(cursor, buyer_id) < points_used:
                raise ValidationError("Insufficient green points")

            order_number = generate_order_number()
            cursor.execute(
                """
                INSERT INTO marketplace_orders (
                    order_number, buyer_id, seller_id, product_id, quantity, unit_price, total_price,
                    green_points_used, payment_method, payment_status, order_status, shipping_address, notes
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?)
                """,
                (
                    order_number,
                    buyer_id,
                    product["seller_id"],
                    product["id"],
                    quantity,
                    product["price"],
                    expected_total,
                    points_used,
                    data.payment_method,
                    "pending" if data.payment_method in CARD_METHODS else "completed",
                    json.dumps(data.shipping_address) if physical and data.shipping_address else None,
                    data.notes,
                ),
            )
            order_id = cursor.lastrowid
            if points_used:
                GreenPointsService._add(
                    cursor, buyer_id, -points_used, "marketplace_purchase", f"Purchase of {product['title']}", order_id
                )
            if physical:
                ProductService._adjust_stock(cursor, product["id"], -quantity, "reserved", order_id, buyer_id)
            reward = math.floor(expected_total * settings.seller_reward_rate)
            if reward > 0:
                GreenPointsService._add(
                    cursor, product["seller_id"], reward, "marketplace_sale",
                    f"Sale reward for {product['title']}", order_id,
                )
            NotificationService._create(
                cursor, product["seller_id"], buyer_id, "order", "New order",
                f"{current_user.get('username')} ordered {quantity} x {product['title']}",
            )

            intent: Dict[str, Any] = {}
            if data.payment_method in CARD_METHODS:
                intent = PaymentService._post_payment_intent(
                    {
                        "amount": to_minor_units(card_amount),
                        "currency": "usd",
                        "automatic_payment_methods[enabled]": "true",
                        "metadata[order_id]": str(order_id),
                        "metadata[user_id]": str(buyer_id),
                        "metadata[product_name]": product["title"],
                        "description": f"Payment for {product['title']}",
                    }
                )
                cursor.execute(
                    "UPDATE marketplace_orders SET stripe_payment_intent_id = ? WHERE id = ?",
                    (intent.get("id"), order_id),
                )
            conn.commit()
            order = cls._load(cursor, order_id)
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        logger.info(
            "Order %s (%s) placed by user %s for product %s", order_id, order_number, buyer_id, product["id"]
        )
        await AuditService.record(
            user_id=buyer_id,
            action="create",
            object_type="order",
            object_id=order_id,
            details={"payment_method": data.payment_method, "total_price": expected_total},
        )
        await EmailService.notify_order(order_id, "order_placed")
        result: Dict[str, Any] = {"order": order, "requires_payment": bool(intent)}
        if intent:
            result["client_secret"] = intent.get("client_secret")
            result["payment_intent_id"] = intent.get("id")
        return result

    @classmethod
    async def get_order(cls, order_id: int, current_user: dict) -> Dict[str, Any]:
        conn = get_connection()
        try:
            order = cls._load(conn.cursor(), order_id)
        finally:
            conn.close()
        if current_user["user_id"] not in (order["buyer_id"], order["seller_id"]):
            raise PermissionDeniedError("Unauthorized to view this order")
        return order

    @staticmethod
    def _cancel(cursor: sqlite3.Cursor, order: sqlite3.Row, user_id: int) -> None:
        """Release reserved stock and refund spent green points."""
        if order["product_id"]:
            movement = cursor.execute(
                "SELECT id FROM stock_movements WHERE order_id = ? AND movement_type = 'reserved'",
                (order["id"],),
            ).fetchone()
            if movement:
                ProductService._adjust_stock(
                    cursor, order["product_id"], order["quantity"], "released", order["id"], user_id
                )
        if order["green_points_used"]:
            GreenPointsService._add(
                cursor, order["buyer_id"], order["green_points_used"], "marketplace_refund",
                f"Refund for order {order['order_number']}", order["id"],
            )

    @classmethod
    async def _apply_update(
        cls, order_id: int, current_user: dict, updates: Dict[str, Any], seller_only: bool
    ) -> Dict[str, Any]:
        user_id = current_user["user_id"]
        new_status = updates.get("order_status")
        if new_status is not None and new_status not in ORDER_STATUSES:
            raise ValidationError("Invalid order status")
        if updates.get("payment_status") is not None and updates["payment_status"] not in PAYMENT_STATUSES:
            raise ValidationError("Invalid payment status")
        conn = get_connection()
        try:
            cursor = conn.cursor()
            order = cursor.execute("SELECT * FROM marketplace_orders WHERE id = ?", (order_id,)).fetchone()
            if not order:
                raise NotFoundError("Order not found")
            is_seller = order["seller_id"] == user_id
            buyer_cancel = (
                not seller_only
                and order["buyer_id"] == user_id
                and new_status == "cancelled"
                and order["order_status"] == "pending"
                and set(updates) <= {"order_status", "notes"}
            )
            if not is_seller and not buyer_cancel:
                raise PermissionDeniedError("Unauthorized to update this order")
            if order["order_status"] == "cancelled" and new_status and new_status != "cancelled":
                raise ValidationError("Cancelled orders cannot be reopened")
            if new_status == "cancelled" and order["order_status"] != "cancelled":
                cls._cancel(cursor, order, user_id)
            fields = {k: v for k, v in updates.items() if v is not None}
            if fields:
                assignments = ", ".join(f"{name} = ?" for name in fields)
                cursor.execute(
                    f"UPDATE marketplace_orders SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    tuple(fields.values()) + (order_id,),
                )
            if new_status and new_status != order["order_status"]:
                recipient = order["seller_id"] if buyer_cancel else order["buyer_id"]
                NotificationService._create(
                    cursor, recipient, user_id, "order", "Order update",
                    f"Order {order['order_number']} is now {new_status}",
                )
            conn.commit()
            result = cls._load(cursor, order_id)
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        await AuditService.record(
            user_id=user_id, action="update", object_type="order", object_id=order_id, details=updates
        )
        if new_status in STATUS_EMAILS and new_status != order["order_status"]:
            await EmailService.notify_order(order_id, STATUS_EMAILS[new_status])
        return result

    @classmethod
    async def update_order(cls, order_id: int, data: Any, current_user: dict) -> Dict[str, Any]:
        """Seller update of status, payment, tracking and notes; buyers may only cancel pending orders."""
        updates = data.model_dump(exclude_unset=True)
        return await cls._apply_update(order_id, current_user, updates, seller_only=False)

    @classmethod
    async def update_status(cls, order_id: int, status: Optional[str], current_user: dict) -> Dict[str, Any]:
        if status not in ORDER_STATUSES:
            raise ValidationError("Invalid status. Must be one of: " + ", ".join(ORDER_STATUSES))
        return await cls._apply_update(order_id, current_user, {"order_status": status}, seller_only=True)

"""Buyer/seller messages attached to products and orders."""

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from honua_api.app.core.db import get_connection, row_to_dict
from honua_api.app.core.errors import NotFoundError, PermissionDeniedError, ValidationError

logger = logging.getLogger(__name__)

_MESSAGE_SELECT = """
    SELECT m.*,
           u.username AS sender_username, u.full_name AS sender_full_name, u.avatar_url AS sender_avatar_url,
           p.title AS product_title, p.price AS product_price, p.images AS product_images,
           o.order_number AS order_number, o.order_status AS order_status
    FROM marketplace_messages m
    JOIN users u ON u.id = m.sender_id
    LEFT JOIN marketplace_products p ON p.id = m.product_id
    LEFT JOIN marketplace_orders o ON o.id = m.order_id
"""


def format_message(row: sqlite3.Row) -> Dict[str, Any]:
    message = row_to_dict(row, json_fields=("product_images",), bool_fields=("is_read",))
    message["sender"] = {
        "id": message["sender_id"],
        "username": message.pop("sender_username"),
        "full_name": message.pop("sender_full_name"),
        "avatar_url": message.pop("sender_avatar_url"),
    }
    product = {
        "id": message["product_id"],
        "title": message.pop("product_title"),
        "price": message.pop("product_price"),
        "images": message.pop("product_images"),
    }
    message["product"] = product if message["product_id"] else None
    order = {
        "id": message["order_id"],
        "order_number": message.pop("order_number"),
        "status": message.pop("order_status"),
    }
    message["order"] = order if message["order_id"] else None
    return message


class MarketplaceMessageService:
    @classmethod
    async def list_messages(
        cls,
        current_user: dict,
        product_id: Optional[int] = None,
        order_id: Optional[int] = None,
        other_user_id: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """The caller's marketplace messages, oldest first."""
        user_id = current_user["user_id"]
        where = ["(m.sender_id = ? OR m.recipient_id = ?)"]
        params: List[Any] = [user_id, user_id]
        if product_id:
            where.append("m.product_id = ?")
            params.append(product_id)
        if order_id:
            where.append("m.order_id = ?")
            params.append(order_id)
        if other_user_id:
            where.append("(m.sender_id = ? OR m.recipient_id = ?)")
            params.extend([other_user_id, other_user_id])
        conn = get_connection()
        try:
            rows = conn.execute(
                f"{_MESSAGE_SELECT} WHERE {' AND '.join(where)} ORDER BY m.created_at ASC, m.id ASC",
                tuple(params),
            ).fetchall()
        finally:
            conn.close()
        return [format_message(row) for row in rows]

    @classmethod
    async def send_message(cls, data: Any, current_user: dict) -> Dict[str, Any]:
        """Send a message, optionally about a product or an order.

        A product message must involve its seller; an order message may
        only come from the order's buyer or seller.
        """
        content = (data.content or "").strip()
        if not data.recipient_id or not content:
            raise ValidationError("Recipient ID and content are required")
        user_id = current_user["user_id"]
        conn = get_connection()
        try:
            cursor = conn.cursor()
            if not cursor.execute("SELECT id FROM users WHERE id = ?", (data.recipient_id,)).fetchone():
                raise NotFoundError("Recipient not found")
            if data.product_id:
                product = cursor.execute(
                    "SELECT seller_id FROM marketplace_products WHERE id = ?", (data.product_id,)
                ).fetchone()
                if not product:
                    raise NotFoundError("Product not found")
                if product["seller_id"] not in (user_id, data.recipient_id):
                    raise PermissionDeniedError("Unauthorized to message about this product")
            if data.order_id:
                order = cursor.execute(
                    "SELECT buyer_id, seller_id FROM marketplace_orders WHERE id = ?", (data.order_id,)
                ).fetchone()
                if not order:
                    raise NotFoundError("Order not found")
                if user_id not in (order["buyer_id"], order["seller_id"]):
                    raise PermissionDeniedError("Unauthorized to message about this order")
            cursor.execute(
                """
                INSERT INTO marketplace_messages (sender_id, recipient_id, content, product_id, order_id, message_type)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (user_id, data.recipient_id, content, data.product_id, data.order_id, data.message_type or "text"),
            )
            message_id = cursor.lastrowid
            conn.commit()
            row = cursor.execute(f"{_MESSAGE_SELECT} WHERE m.id = ?", (message_id,)).fetchone()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        logger.info("User %s sent marketplace message %s to user %s", user_id, message_id, data.recipient_id)
        return format_message(row)

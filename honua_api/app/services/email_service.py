"""
Transactional order emails.

Emails are not delivered from the API process: each message is written
to the ``email_outbox`` table (and logged) for a mail relay to pick up.
Every order event produces one email for the buyer and one for the
seller.
"""

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from honua_api.app.core.config import settings
from honua_api.app.core.db import get_connection
from honua_api.app.core.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# type -> ((buyer subject, buyer body), (seller subject, seller body))
ORDER_TEMPLATES = {
    "order_placed": (
        (
            "Order Confirmation - {productTitle}",
            "Hi {buyerName},\n\nThank you for your order #{orderId} of {quantity} x {productTitle}.\n"
            "Total: {totalPrice} ({paymentMethod}).\nThe seller, {sellerName}, will confirm it shortly.",
        ),
        (
            "New Order Received - {productTitle}",
            "Hi {sellerName},\n\n{buyerName} ordered {quantity} x {productTitle} (order #{orderId}).\n"
            "Total: {totalPrice} ({paymentMethod}).\nPlease confirm the order from your dashboard.",
        ),
    ),
    "order_confirmed": (
        (
            "Order Confirmed - {productTitle}",
            "Hi {buyerName},\n\n{sellerName} confirmed your order #{orderId} for {productTitle}.",
        ),
        (
            "Order Confirmation Sent - {productTitle}",
            "Hi {sellerName},\n\nThe confirmation for order #{orderId} has been sent to {buyerName}.",
        ),
    ),
    "order_shipped": (
        (
            "Order Shipped - {productTitle}",
            "Hi {buyerName},\n\nYour order #{orderId} for {productTitle} is on its way.\n"
            "Tracking number: {trackingNumber}",
        ),
        (
            "Shipping Notification Sent - {productTitle}",
            "Hi {sellerName},\n\nThe shipping notification for order #{orderId} has been sent to the customer.\n"
            "Customer: {buyerName} ({buyerEmail})",
        ),
    ),
    "order_delivered": (
        (
            "Thank You for Your Purchase - {productTitle}",
            "Hi {buyerName},\n\nOrder #{orderId} for {productTitle} has been delivered. Enjoy!",
        ),
        (
            "Order Completed - {productTitle}",
            "Hi {sellerName},\n\nOrder #{orderId} for {productTitle} was delivered to {buyerName}.",
        ),
    ),
}

# order_status values that trigger an email
STATUS_EMAILS = {
    "confirmed": "order_confirmed",
    "shipped": "order_shipped",
    "delivered": "order_delivered",
}


class _Defaults(dict):
    def __missing__(self, key: str) -> str:
        return "n/a"


class EmailService:
    """Queue order emails into the outbox."""

    @staticmethod
    def _queue(
        cursor: sqlite3.Cursor,
        recipient: str,
        subject: str,
        body: str,
        email_type: str,
        order_id: Optional[int],
    ) -> int:
        cursor.execute(
            """
            INSERT INTO email_outbox (recipient, sender, subject, body, email_type, order_id)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (recipient, settings.email_from, subject, body, email_type, order_id),
        )
        return cursor.lastrowid

    @classmethod
    async def send_order_emails(cls, email_type: str, order_data: Dict[str, Any]) -> Dict[str, Any]:
        """Queue the buyer and seller emails for an order event.

        Parameters
        ----------
        email_type : str
            One of ``order_placed``, ``order_confirmed``,
            ``order_shipped`` or ``order_delivered``.
        order_data : dict
            Template values: ``orderId``, ``productTitle``, ``buyerName``,
            ``buyerEmail``, ``sellerName``, ``sellerEmail`` and optionally
            ``quantity``, ``totalPrice``, ``paymentMethod`` and
            ``trackingNumber``.

        Returns
        -------
        dict
            ``{"success", "emailsSent", "totalEmails", "results"}``.
        """
        templates = ORDER_TEMPLATES.get(email_type)
        if not templates:
            raise ValidationError("Invalid email type")
        values = _Defaults({k: v for k, v in order_data.items() if v is not None})
        order_id = order_data.get("orderId")
        results: List[Dict[str, Any]] = []
        conn = get_connection()
        try:
            cursor = conn.cursor()
            for role, (subject, body) in zip(("buyer", "seller"), templates):
                recipient = order_data.get(f"{role}Email")
                if not recipient:
                    results.append({"recipient": role, "success": False})
                    continue
                email_id = cls._queue(
                    cursor,
                    recipient,
                    subject.format_map(values),
                    body.format_map(values),
                    email_type,
                    order_id if isinstance(order_id, int) else None,
                )
                results.append({"recipient": role, "success": True, "email_id": email_id})
            conn.commit()
        finally:
            conn.close()
        sent = sum(1 for result in results if result["success"])
        logger.info("Queued %s/%s %s emails for order %s", sent, len(results), email_type, order_id)
        return {"success": True, "emailsSent": sent, "totalEmails": len(results), "results": results}

    @staticmethod
    def order_email_data(cursor: sqlite3.Cursor, order_id: int) -> Dict[str, Any]:
        """Template values for a stored order."""
        row = cursor.execute(
            """
            SELECT o.id, o.order_number, o.quantity, o.total_price, o.payment_method, o.tracking_number,
                   p.title, b.full_name AS buyer_name, b.username AS buyer_username, b.email AS buyer_email,
                   s.full_name AS seller_name, s.username AS seller_username, s.email AS seller_email
            FROM marketplace_orders o
            JOIN marketplace_products p ON p.id = o.product_id
            JOIN users b ON b.id = o.buyer_id
            JOIN users s ON s.id = o.seller_id
            WHERE o.id = ?
            """,
            (order_id,),
        ).fetchone()
        if not row:
            raise NotFoundError("Order not found")
        return {
            "orderId": row["id"],
            "orderNumber": row["order_number"],
            "productTitle": row["title"],
            "quantity": row["quantity"],
            "totalPrice": row["total_price"],
            "paymentMethod": row["payment_method"],
            "trackingNumber": row["tracking_number"],
            "buyerName": row["buyer_name"] or row["buyer_username"],
            "buyerEmail": row["buyer_email"],
            "sellerName": row["seller_name"] or row["seller_username"],
            "sellerEmail": row["seller_email"],
        }

    @classmethod
    async def notify_order(cls, order_id: int, email_type: str) -> Optional[Dict[str, Any]]:
        """Queue emails for a stored order; failures are logged, never raised."""
        try:
            conn = get_connection()
            try:
                data = cls.order_email_data(conn.cursor(), order_id)
            finally:
                conn.close()
            return await cls.send_order_emails(email_type, data)
        except Exception as exc:
            logger.warning("Could not queue %s emails for order %s: %s", email_type, order_id, exc)
            return None

"""
Stripe card payments.

Payment intents are created through Stripe's REST API with ``httpx``
(form encoded, secret key as bearer token).  Webhook events are
verified against ``STRIPE_WEBHOOK_SECRET`` using Stripe's signature
scheme: the ``Stripe-Signature`` header carries a timestamp ``t`` and
one or more ``v1`` HMAC-SHA256 signatures of ``"{t}.{payload}"``.
"""

import hashlib
import hmac
import json
import logging
import time
from typing import Any, Dict, Optional

import httpx

from honua_api.app.core.config import settings
from honua_api.app.core.db import get_connection
from honua_api.app.core.errors import ConfigurationError, ExternalServiceError, ValidationError

logger = logging.getLogger(__name__)

# Maximum age of a webhook signature, in seconds.
SIGNATURE_TOLERANCE = 300

# Stripe event type -> order payment_status
WEBHOOK_PAYMENT_STATUS = {
    "payment_intent.succeeded": "completed",
    "payment_intent.payment_failed": "failed",
    "payment_intent.canceled": "canceled",
}


def to_minor_units(amount: float) -> int:
    """Convert a currency amount to cents."""
    return int(round(amount * 100))


def compute_signature(payload: bytes, timestamp: str, secret: str) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def verify_webhook_signature(
    payload: bytes, header: Optional[str], secret: str, now: Optional[int] = None
) -> bool:
    """Check a ``Stripe-Signature`` header against the raw request body."""
    if not header or not secret:
        return False
    timestamp = None
    signatures = []
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)
    if not timestamp or not signatures:
        return False
    try:
        age = (now if now is not None else int(time.time())) - int(timestamp)
    except ValueError:
        return False
    if age > SIGNATURE_TOLERANCE:
        return False
    expected = compute_signature(payload, timestamp, secret)
    return any(hmac.compare_digest(expected, candidate) for candidate in signatures)


class PaymentService:
    """Stripe payment intents and webhook handling."""

    @staticmethod
    def _post_payment_intent(form: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{settings.stripe_api_base.rstrip('/')}/payment_intents"
        headers = {"Authorization": f"Bearer {settings.stripe_secret_key}"}
        try:
            response = httpx.post(url, headers=headers, data=form, timeout=30)
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"Payment provider unreachable: {exc}")
        if 400 <= response.status_code < 500:
            try:
                message = response.json().get("error", {}).get("message", response.text)
            except ValueError:
                message = response.text
            raise ValidationError(f"Invalid request: {message}")
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ExternalServiceError(f"Payment intent creation failed: {exc}")
        return response.json()

    @classmethod
    async def create_payment_intent(
        cls,
        amount: Optional[float],
        order_id: Optional[Any],
        current_user: dict,
        currency: str = "usd",
        customer_email: Optional[str] = None,
        product_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a Stripe payment intent for an order.

        ``amount`` is in currency units and sent to Stripe in cents.
        Returns the ``client_secret`` the browser needs to confirm the
        payment.
        """
        if not amount or not order_id:
            raise ValidationError("Amount and order_id are required")
        if not settings.stripe_secret_key:
            logger.error("STRIPE_SECRET_KEY is not set")
            raise ConfigurationError("Payment system configuration error")
        form = {
            "amount": to_minor_units(amount),
            "currency": currency.lower(),
            "automatic_payment_methods[enabled]": "true",
            "metadata[order_id]": str(order_id),
            "metadata[user_id]": str(current_user["user_id"]),
            "metadata[product_name]": product_name or "Marketplace Product",
            "description": f"Payment for order {order_id}" + (f" - {product_name}" if product_name else ""),
        }
        if customer_email:
            form["receipt_email"] = customer_email
        intent = cls._post_payment_intent(form)
        logger.info("Created Stripe payment intent %s for order %s", intent.get("id"), order_id)
        return {
            "success": True,
            "client_secret": intent.get("client_secret"),
            "payment_intent_id": intent.get("id"),
            "amount": intent.get("amount"),
            "currency": intent.get("currency"),
        }

    @classmethod
    async def handle_webhook(cls, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Verify a webhook delivery and apply payment status changes.

        Unknown event types are acknowledged and ignored.
        """
        if not verify_webhook_signature(payload, signature, settings.stripe_webhook_secret):
            logger.warning("Rejected Stripe webhook with invalid signature")
            raise ValidationError("Webhook signature verification failed")
        try:
            event = json.loads(payload)
        except ValueError:
            raise ValidationError("Invalid webhook payload")
        if not isinstance(event, dict):
            raise ValidationError("Invalid webhook payload")
        event_type = event.get("type")
        logger.info("Stripe webhook event received: %s", event_type)
        status = WEBHOOK_PAYMENT_STATUS.get(event_type) if isinstance(event_type, str) else None
        if status:
            data = event.get("data")
            intent = data.get("object") if isinstance(data, dict) else None
            if not isinstance(intent, dict):
                raise ValidationError("Invalid webhook payload")
            metadata = intent.get("metadata")
            order_id = metadata.get("order_id") if isinstance(metadata, dict) else None
            if order_id and isinstance(order_id, (str, int)):
                conn = get_connection()
                try:
                    cursor = conn.cursor()
                    cursor.execute(
                        """
                        UPDATE marketplace_orders
                        SET payment_status = ?, stripe_payment_intent_id = ?, updated_at = CURRENT_TIMESTAMP
                        WHERE id = ?
                        """,
                        (status, intent.get("id"), order_id),
                    )
                    if cursor.rowcount == 0:
                        logger.warning("Stripe event %s references unknown order %s", event_type, order_id)
                    conn.commit()
                finally:
                    conn.close()
        return {"received": True}

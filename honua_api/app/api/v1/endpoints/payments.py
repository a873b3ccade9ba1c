"""
Payment endpoints for API v1.

Card payments go through Stripe payment intents.  The webhook is
unauthenticated and trusts only the ``Stripe-Signature`` header, which
is checked against the raw request body.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from honua_api.app.core.security import get_current_user
from honua_api.app.schemas.marketplace import PaymentIntentCreate
from honua_api.app.services.payment_service import PaymentService

router = APIRouter()


@router.post("/stripe/create-payment-intent")
async def create_payment_intent(
    data: PaymentIntentCreate,
    current_user: dict = Depends(get_current_user),
) -> dict:
    """Create a payment intent for ``order_id``; ``amount`` is in currency units."""
    return await PaymentService.create_payment_intent(
        data.amount,
        data.order_id,
        current_user,
        currency=data.currency,
        customer_email=data.customer_email,
        product_name=data.product_name,
    )


@router.post("/stripe/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
) -> dict:
    """Receive Stripe events and update order payment statuses."""
    payload = await request.body()
    return await PaymentService.handle_webhook(payload, stripe_signature)

"""Order e-mail endpoints for API v1."""

from fastapi import APIRouter, Depends

from honua_api.app.core.security import get_current_user
from honua_api.app.schemas.marketplace import OrderEmailRequest
from honua_api.app.services.email_service import EmailService

router = APIRouter()


@router.post("/order")
async def send_order_emails(data: OrderEmailRequest, current_user: dict = Depends(get_current_user)) -> dict:
    """Queue the buyer and seller e-mails for an order event.

    ``type`` is one of ``order_placed``, ``order_confirmed``,
    ``order_shipped`` or ``order_delivered``.
    """
    return await EmailService.send_order_emails(data.type, data.orderData)

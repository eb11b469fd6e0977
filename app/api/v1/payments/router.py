"""
Payment API routes
"""

from fastapi import APIRouter, Depends, Header, Request, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.core.database import get_db
from app.core.exceptions import BadRequestException
from .schemas import PaymentWebhook, WebhookAckResponse
from .webhooks import WebhookHandler, verify_webhook_signature

router = APIRouter()

@router.post(
    "/webhook",
    response_model=WebhookAckResponse,
    status_code=status.HTTP_200_OK,
    summary="Payment webhook",
    description="Handle signed payment gateway notifications"
)
async def payment_webhook(
    request: Request,
    x_payment_signature: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db)
):
    """Handle payment gateway webhook"""
    # The signature covers the raw bytes, so verify before parsing
    body = await request.body()
    verify_webhook_signature(body, x_payment_signature)

    try:
        webhook = PaymentWebhook.model_validate_json(body)
    except ValidationError:
        raise BadRequestException("Malformed webhook payload", error_code="INVALID_WEBHOOK_PAYLOAD")

    handler = WebhookHandler(db)
    result = await handler.handle(webhook)

    return WebhookAckResponse(commission_awarded=result is not None)

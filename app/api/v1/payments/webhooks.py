"""
Payment webhook handlers
"""

from typing import Optional
import hashlib
import hmac
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    BadRequestException,
    InvalidWebhookSignatureException,
    ServiceUnavailableException,
)
from app.api.v1.affiliate.services import AffiliateService, CommissionResult
from app.services.fraud_detection import ClientContext
from .schemas import PAYMENT_SUCCEEDED, PaymentData, PaymentWebhook

logger = logging.getLogger(__name__)

def compute_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw request body"""
    return hmac.new(
        secret.encode('utf-8'),
        body,
        hashlib.sha256
    ).hexdigest()

def verify_webhook_signature(body: bytes, signature: Optional[str]) -> None:
    """
    Verify webhook signature

    Raises ServiceUnavailableException when no secret is configured and
    InvalidWebhookSignatureException on a missing or wrong signature.
    """
    secret = settings.PAYMENT_WEBHOOK_SECRET
    if not secret:
        logger.error("Payment webhook received but PAYMENT_WEBHOOK_SECRET is not set")
        raise ServiceUnavailableException("Payment webhooks are not configured")

    if not signature:
        raise InvalidWebhookSignatureException()

    expected = compute_signature(body, secret)
    if not hmac.compare_digest(expected, signature.strip().lower()):
        logger.warning("Payment webhook signature mismatch")
        raise InvalidWebhookSignatureException()

def client_from_metadata(data: PaymentData) -> Optional[ClientContext]:
    """
    Client context for the fraud check, when the checkout supplied one

    Either an IP address or a device id is enough to run the screen. The
    check correlates stored logs, so a missing device id is recorded as an
    empty fingerprint.
    """
    metadata = data.metadata
    if not metadata.ip_address and not metadata.device_id:
        return None
    return ClientContext(
        ip_address=metadata.ip_address or None,
        device_id=metadata.device_id or ""
    )

class WebhookHandler:
    """Handle payment gateway webhooks"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def handle(self, webhook: PaymentWebhook) -> Optional[CommissionResult]:
        if webhook.event != PAYMENT_SUCCEEDED:
            logger.info(f"Unhandled webhook event: {webhook.event}")
            return None

        if webhook.data is None:
            raise BadRequestException("Missing payment data", error_code="INVALID_WEBHOOK_PAYLOAD")

        return await self.handle_payment_succeeded(webhook.data)

    async def handle_payment_succeeded(self, data: PaymentData) -> Optional[CommissionResult]:
        """Handle payment succeeded event"""
        logger.info(f"Payment succeeded: {data.reference}")

        service = AffiliateService(self.db)
        return await service.award_commission_if_eligible(
            referred_user_id=data.user_id,
            amount_paid=data.amount,
            payment_reference=data.reference,
            client=client_from_metadata(data)
        )

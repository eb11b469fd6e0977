"""
Payment notification schemas
"""

from pydantic import BaseModel, Field
from typing import Optional
from decimal import Decimal

PAYMENT_SUCCEEDED = "payment.succeeded"

class PaymentMetadata(BaseModel):
    """
    Client identity captured by the checkout page

    Supplying either field enables the fraud screen at award time.
    """
    ip_address: Optional[str] = None
    device_id: Optional[str] = None

class PaymentData(BaseModel):
    reference: str = Field(..., min_length=1, max_length=255)
    amount: Decimal = Field(..., ge=0)
    user_id: str = Field(..., min_length=1, max_length=64)
    metadata: PaymentMetadata = Field(default_factory=PaymentMetadata)

class PaymentWebhook(BaseModel):
    """Schema for payment webhook from gateway"""
    event: str
    data: Optional[PaymentData] = None

class WebhookAckResponse(BaseModel):
    status: str = "ok"
    commission_awarded: bool = False

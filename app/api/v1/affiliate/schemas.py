"""
Affiliate schemas for request/response validation
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List
from datetime import datetime
from decimal import Decimal
import uuid

from app.models import ReferralStatus, CommissionStatus

class ReferralCreate(BaseModel):
    """Schema for claiming a referral code at signup"""
    referral_code: str = Field(..., min_length=4, max_length=50)

    @field_validator("referral_code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()

class ReferralCreateResponse(BaseModel):
    success: bool = True
    message: str = "Referral recorded"

class ReferralSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    status: ReferralStatus
    created_at: datetime

class CommissionSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    amount: Decimal
    status: CommissionStatus
    transaction_reference: str
    created_at: datetime

class AffiliateStats(BaseModel):
    referral_code: str
    referral_link: str
    is_active: bool
    total_balance: Decimal
    referred_count: int
    pending_count: int = Field(..., description="Signed up, not yet converted")
    converted_count: int
    recent_referrals: List[ReferralSummary]
    recent_commissions: List[CommissionSummary]

class AffiliateStatsResponse(BaseModel):
    success: bool = True
    data: AffiliateStats

class AffiliateStatusUpdate(BaseModel):
    """Schema for suspending or reinstating an affiliate"""
    is_active: bool

class AffiliateStatusResponse(BaseModel):
    success: bool = True
    user_id: str
    is_active: bool

class ReferralApprovalResponse(BaseModel):
    success: bool = True
    referral_id: uuid.UUID
    status: ReferralStatus

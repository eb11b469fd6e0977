"""
Affiliate API routes
"""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
import uuid

from app.core.database import get_db
from app.api.v1.auth.dependencies import get_current_user_id, require_admin
from .schemas import (
    AffiliateStatsResponse,
    AffiliateStatusResponse,
    AffiliateStatusUpdate,
    ReferralApprovalResponse,
    ReferralCreate,
    ReferralCreateResponse,
)
from .services import AffiliateService

router = APIRouter()

@router.get(
    "/stats",
    response_model=AffiliateStatsResponse,
    summary="Get affiliate stats",
    description="Get the caller's own referral code, balance and recent activity"
)
async def get_affiliate_stats(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    """Get affiliate dashboard for the authenticated user"""
    service = AffiliateService(db)
    stats = await service.get_stats(user_id, request.headers)
    return AffiliateStatsResponse(data=stats)

@router.post(
    "/referrals",
    response_model=ReferralCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Claim referral code",
    description="Attach the authenticated user to the owner of a referral code"
)
async def claim_referral(
    payload: ReferralCreate,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    """Record the caller as referred by the code's owner"""
    service = AffiliateService(db)
    await service.claim_referral(payload.referral_code, user_id, request.headers)
    return ReferralCreateResponse()

@router.post(
    "/admin/referrals/{referral_id}/approve",
    response_model=ReferralApprovalResponse,
    summary="Approve flagged referral",
    description="Release a referral held for fraud review (Admin only)"
)
async def approve_referral(
    referral_id: uuid.UUID,
    admin_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Approve a pending referral"""
    service = AffiliateService(db)
    referral = await service.approve_referral(referral_id, approved_by=admin_id)
    return ReferralApprovalResponse(referral_id=referral.id, status=referral.status)

@router.patch(
    "/admin/profiles/{user_id}",
    response_model=AffiliateStatusResponse,
    summary="Update affiliate status",
    description="Suspend or reinstate an affiliate (Admin only)"
)
async def update_affiliate_status(
    user_id: str,
    payload: AffiliateStatusUpdate,
    admin_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Activate or deactivate an affiliate"""
    service = AffiliateService(db)
    await service.set_affiliate_active(user_id, payload.is_active)
    return AffiliateStatusResponse(user_id=user_id, is_active=payload.is_active)

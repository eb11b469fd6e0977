"""
Affiliate CRUD operations

Store access is limited to point lookups, inserts, filtered updates and
atomic increments. Balances and counters are never read-modified-written
from Python.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from typing import Optional, List, Dict, Any
from decimal import Decimal
import uuid

from app.models import (
    AffiliateProfile,
    ReferralRecord,
    ReferralStatus,
    CommissionRecord,
    CommissionStatus,
)
from .state_machine import referral_state_machine


async def get_profile_by_user_id(db: AsyncSession, user_id: str) -> Optional[AffiliateProfile]:
    """Get affiliate profile owned by a user"""
    stmt = (
        select(AffiliateProfile)
        .where(AffiliateProfile.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_profile_by_code(db: AsyncSession, referral_code: str) -> Optional[AffiliateProfile]:
    """Get affiliate profile by referral code"""
    stmt = (
        select(AffiliateProfile)
        .where(AffiliateProfile.referral_code == referral_code)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def create_profile(db: AsyncSession, user_id: str, referral_code: str) -> AffiliateProfile:
    """Insert a fresh, active profile with a zero balance"""
    profile = AffiliateProfile(
        user_id=user_id,
        referral_code=referral_code,
        is_active=True,
        total_balance=Decimal("0"),
        referred_count=0
    )
    db.add(profile)
    await db.flush()
    return profile


async def set_profile_active(db: AsyncSession, user_id: str, is_active: bool) -> int:
    """Activate or suspend an affiliate; returns affected row count"""
    stmt = (
        update(AffiliateProfile)
        .where(AffiliateProfile.user_id == user_id)
        .values(is_active=is_active)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount


async def increment_balance(db: AsyncSession, user_id: str, amount: Decimal) -> int:
    """Atomically add to an affiliate's balance"""
    stmt = (
        update(AffiliateProfile)
        .where(AffiliateProfile.user_id == user_id)
        .values(total_balance=AffiliateProfile.total_balance + amount)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount


async def increment_referred_count(db: AsyncSession, user_id: str, by: int = 1) -> int:
    """Atomically bump an affiliate's referred-user counter"""
    stmt = (
        update(AffiliateProfile)
        .where(AffiliateProfile.user_id == user_id)
        .values(referred_count=AffiliateProfile.referred_count + by)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount


async def get_referral_by_id(db: AsyncSession, referral_id: uuid.UUID) -> Optional[ReferralRecord]:
    """Get referral by ID"""
    stmt = (
        select(ReferralRecord)
        .where(ReferralRecord.id == referral_id)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_referral_by_referred_user(
    db: AsyncSession,
    referred_user_id: str,
    status: Optional[ReferralStatus] = None
) -> Optional[ReferralRecord]:
    """Get the referral record of a referred user, optionally in a given status"""
    stmt = select(ReferralRecord).where(ReferralRecord.referred_user_id == referred_user_id)
    if status is not None:
        stmt = stmt.where(ReferralRecord.status == status)

    result = await db.execute(stmt.execution_options(populate_existing=True))
    return result.scalar_one_or_none()


async def create_referral(
    db: AsyncSession,
    referrer_id: str,
    referred_user_id: str,
    referral_code: str,
    status: ReferralStatus,
    details: Optional[Dict[str, Any]] = None
) -> ReferralRecord:
    """Insert a referral record"""
    referral = ReferralRecord(
        referrer_id=referrer_id,
        referred_user_id=referred_user_id,
        referral_code=referral_code,
        status=status,
        details=details or {}
    )
    db.add(referral)
    await db.flush()
    return referral


async def transition_referral_status(
    db: AsyncSession,
    referral_id: uuid.UUID,
    from_status: ReferralStatus,
    to_status: ReferralStatus,
    **values: Any
) -> bool:
    """
    Compare-and-set a referral's status

    Only updates the row while it is still in ``from_status``. Returns False
    when another writer moved it first.
    """
    if not referral_state_machine.can_transition(from_status, to_status):
        raise ValueError(f"Invalid referral transition {from_status.value} -> {to_status.value}")

    stmt = (
        update(ReferralRecord)
        .where(
            ReferralRecord.id == referral_id,
            ReferralRecord.status == from_status
        )
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


async def create_commission(
    db: AsyncSession,
    referrer_id: str,
    referral_id: uuid.UUID,
    referred_user_id: str,
    amount: Decimal,
    transaction_reference: str
) -> CommissionRecord:
    """Insert a paid commission ledger entry"""
    commission = CommissionRecord(
        user_id=referrer_id,
        referral_id=referral_id,
        referred_user_id=referred_user_id,
        amount=amount,
        transaction_reference=transaction_reference,
        status=CommissionStatus.PAID
    )
    db.add(commission)
    await db.flush()
    return commission


async def get_recent_referrals(db: AsyncSession, referrer_id: str, limit: int = 20) -> List[ReferralRecord]:
    """Latest referrals made by a referrer"""
    stmt = (
        select(ReferralRecord)
        .where(ReferralRecord.referrer_id == referrer_id)
        .order_by(ReferralRecord.created_at.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_recent_commissions(db: AsyncSession, user_id: str, limit: int = 20) -> List[CommissionRecord]:
    """Latest commissions earned by a referrer"""
    stmt = (
        select(CommissionRecord)
        .where(CommissionRecord.user_id == user_id)
        .order_by(CommissionRecord.created_at.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def count_referrals_by_status(db: AsyncSession, referrer_id: str) -> Dict[ReferralStatus, int]:
    """Referral counts per status for a referrer"""
    stmt = (
        select(ReferralRecord.status, func.count())
        .where(ReferralRecord.referrer_id == referrer_id)
        .group_by(ReferralRecord.status)
    )
    result = await db.execute(stmt)
    counts = {status: 0 for status in ReferralStatus}
    for status, count in result.all():
        counts[ReferralStatus(status)] = count
    return counts

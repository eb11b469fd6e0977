"""
Affiliate business logic

Referral signup, fraud screening and the commission engine.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Mapping, Optional, Union
import logging
import uuid

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    ConflictException,
    DuplicateReferralException,
    InvalidReferralCodeException,
    NotFoundException,
    SelfReferralException,
    ServiceUnavailableException,
)
from app.core.monitoring import commission_amount, commissions_awarded, fraud_flags
from app.core.security import SecurityUtils
from app.models import AffiliateProfile, FraudEventType, ReferralRecord, ReferralStatus
from app.services.event_bus import CommissionAwarded, EventBus, ReferralConverted, event_bus
from app.services.fraud_detection import ClientContext, FraudCheckResult, FraudDetectionService
from . import crud
from .schemas import AffiliateStats, CommissionSummary, ReferralSummary

logger = logging.getLogger(__name__)

MAX_REFERRAL_CODE_ATTEMPTS = 5

Amount = Union[int, float, Decimal, str]

@dataclass(frozen=True)
class CommissionResult:
    commission: Decimal
    referrer_id: str

def calculate_commission(amount_paid: Amount, rate: Optional[Decimal] = None) -> Decimal:
    """
    Commission for a payment, rounded half-up to a whole currency unit

    >>> calculate_commission(10000, Decimal("0.13"))
    Decimal('1300')
    """
    amount = Decimal(str(amount_paid))
    if amount < 0:
        raise ValueError("Payment amount cannot be negative")

    rate = settings.AFFILIATE_COMMISSION_RATE if rate is None else rate
    return (amount * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP)

def is_approved(referral: ReferralRecord) -> bool:
    """True once an administrator has released the referral from review"""
    return "approved_at" in (referral.details or {})

class AffiliateService:
    """Service for managing affiliate profiles, referrals and commissions"""

    def __init__(
        self,
        db: AsyncSession,
        fraud_service: Optional[FraudDetectionService] = None,
        events: Optional[EventBus] = None
    ):
        self.db = db
        self.fraud_service = fraud_service or FraudDetectionService(db)
        self.events = events or event_bus

    async def get_or_create_profile(self, user_id: str) -> AffiliateProfile:
        """Return the user's affiliate profile, creating it on first use"""
        profile = await crud.get_profile_by_user_id(self.db, user_id)
        if profile:
            return profile

        for _ in range(MAX_REFERRAL_CODE_ATTEMPTS):
            code = SecurityUtils.generate_referral_code(settings.REFERRAL_CODE_LENGTH)
            if await crud.get_profile_by_code(self.db, code):
                continue

            try:
                profile = await crud.create_profile(self.db, user_id, code)
                await self.db.commit()
            except IntegrityError:
                # Lost a race on either the code or the user
                await self.db.rollback()
                existing = await crud.get_profile_by_user_id(self.db, user_id)
                if existing:
                    return existing
                continue

            logger.info(f"Created affiliate profile for user {user_id}")
            return profile

        raise ServiceUnavailableException("Could not allocate a referral code")

    async def get_stats(
        self,
        user_id: str,
        headers: Optional[Mapping[str, str]] = None
    ) -> AffiliateStats:
        """
        Affiliate dashboard data, always scoped to ``user_id``

        When request headers are given the affiliate's own network identity
        is logged, so later signups through their code can be correlated
        against it.
        """
        profile = await self.get_or_create_profile(user_id)
        if headers is not None:
            await self.log_affiliate_access(user_id, headers)

        limit = settings.AFFILIATE_STATS_LIMIT

        counts = await crud.count_referrals_by_status(self.db, user_id)
        referrals = await crud.get_recent_referrals(self.db, user_id, limit)
        commissions = await crud.get_recent_commissions(self.db, user_id, limit)

        return AffiliateStats(
            referral_code=profile.referral_code,
            referral_link=f"{settings.FRONTEND_URL}/register?ref={profile.referral_code}",
            is_active=profile.is_active,
            total_balance=Decimal(str(profile.total_balance or 0)),
            referred_count=profile.referred_count or 0,
            pending_count=counts[ReferralStatus.SIGNED_UP],
            converted_count=counts[ReferralStatus.CONVERTED],
            recent_referrals=[ReferralSummary.model_validate(r) for r in referrals],
            recent_commissions=[CommissionSummary.model_validate(c) for c in commissions],
        )

    async def log_affiliate_access(self, user_id: str, headers: Mapping[str, str]) -> None:
        client = ClientContext.from_headers(headers)
        await self.fraud_service.log_fraud_attempt(
            user_id,
            FraudEventType.AFFILIATE_ACCESS.value,
            client.ip_address,
            client.device_id,
            metadata={"user_agent": headers.get("user-agent") or ""}
        )
        await self.db.commit()

    async def claim_referral(
        self,
        referral_code: str,
        referred_user_id: str,
        headers: Mapping[str, str]
    ) -> ReferralRecord:
        """
        Signup entry point: log the signup attempt, then record the referral

        The signup log is committed first so it survives a rejected code.
        """
        await self.fraud_service.log_signup_attempt(headers, referred_user_id)
        await self.db.commit()

        return await self.record_referral(
            referral_code,
            referred_user_id,
            client=ClientContext.from_headers(headers)
        )

    async def record_referral(
        self,
        referral_code: str,
        referred_user_id: str,
        client: Optional[ClientContext] = None
    ) -> ReferralRecord:
        """
        Record a new referral

        Flagged signups are stored as ``pending`` so they never earn
        commission until an administrator approves them.
        """
        referrer = await crud.get_profile_by_code(self.db, referral_code)
        if referrer is None:
            logger.warning(f"Invalid referral code used: {referral_code}")
            raise InvalidReferralCodeException()

        if referrer.user_id == referred_user_id:
            logger.warning(f"User {referred_user_id} attempted to refer themselves")
            raise SelfReferralException()

        if await crud.get_referral_by_referred_user(self.db, referred_user_id):
            raise DuplicateReferralException()

        check = FraudCheckResult(is_fraudulent=False)
        if client is not None:
            check = await self.fraud_service.check_fraud_risk(
                referrer.user_id,
                referred_user_id,
                client.ip_address,
                client.device_id
            )

        status = ReferralStatus.PENDING if check.is_fraudulent else ReferralStatus.SIGNED_UP
        details = {}
        if check.is_fraudulent:
            details["fraud_reason"] = check.reason

        try:
            referral = await crud.create_referral(
                self.db,
                referrer_id=referrer.user_id,
                referred_user_id=referred_user_id,
                referral_code=referral_code,
                status=status,
                details=details
            )

            if check.is_fraudulent:
                await self.fraud_service.log_fraud_attempt(
                    referred_user_id,
                    FraudEventType.REFERRAL_FLAGGED.value,
                    client.ip_address,
                    client.device_id,
                    is_flagged=True,
                    metadata={"reason": check.reason, "referrer_id": referrer.user_id}
                )

            await crud.increment_referred_count(self.db, referrer.user_id)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateReferralException()
        except Exception:
            await self.db.rollback()
            raise

        if check.is_fraudulent:
            fraud_flags.labels(event_type=FraudEventType.REFERRAL_FLAGGED.value).inc()

        logger.info(
            f"Referral recorded: {referrer.user_id} -> {referred_user_id} ({status.value})"
        )
        return referral

    async def award_commission_if_eligible(
        self,
        referred_user_id: str,
        amount_paid: Amount,
        payment_reference: str,
        client: Optional[ClientContext] = None
    ) -> Optional[CommissionResult]:
        """
        Award referral commission for a referred user's first qualifying payment

        Returns None, without writing anything, when the user has no
        signed-up referral or the referrer is missing or inactive. Once the
        award is committed to, store errors roll back and propagate. A second
        call for the same user returns None because the referral is no longer
        ``signed_up``.
        """
        commission = calculate_commission(amount_paid)

        referral = await crud.get_referral_by_referred_user(
            self.db, referred_user_id, ReferralStatus.SIGNED_UP
        )
        if referral is None:
            return None

        profile = await crud.get_profile_by_user_id(self.db, referral.referrer_id)
        if profile is None or not profile.is_active:
            logger.info(f"No commission for {referred_user_id}: referrer {referral.referrer_id} not eligible")
            return None

        # An administrator already cleared this referral against the same logs
        if (
            client is not None
            and not is_approved(referral)
            and await self._block_if_fraudulent(referral, client, payment_reference)
        ):
            return None

        referral_id = referral.id
        referrer_id = referral.referrer_id

        try:
            converted = await crud.transition_referral_status(
                self.db,
                referral_id,
                ReferralStatus.SIGNED_UP,
                ReferralStatus.CONVERTED,
                converted_at=datetime.now(timezone.utc)
            )
            if not converted:
                # A concurrent delivery of the same payment got there first
                await self.db.rollback()
                logger.warning(f"Referral {referral_id} already converted, skipping commission")
                return None

            await crud.create_commission(
                self.db,
                referrer_id=referrer_id,
                referral_id=referral_id,
                referred_user_id=referred_user_id,
                amount=commission,
                transaction_reference=payment_reference
            )

            updated = await crud.increment_balance(self.db, referrer_id, commission)
            if updated != 1:
                raise RuntimeError(f"Affiliate profile {referrer_id} missing during balance update")

            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Commission award failed for {referred_user_id} ({payment_reference}): {e}")
            raise

        commissions_awarded.inc()
        commission_amount.inc(float(commission))
        logger.info(
            f"Awarded commission {commission} to {referrer_id} "
            f"for {referred_user_id} ({payment_reference})"
        )

        await self.events.publish(ReferralConverted(
            referral_id=str(referral_id),
            referrer_id=referrer_id,
            referred_user_id=referred_user_id
        ))
        await self.events.publish(CommissionAwarded(
            referrer_id=referrer_id,
            referred_user_id=referred_user_id,
            amount=commission,
            transaction_reference=payment_reference
        ))

        return CommissionResult(commission=commission, referrer_id=referrer_id)

    async def _block_if_fraudulent(
        self,
        referral: ReferralRecord,
        client: ClientContext,
        payment_reference: str
    ) -> bool:
        check = await self.fraud_service.check_fraud_risk(
            referral.referrer_id,
            referral.referred_user_id,
            client.ip_address,
            client.device_id
        )
        if not check.is_fraudulent:
            return False

        await self.fraud_service.log_fraud_attempt(
            referral.referred_user_id,
            FraudEventType.COMMISSION_BLOCKED.value,
            client.ip_address,
            client.device_id,
            is_flagged=True,
            metadata={
                "reason": check.reason,
                "referrer_id": referral.referrer_id,
                "transaction_ref": payment_reference
            }
        )
        await self.db.commit()

        fraud_flags.labels(event_type=FraudEventType.COMMISSION_BLOCKED.value).inc()
        logger.warning(f"Commission blocked due to fraud risk: {check.reason}")
        return True

    async def set_affiliate_active(self, user_id: str, is_active: bool) -> None:
        """Suspend or reinstate an affiliate's commission eligibility"""
        updated = await crud.set_profile_active(self.db, user_id, is_active)
        if not updated:
            raise NotFoundException("Affiliate profile not found")

        await self.db.commit()
        logger.info(f"Affiliate {user_id} {'activated' if is_active else 'deactivated'}")

    async def approve_referral(
        self,
        referral_id: uuid.UUID,
        approved_by: Optional[str] = None
    ) -> ReferralRecord:
        """
        Release a referral held for review (pending -> signed_up)

        The approval is stamped into the referral's details, which exempts
        it from the fraud screen at award time.
        """
        referral = await crud.get_referral_by_id(self.db, referral_id)
        if referral is None:
            raise NotFoundException("Referral not found")

        details = dict(referral.details or {})
        details["approved_by"] = approved_by
        details["approved_at"] = datetime.now(timezone.utc).isoformat()

        moved = await crud.transition_referral_status(
            self.db,
            referral_id,
            ReferralStatus.PENDING,
            ReferralStatus.SIGNED_UP,
            details=details
        ) if referral.status == ReferralStatus.PENDING else False

        if not moved:
            raise ConflictException("Referral is not pending review", error_code="REFERRAL_NOT_PENDING")

        await self.db.commit()
        logger.info(f"Referral {referral_id} approved by {approved_by}")
        return await crud.get_referral_by_id(self.db, referral_id)

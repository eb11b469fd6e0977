"""Tests for the affiliate service and commission engine."""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from app.api.v1.affiliate import crud
from app.api.v1.affiliate.services import (
    AffiliateService,
    CommissionResult,
    calculate_commission,
)
from app.api.v1.affiliate.state_machine import referral_state_machine
from app.core.exceptions import (
    ConflictException,
    DuplicateReferralException,
    InvalidReferralCodeException,
    NotFoundException,
    SelfReferralException,
)
from app.models import (
    CommissionRecord,
    FraudEventType,
    FraudLogEntry,
    ReferralStatus,
)
from app.services.event_bus import CommissionAwarded, EventBus, ReferralConverted
from app.services.fraud_detection import ClientContext

REFERRER = "referrer-1"
REFERRED = "referred-1"
CODE = "REFCODE1"


async def seed_referral(db, status=ReferralStatus.SIGNED_UP, is_active=True):
    """Create an affiliate profile and a referral of REFERRED to it."""
    await crud.create_profile(db, REFERRER, CODE)
    if not is_active:
        await crud.set_profile_active(db, REFERRER, False)
    referral = await crud.create_referral(
        db,
        referrer_id=REFERRER,
        referred_user_id=REFERRED,
        referral_code=CODE,
        status=status,
    )
    await db.commit()
    return referral


async def count_commissions(db) -> int:
    result = await db.execute(select(func.count()).select_from(CommissionRecord))
    return result.scalar_one()


class TestCalculateCommission:
    """Tests for commission arithmetic."""

    def test_thirteen_percent(self):
        assert calculate_commission(10000) == Decimal("1300")

    def test_rounds_half_up_to_whole_units(self):
        assert calculate_commission(50, Decimal("0.13")) == Decimal("7")
        assert calculate_commission(49, Decimal("0.13")) == Decimal("6")

    def test_zero_amount(self):
        assert calculate_commission(0) == Decimal("0")

    def test_decimal_and_string_amounts(self):
        assert calculate_commission(Decimal("999.99")) == Decimal("130")
        assert calculate_commission("2500") == Decimal("325")

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError):
            calculate_commission(-1)


class TestReferralStateMachine:
    """Tests for the forward-only referral lifecycle."""

    def test_forward_transitions(self):
        assert referral_state_machine.can_transition(ReferralStatus.PENDING, ReferralStatus.SIGNED_UP)
        assert referral_state_machine.can_transition(ReferralStatus.SIGNED_UP, ReferralStatus.CONVERTED)

    def test_no_backward_or_skipping_moves(self):
        assert not referral_state_machine.can_transition(ReferralStatus.CONVERTED, ReferralStatus.SIGNED_UP)
        assert not referral_state_machine.can_transition(ReferralStatus.SIGNED_UP, ReferralStatus.PENDING)
        assert not referral_state_machine.can_transition(ReferralStatus.PENDING, ReferralStatus.CONVERTED)

    def test_terminal_and_eligibility(self):
        assert referral_state_machine.is_terminal_state(ReferralStatus.CONVERTED)
        assert referral_state_machine.is_commission_eligible(ReferralStatus.SIGNED_UP)
        assert not referral_state_machine.is_commission_eligible(ReferralStatus.PENDING)

    @pytest.mark.asyncio
    async def test_compare_and_set_only_moves_once(self, db_session):
        referral = await seed_referral(db_session)

        first = await crud.transition_referral_status(
            db_session, referral.id, ReferralStatus.SIGNED_UP, ReferralStatus.CONVERTED
        )
        second = await crud.transition_referral_status(
            db_session, referral.id, ReferralStatus.SIGNED_UP, ReferralStatus.CONVERTED
        )

        assert first is True
        assert second is False

    @pytest.mark.asyncio
    async def test_invalid_transition_raises(self, db_session):
        referral = await seed_referral(db_session)

        with pytest.raises(ValueError):
            await crud.transition_referral_status(
                db_session, referral.id, ReferralStatus.CONVERTED, ReferralStatus.SIGNED_UP
            )


class TestAwardCommission:
    """Tests for AffiliateService.award_commission_if_eligible."""

    @pytest_asyncio.fixture
    async def events(self):
        return EventBus()

    @pytest_asyncio.fixture
    async def service(self, db_session, events):
        return AffiliateService(db_session, events=events)

    @pytest.mark.asyncio
    async def test_awards_thirteen_percent(self, service, db_session):
        referral = await seed_referral(db_session)

        result = await service.award_commission_if_eligible(REFERRED, 10000, "pay_001")

        assert result == CommissionResult(commission=Decimal("1300"), referrer_id=REFERRER)

        profile = await crud.get_profile_by_user_id(db_session, REFERRER)
        assert profile.total_balance == Decimal("1300")

        stored = await crud.get_referral_by_id(db_session, referral.id)
        assert stored.status == ReferralStatus.CONVERTED
        assert stored.converted_at is not None

        commissions = await crud.get_recent_commissions(db_session, REFERRER)
        assert len(commissions) == 1
        assert commissions[0].amount == Decimal("1300")
        assert commissions[0].transaction_reference == "pay_001"
        assert commissions[0].referred_user_id == REFERRED

    @pytest.mark.asyncio
    async def test_second_award_returns_none(self, service, db_session):
        await seed_referral(db_session)

        first = await service.award_commission_if_eligible(REFERRED, 10000, "pay_001")
        second = await service.award_commission_if_eligible(REFERRED, 10000, "pay_001")

        assert first is not None
        assert second is None
        assert await count_commissions(db_session) == 1

        profile = await crud.get_profile_by_user_id(db_session, REFERRER)
        assert profile.total_balance == Decimal("1300")

    @pytest.mark.asyncio
    async def test_balance_accumulates_across_referrals(self, service, db_session):
        await seed_referral(db_session)
        await crud.create_referral(
            db_session,
            referrer_id=REFERRER,
            referred_user_id="referred-2",
            referral_code=CODE,
            status=ReferralStatus.SIGNED_UP,
        )
        await db_session.commit()

        await service.award_commission_if_eligible(REFERRED, 10000, "pay_001")
        await service.award_commission_if_eligible("referred-2", 5000, "pay_002")

        profile = await crud.get_profile_by_user_id(db_session, REFERRER)
        assert profile.total_balance == Decimal("1950")

    @pytest.mark.asyncio
    async def test_no_referral_returns_none(self, service):
        assert await service.award_commission_if_eligible("stranger", 10000, "pay_001") is None

    @pytest.mark.asyncio
    async def test_no_referral_makes_no_writes(self):
        db = AsyncMock()
        db.add = MagicMock()
        service = AffiliateService(db, events=EventBus())

        with patch.object(crud, "get_referral_by_referred_user", AsyncMock(return_value=None)), \
                patch.object(crud, "create_commission", AsyncMock()) as create_commission, \
                patch.object(crud, "increment_balance", AsyncMock()) as increment_balance:
            result = await service.award_commission_if_eligible("stranger", 10000, "pay_001")

        assert result is None
        create_commission.assert_not_awaited()
        increment_balance.assert_not_awaited()
        db.add.assert_not_called()
        db.execute.assert_not_awaited()
        db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_inactive_affiliate_returns_none(self, service, db_session):
        referral = await seed_referral(db_session, is_active=False)

        result = await service.award_commission_if_eligible(REFERRED, 10000, "pay_001")

        assert result is None
        assert await count_commissions(db_session) == 0
        stored = await crud.get_referral_by_id(db_session, referral.id)
        assert stored.status == ReferralStatus.SIGNED_UP

    @pytest.mark.asyncio
    async def test_pending_referral_not_eligible(self, service, db_session):
        await seed_referral(db_session, status=ReferralStatus.PENDING)

        assert await service.award_commission_if_eligible(REFERRED, 10000, "pay_001") is None
        assert await count_commissions(db_session) == 0

    @pytest.mark.asyncio
    async def test_flagged_client_blocks_award(self, service, db_session):
        referral = await seed_referral(db_session)
        fraud = service.fraud_service
        await fraud.log_fraud_attempt(REFERRER, FraudEventType.SIGNUP_ATTEMPT.value, "1.2.3.4", "device-a")
        await fraud.log_fraud_attempt(REFERRED, FraudEventType.SIGNUP_ATTEMPT.value, "1.2.3.4", "device-b")
        await db_session.commit()

        result = await service.award_commission_if_eligible(
            REFERRED, 10000, "pay_001", client=ClientContext("1.2.3.4", "device-b")
        )

        assert result is None
        assert await count_commissions(db_session) == 0

        stored = await crud.get_referral_by_id(db_session, referral.id)
        assert stored.status == ReferralStatus.SIGNED_UP

        blocked = await db_session.execute(
            select(FraudLogEntry).where(
                FraudLogEntry.event_type == FraudEventType.COMMISSION_BLOCKED.value
            )
        )
        entry = blocked.scalar_one()
        assert entry.is_flagged is True
        assert entry.user_id == REFERRED
        assert entry.details["transaction_ref"] == "pay_001"

    @pytest.mark.asyncio
    async def test_clean_client_still_awarded(self, service, db_session):
        await seed_referral(db_session)
        fraud = service.fraud_service
        await fraud.log_fraud_attempt(REFERRER, FraudEventType.SIGNUP_ATTEMPT.value, "1.2.3.4", "device-a")
        await fraud.log_fraud_attempt(REFERRED, FraudEventType.SIGNUP_ATTEMPT.value, "5.6.7.8", "device-b")
        await db_session.commit()

        result = await service.award_commission_if_eligible(
            REFERRED, 10000, "pay_001", client=ClientContext("5.6.7.8", "device-b")
        )

        assert result is not None

    @pytest.mark.asyncio
    async def test_events_published_after_award(self, service, db_session, events):
        received = []

        async def collect(event):
            received.append(event)

        events.subscribe(ReferralConverted, collect)
        events.subscribe(CommissionAwarded, collect)
        referral = await seed_referral(db_session)

        await service.award_commission_if_eligible(REFERRED, 10000, "pay_001")

        assert [type(e) for e in received] == [ReferralConverted, CommissionAwarded]
        assert received[0].referral_id == str(referral.id)
        assert received[1].amount == Decimal("1300")
        assert received[1].transaction_reference == "pay_001"

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_undo_award(self, service, db_session, events):
        async def broken(event):
            raise RuntimeError("subscriber down")

        events.subscribe(CommissionAwarded, broken)
        await seed_referral(db_session)

        result = await service.award_commission_if_eligible(REFERRED, 10000, "pay_001")

        assert result is not None
        assert await count_commissions(db_session) == 1

    @pytest.mark.asyncio
    async def test_store_error_rolls_back_and_propagates(self, service, db_session):
        referral = await seed_referral(db_session)
        referral_id = referral.id

        with patch.object(crud, "increment_balance", AsyncMock(side_effect=RuntimeError("db down"))):
            with pytest.raises(RuntimeError):
                await service.award_commission_if_eligible(REFERRED, 10000, "pay_001")

        assert await count_commissions(db_session) == 0
        stored = await crud.get_referral_by_id(db_session, referral_id)
        assert stored.status == ReferralStatus.SIGNED_UP


class TestRecordReferral:
    """Tests for AffiliateService.record_referral."""

    @pytest_asyncio.fixture
    async def service(self, db_session):
        return AffiliateService(db_session, events=EventBus())

    @pytest_asyncio.fixture
    async def profile(self, db_session):
        profile = await crud.create_profile(db_session, REFERRER, CODE)
        await db_session.commit()
        return profile

    @pytest.mark.asyncio
    async def test_records_signed_up_referral(self, service, db_session, profile):
        referral = await service.record_referral(CODE, REFERRED)

        assert referral.status == ReferralStatus.SIGNED_UP
        assert referral.referrer_id == REFERRER

        refreshed = await crud.get_profile_by_user_id(db_session, REFERRER)
        assert refreshed.referred_count == 1

    @pytest.mark.asyncio
    async def test_invalid_code(self, service, profile):
        with pytest.raises(InvalidReferralCodeException):
            await service.record_referral("NOPE0000", REFERRED)

    @pytest.mark.asyncio
    async def test_self_referral(self, service, profile):
        with pytest.raises(SelfReferralException):
            await service.record_referral(CODE, REFERRER)

    @pytest.mark.asyncio
    async def test_duplicate_referral(self, service, profile):
        await service.record_referral(CODE, REFERRED)

        with pytest.raises(DuplicateReferralException):
            await service.record_referral(CODE, REFERRED)

    @pytest.mark.asyncio
    async def test_flagged_signup_stored_pending(self, service, db_session, profile):
        fraud = service.fraud_service
        await fraud.log_fraud_attempt(REFERRER, FraudEventType.SIGNUP_ATTEMPT.value, "9.9.9.9", "device-a")
        await fraud.log_fraud_attempt(REFERRED, FraudEventType.SIGNUP_ATTEMPT.value, "5.6.7.8", "device-a")
        await db_session.commit()

        referral = await service.record_referral(
            CODE, REFERRED, client=ClientContext("5.6.7.8", "device-a")
        )

        assert referral.status == ReferralStatus.PENDING
        assert "device fingerprint detected" in referral.details["fraud_reason"]

        flagged = await db_session.execute(
            select(FraudLogEntry).where(
                FraudLogEntry.event_type == FraudEventType.REFERRAL_FLAGGED.value
            )
        )
        assert flagged.scalar_one().is_flagged is True

        # Held referrals never earn commission
        assert await service.award_commission_if_eligible(REFERRED, 10000, "pay_001") is None


class TestProfilesAndAdmin:
    """Tests for profile creation, stats and admin operations."""

    @pytest_asyncio.fixture
    async def service(self, db_session):
        return AffiliateService(db_session, events=EventBus())

    @pytest.mark.asyncio
    async def test_get_or_create_profile_is_idempotent(self, service):
        first = await service.get_or_create_profile("user-1")
        second = await service.get_or_create_profile("user-1")

        assert first.id == second.id
        assert len(first.referral_code) == 8
        assert first.is_active is True

    @pytest.mark.asyncio
    async def test_stats_counts(self, service, db_session):
        await seed_referral(db_session)
        await crud.create_referral(
            db_session,
            referrer_id=REFERRER,
            referred_user_id="referred-2",
            referral_code=CODE,
            status=ReferralStatus.SIGNED_UP,
        )
        await db_session.commit()
        await service.award_commission_if_eligible(REFERRED, 10000, "pay_001")

        stats = await service.get_stats(REFERRER)

        assert stats.referral_code == CODE
        assert stats.referral_link.endswith(f"/register?ref={CODE}")
        assert stats.total_balance == Decimal("1300")
        assert stats.pending_count == 1
        assert stats.converted_count == 1
        assert len(stats.recent_referrals) == 2
        assert len(stats.recent_commissions) == 1

    @pytest.mark.asyncio
    async def test_set_affiliate_active(self, service, db_session):
        await seed_referral(db_session)

        await service.set_affiliate_active(REFERRER, False)

        profile = await crud.get_profile_by_user_id(db_session, REFERRER)
        assert profile.is_active is False
        assert await service.award_commission_if_eligible(REFERRED, 10000, "pay_001") is None

    @pytest.mark.asyncio
    async def test_set_affiliate_active_unknown_user(self, service):
        with pytest.raises(NotFoundException):
            await service.set_affiliate_active("nobody", False)

    @pytest.mark.asyncio
    async def test_approve_pending_referral(self, service, db_session):
        referral = await seed_referral(db_session, status=ReferralStatus.PENDING)

        approved = await service.approve_referral(referral.id)

        assert approved.status == ReferralStatus.SIGNED_UP
        assert await service.award_commission_if_eligible(REFERRED, 10000, "pay_001") is not None

    @pytest.mark.asyncio
    async def test_approve_non_pending_conflicts(self, service, db_session):
        referral = await seed_referral(db_session)

        with pytest.raises(ConflictException):
            await service.approve_referral(referral.id)

    @pytest.mark.asyncio
    async def test_approved_referral_earns_despite_fraud_match(self, service, db_session):
        await crud.create_profile(db_session, REFERRER, CODE)
        fraud = service.fraud_service
        await fraud.log_fraud_attempt(REFERRER, FraudEventType.SIGNUP_ATTEMPT.value, "1.2.3.4", "device-a")
        await fraud.log_fraud_attempt(REFERRED, FraudEventType.SIGNUP_ATTEMPT.value, "1.2.3.4", "device-a")
        await db_session.commit()
        client = ClientContext("1.2.3.4", "device-a")

        referral = await service.record_referral(CODE, REFERRED, client=client)
        assert referral.status == ReferralStatus.PENDING

        approved = await service.approve_referral(referral.id, approved_by="admin-1")
        assert approved.details["approved_by"] == "admin-1"
        assert "approved_at" in approved.details
        assert approved.details["fraud_reason"]

        result = await service.award_commission_if_eligible(
            REFERRED, 10000, "pay_001", client=client
        )

        assert result == CommissionResult(commission=Decimal("1300"), referrer_id=REFERRER)

        blocked = await db_session.execute(
            select(func.count()).select_from(FraudLogEntry).where(
                FraudLogEntry.event_type == FraudEventType.COMMISSION_BLOCKED.value
            )
        )
        assert blocked.scalar_one() == 0

    @pytest.mark.asyncio
    async def test_stats_logs_affiliate_access(self, service, db_session):
        headers = {"x-forwarded-for": "203.0.113.9", "user-agent": "Mozilla/5.0"}

        await service.get_stats(REFERRER, headers)

        logs = await service.fraud_service.get_recent_logs(REFERRER, 10)
        assert len(logs) == 1
        assert logs[0].event_type == FraudEventType.AFFILIATE_ACCESS.value
        assert logs[0].ip_address == "203.0.113.9"
        assert logs[0].is_flagged is False

    @pytest.mark.asyncio
    async def test_stats_without_headers_logs_nothing(self, service):
        await service.get_stats(REFERRER)

        assert await service.fraud_service.get_recent_logs(REFERRER, 10) == []

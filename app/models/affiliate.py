"""Affiliate profile and commission ledger models"""

from sqlalchemy import Column, String, Integer, Boolean, Numeric, Enum, ForeignKey, Uuid
import enum

from app.models.base import Base, TimestampedModel, CreatedAtModel, UUIDModel

class AffiliateProfile(Base, TimestampedModel, UUIDModel):
    """Referrer account: code, standing and running balance"""

    __tablename__ = "affiliate_profiles"

    user_id = Column(String(64), nullable=False, unique=True, index=True)
    referral_code = Column(String(50), nullable=False, unique=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    # Only ever changed through atomic increments
    total_balance = Column(Numeric(12, 2), default=0, nullable=False)
    referred_count = Column(Integer, default=0, nullable=False)

class CommissionStatus(str, enum.Enum):
    PAID = "paid"
    VOID = "void"

class CommissionRecord(Base, CreatedAtModel, UUIDModel):
    """Immutable commission ledger entry"""

    __tablename__ = "affiliate_commissions"

    user_id = Column(String(64), nullable=False, index=True)  # referrer
    referral_id = Column(Uuid(as_uuid=True), ForeignKey("referrals.id"), nullable=False, unique=True)
    referred_user_id = Column(String(64), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    transaction_reference = Column(String(200), nullable=False)
    status = Column(
        Enum(
            CommissionStatus,
            name="commission_status",
            native_enum=False,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        default=CommissionStatus.PAID,
    )

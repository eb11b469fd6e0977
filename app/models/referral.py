"""Referral system models"""

from sqlalchemy import Column, String, DateTime, Enum, JSON, Index
import enum

from app.models.base import Base, TimestampedModel, UUIDModel

class ReferralStatus(str, enum.Enum):
    PENDING = "pending"      # held for review
    SIGNED_UP = "signed_up"
    CONVERTED = "converted"

class ReferralRecord(Base, TimestampedModel, UUIDModel):
    """One referrer -> referred user relationship"""

    __tablename__ = "referrals"

    referrer_id = Column(String(64), nullable=False, index=True)
    referred_user_id = Column(String(64), nullable=False, unique=True)
    referral_code = Column(String(50), nullable=False)
    status = Column(
        Enum(
            ReferralStatus,
            name="referral_status",
            native_enum=False,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        default=ReferralStatus.PENDING,
    )
    details = Column("metadata", JSON, nullable=False, default=dict)
    converted_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_referrals_referred_status", "referred_user_id", "status"),
    )

"""Append-only fraud observation log"""

from sqlalchemy import Column, String, Integer, Boolean, JSON, Index
import enum

from app.models.base import Base, CreatedAtModel

class FraudEventType(str, enum.Enum):
    SIGNUP_ATTEMPT = "signup_attempt"
    REFERRAL_FLAGGED = "referral_flagged"
    COMMISSION_BLOCKED = "commission_blocked"
    AFFILIATE_ACCESS = "affiliate_access"

class FraudLogEntry(Base, CreatedAtModel):
    """IP / device observation for a user"""

    __tablename__ = "affiliate_fraud_logs"

    # Sequential key keeps "most recent" stable within one timestamp tick
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    ip_address = Column(String(64), nullable=True)
    device_id = Column(String(64), nullable=False)
    event_type = Column(String(50), nullable=False)
    is_flagged = Column(Boolean, default=False, nullable=False)
    details = Column("metadata", JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_fraud_logs_user_event", "user_id", "event_type"),
    )

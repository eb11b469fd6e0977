"""Models package initialization"""

from .base import Base
from .referral import ReferralRecord, ReferralStatus
from .affiliate import AffiliateProfile, CommissionRecord, CommissionStatus
from .fraud_log import FraudLogEntry, FraudEventType

# Export all models
__all__ = [
    "Base",
    "ReferralRecord",
    "ReferralStatus",
    "AffiliateProfile",
    "CommissionRecord",
    "CommissionStatus",
    "FraudLogEntry",
    "FraudEventType",
]

"""
Fraud detection for the affiliate program

Flags self-referral and collusion by correlating the IP address and device
fingerprint a referred user signed up with against the referrer's recent
activity. The check is advisory: callers decide what to do with a flag.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models import FraudLogEntry, FraudEventType

logger = logging.getLogger(__name__)

IP_MATCH_REASON = "Matching IP address detected between referrer and referred user"
DEVICE_MATCH_REASON = "Matching device fingerprint detected between referrer and referred user"

FINGERPRINT_HEADERS = ("user-agent", "accept-language", "accept-encoding", "accept")

@dataclass(frozen=True)
class FraudCheckResult:
    is_fraudulent: bool
    reason: Optional[str] = None

@dataclass(frozen=True)
class ClientContext:
    """Network identity of the request that triggered a referral event"""
    ip_address: Optional[str]
    device_id: str

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "ClientContext":
        return cls(
            ip_address=get_client_ip(headers),
            device_id=get_device_fingerprint(headers)
        )

def get_client_ip(headers: Mapping[str, str]) -> Optional[str]:
    """
    Extract client IP address from proxy headers

    Only the first header present is used, in priority order:
    X-Forwarded-For (first hop), X-Real-IP, CF-Connecting-IP.
    """
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip

    cf_connecting_ip = headers.get("cf-connecting-ip")
    if cf_connecting_ip:
        return cf_connecting_ip

    return None

def _to_base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(digits[rem])
    return "".join(reversed(out))

def fingerprint_hash(value: str) -> str:
    """
    32-bit multiply-by-31 string hash rendered in base 36

    Hashes UTF-16 code units with signed 32-bit wrap-around so fingerprints
    match those produced by browser-side code. Not cryptographic.
    """
    encoded = value.encode("utf-16-le")
    h = 0
    for i in range(0, len(encoded), 2):
        code_unit = encoded[i] | (encoded[i + 1] << 8)
        h = (h * 31 + code_unit) & 0xFFFFFFFF

    if h >= 0x80000000:
        h -= 0x100000000

    return _to_base36(abs(h))

def get_device_fingerprint(headers: Mapping[str, str]) -> str:
    """Derive a weak device identity from request headers"""
    components = [headers.get(name) or "" for name in FINGERPRINT_HEADERS]
    return fingerprint_hash("|".join(components))

class FraudDetectionService:
    """Correlation checks and the append-only fraud log"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_recent_logs(self, user_id: str, limit: int) -> List[FraudLogEntry]:
        result = await self.db.execute(
            select(FraudLogEntry)
            .where(FraudLogEntry.user_id == user_id)
            .order_by(FraudLogEntry.created_at.desc(), FraudLogEntry.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_latest_signup_log(self, user_id: str) -> Optional[FraudLogEntry]:
        result = await self.db.execute(
            select(FraudLogEntry)
            .where(
                FraudLogEntry.user_id == user_id,
                FraudLogEntry.event_type == FraudEventType.SIGNUP_ATTEMPT.value
            )
            .order_by(FraudLogEntry.created_at.desc(), FraudLogEntry.id.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def check_fraud_risk(
        self,
        referrer_id: str,
        referred_user_id: str,
        current_ip: Optional[str],
        current_device: str
    ) -> FraudCheckResult:
        """
        Decide whether a referrer and a referred user look correlated

        Missing data on either side resolves to "not fraudulent". An IP match
        is only considered when the current request carries an IP. IP and
        device matches are reported as distinct reasons, IP first.
        """
        referrer_logs = await self.get_recent_logs(
            referrer_id, min(settings.AFFILIATE_FRAUD_LOOKBACK, 10)
        )
        referred_log = await self.get_latest_signup_log(referred_user_id)

        if not referrer_logs or referred_log is None:
            return FraudCheckResult(is_fraudulent=False)

        if current_ip and referred_log.ip_address is not None and any(
            log.ip_address == referred_log.ip_address for log in referrer_logs
        ):
            return FraudCheckResult(is_fraudulent=True, reason=IP_MATCH_REASON)

        if any(log.device_id == referred_log.device_id for log in referrer_logs):
            return FraudCheckResult(is_fraudulent=True, reason=DEVICE_MATCH_REASON)

        return FraudCheckResult(is_fraudulent=False)

    async def log_fraud_attempt(
        self,
        user_id: str,
        event_type: str,
        ip_address: Optional[str],
        device_id: str,
        is_flagged: bool = False,
        metadata: Optional[Dict[str, Any]] = None
    ) -> FraudLogEntry:
        """Append an observation to the fraud log"""
        entry = FraudLogEntry(
            user_id=user_id,
            ip_address=ip_address,
            device_id=device_id,
            event_type=event_type,
            is_flagged=is_flagged,
            details=metadata or {}
        )
        self.db.add(entry)
        await self.db.flush()

        if is_flagged:
            logger.warning(f"Flagged {event_type} for user {user_id}: {entry.details.get('reason')}")
        return entry

    async def log_signup_attempt(self, headers: Mapping[str, str], user_id: str) -> FraudLogEntry:
        """Record the network identity a user signed up with"""
        client = ClientContext.from_headers(headers)
        return await self.log_fraud_attempt(
            user_id,
            FraudEventType.SIGNUP_ATTEMPT.value,
            client.ip_address,
            client.device_id,
            is_flagged=False,
            metadata={
                "user_agent": headers.get("user-agent") or "",
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        )

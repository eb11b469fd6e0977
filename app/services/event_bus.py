"""In-process domain event bus for affiliate state changes"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Type
import logging

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class DomainEvent:
    occurred_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc), kw_only=True
    )

@dataclass(frozen=True)
class ReferralConverted(DomainEvent):
    referral_id: str
    referrer_id: str
    referred_user_id: str

@dataclass(frozen=True)
class CommissionAwarded(DomainEvent):
    referrer_id: str
    referred_user_id: str
    amount: Decimal
    transaction_reference: str

Handler = Callable[[DomainEvent], Awaitable[None]]

class EventBus:
    """
    Fan-out of committed domain events to subscribers

    Publishing happens after the state change is committed, so a failing
    subscriber is logged and never undoes or fails the publisher's work.
    """

    def __init__(self):
        self._handlers: Dict[Type[DomainEvent], List[Handler]] = {}

    def subscribe(self, event_type: Type[DomainEvent], handler: Handler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    async def publish(self, event: DomainEvent) -> None:
        for handler in list(self._handlers.get(type(event), [])):
            try:
                await handler(event)
            except Exception:
                logger.exception(f"Subscriber {handler!r} failed for {type(event).__name__}")

# Global event bus instance
event_bus = EventBus()

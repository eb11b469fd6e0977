"""Services package"""

from .event_bus import EventBus, event_bus
from .fraud_detection import FraudDetectionService

__all__ = [
    "EventBus",
    "event_bus",
    "FraudDetectionService",
]

"""Models package initialization"""

from .base import Base
from .event import CampaignEvent, EventStatus
from .discount import DiscountInstrumentRecord, InstrumentRedemption

# Export all models
__all__ = [
    "Base",
    "CampaignEvent",
    "EventStatus",
    "DiscountInstrumentRecord",
    "InstrumentRedemption",
]

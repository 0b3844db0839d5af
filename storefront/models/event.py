"""
Campaign event models
"""

from sqlalchemy import Column, String, Integer, Text, Index, CheckConstraint, DateTime
from sqlalchemy.orm import relationship
import enum

from .base import Base, TimestampedModel, UUIDModel

class EventStatus(str, enum.Enum):
    """Campaign event lifecycle"""
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"

class CampaignEvent(Base, UUIDModel, TimestampedModel):
    """Seasonal, holiday and flash sale campaigns grouping discounts"""

    __tablename__ = "campaign_events"

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    event_type = Column(String(30), nullable=False, default="promotional")  # seasonal, holiday, promotional, flash_sale, loyalty_boost, custom

    # Timing
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)

    # Status
    status = Column(String(20), nullable=False, default=EventStatus.DRAFT.value)
    priority = Column(Integer, nullable=False, default=1)
    target_audience = Column(String(30), nullable=False, default="all")

    # Relationships
    instruments = relationship("DiscountInstrumentRecord", back_populates="event")

    __table_args__ = (
        CheckConstraint("end_date > start_date", name="check_valid_event_period"),
        CheckConstraint("priority >= 1 AND priority <= 10", name="check_event_priority_range"),
        Index("idx_campaign_events_status_time", "status", "start_date", "end_date"),
    )

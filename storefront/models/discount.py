"""
Discount instrument models
Coupons, special offers and event discounts share one table
"""

from sqlalchemy import Column, String, Integer, Numeric, Boolean, ForeignKey, Index, CheckConstraint, Text, DateTime, JSON, Uuid
from sqlalchemy.orm import relationship

from .base import Base, TimestampedModel, UUIDModel

class DiscountInstrumentRecord(Base, UUIDModel, TimestampedModel):
    """Persisted discount instrument of any kind"""

    __tablename__ = "discount_instruments"

    code = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    kind = Column(String(20), nullable=False, default="coupon")  # coupon, special_offer, event_discount

    # Discount details
    discount_type = Column(String(20), nullable=False)  # percentage, fixed_amount, free_shipping, buy_one_get_one
    value = Column(Numeric(10, 2), nullable=False)

    # Conditions
    min_order_amount = Column(Numeric(10, 2), nullable=False, default=0)
    max_discount_amount = Column(Numeric(10, 2), nullable=True)

    # Validity
    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=False)

    # Usage limits
    usage_limit = Column(Integer, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)
    per_user_limit = Column(Integer, nullable=True)

    # Targeting
    target_user_groups = Column(JSON, nullable=False, default=list)
    target_categories = Column(JSON, nullable=False, default=list)
    excluded_products = Column(JSON, nullable=False, default=list)

    # Status
    is_active = Column(Boolean, nullable=False, default=True)
    stackable = Column(Boolean, nullable=False, default=False)

    # Campaign and spin wheel integration
    event_id = Column(Uuid(as_uuid=True), ForeignKey("campaign_events.id"), nullable=True, index=True)
    auto_activate = Column(Boolean, nullable=False, default=True)  # switched on when its event activates
    is_spin_generated = Column(Boolean, nullable=False, default=False)
    generated_for = Column(String(64), nullable=True)

    # Relationships
    event = relationship("CampaignEvent", back_populates="instruments")
    redemptions = relationship("InstrumentRedemption", back_populates="instrument")

    # Constraints
    __table_args__ = (
        CheckConstraint("value >= 0", name="check_non_negative_value"),
        CheckConstraint(
            "discount_type != 'percentage' OR value <= 100",
            name="check_percentage_range"
        ),
        CheckConstraint("valid_until > valid_from", name="check_valid_window"),
        CheckConstraint("min_order_amount >= 0", name="check_non_negative_min_order"),
        CheckConstraint(
            "max_discount_amount IS NULL OR max_discount_amount > 0",
            name="check_positive_max_discount"
        ),
        CheckConstraint("usage_limit IS NULL OR usage_limit > 0", name="check_positive_usage_limit"),
        CheckConstraint(
            "usage_limit IS NULL OR usage_count <= usage_limit",
            name="check_usage_within_limit"
        ),
        Index("idx_discount_instruments_active_valid", "is_active", "valid_from", "valid_until"),
    )

    def to_instrument(self):
        """Convert the row into an engine instrument"""
        from storefront.schemas.discount import DiscountInstrument

        return DiscountInstrument(
            id=str(self.id),
            code=self.code,
            name=self.name,
            kind=self.kind,
            discount_type=self.discount_type,
            value=self.value,
            min_order_amount=self.min_order_amount or 0,
            max_discount_amount=self.max_discount_amount,
            valid_from=self.valid_from,
            valid_until=self.valid_until,
            usage_limit=self.usage_limit,
            usage_count=self.usage_count or 0,
            per_user_limit=self.per_user_limit,
            target_user_groups=self.target_user_groups or [],
            target_categories=self.target_categories or [],
            excluded_products=self.excluded_products or [],
            is_active=self.is_active,
            stackable=self.stackable,
            event_id=str(self.event_id) if self.event_id else None,
        )

class InstrumentRedemption(Base, UUIDModel, TimestampedModel):
    """Track instrument redemptions by users"""

    __tablename__ = "instrument_redemptions"

    instrument_id = Column(Uuid(as_uuid=True), ForeignKey("discount_instruments.id"), nullable=False)
    user_id = Column(String(64), nullable=False)
    order_id = Column(String(64), nullable=True)

    # Discount applied
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)

    # Relationships
    instrument = relationship("DiscountInstrumentRecord", back_populates="redemptions")

    # Indexes
    __table_args__ = (
        Index("idx_instrument_redemptions_instrument_user", "instrument_id", "user_id"),
        Index("idx_instrument_redemptions_order", "order_id"),
    )

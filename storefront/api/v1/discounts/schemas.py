"""
Discount schemas for request/response validation
"""

from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Dict
from datetime import datetime
from decimal import Decimal
import uuid

from storefront.schemas.discount import CartLine, CheckoutContext, DiscountKind, DiscountType

class CheckoutRequest(BaseModel):
    """Cart being priced"""
    subtotal: Decimal = Field(..., ge=0)
    cart_lines: List[CartLine] = Field(default_factory=list)
    user_id: Optional[str] = Field(None, max_length=64)
    user_segment: Optional[str] = Field(None, max_length=50)

    def to_context(self, now: datetime) -> CheckoutContext:
        return CheckoutContext(
            subtotal=self.subtotal,
            cart_lines=tuple(self.cart_lines),
            user_id=self.user_id,
            user_segment=self.user_segment,
            now=now
        )

class ValidateCodeRequest(CheckoutRequest):
    """Request to validate a single discount code"""
    code: str = Field(..., min_length=3, max_length=50)

class ValidateCodeResponse(BaseModel):
    """Result of validating a discount code"""
    valid: bool
    code: Optional[str] = None
    discount_amount: Decimal = Decimal("0.00")
    free_shipping: bool = False
    message: Optional[str] = None

class RedeemRequest(CheckoutRequest):
    """Redeem the best selection for a finalized order"""
    order_id: str = Field(..., min_length=1, max_length=64)

class SelectionResponse(BaseModel):
    """Discounts selected for a cart"""
    instrument_ids: List[str]
    discounts: Dict[str, Decimal]
    total_discount: Decimal
    free_shipping: bool
    free_shipping_instrument_id: Optional[str] = None
    subtotal: Decimal
    total: Decimal

class InstrumentCreate(BaseModel):
    """Schema for creating a discount instrument"""
    code: str = Field(..., min_length=3, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    kind: DiscountKind = DiscountKind.COUPON
    discount_type: DiscountType
    value: Decimal
    min_order_amount: Decimal = Decimal("0")
    max_discount_amount: Optional[Decimal] = None
    valid_from: datetime
    valid_until: datetime
    usage_limit: Optional[int] = None
    per_user_limit: Optional[int] = None
    target_user_groups: List[str] = Field(default_factory=list)
    target_categories: List[str] = Field(default_factory=list)
    excluded_products: List[str] = Field(default_factory=list)
    is_active: bool = True
    stackable: bool = False
    event_id: Optional[uuid.UUID] = None
    auto_activate: bool = True

class InstrumentResponse(BaseModel):
    """Schema for discount instrument response"""
    id: str
    code: Optional[str] = None
    name: Optional[str] = None
    kind: DiscountKind
    discount_type: DiscountType
    value: Decimal
    min_order_amount: Decimal
    max_discount_amount: Optional[Decimal] = None
    valid_from: datetime
    valid_until: datetime
    usage_limit: Optional[int] = None
    usage_count: int
    per_user_limit: Optional[int] = None
    is_active: bool
    stackable: bool

    class Config:
        from_attributes = True

class SpinCouponRequest(BaseModel):
    """Request to issue a spin wheel reward coupon"""
    user_id: str = Field(..., min_length=1, max_length=64)
    discount_percent: Decimal = Field(..., gt=0, le=100)

class EventCreate(BaseModel):
    """Schema for creating a campaign event"""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    event_type: str = Field(
        "promotional",
        pattern="^(seasonal|holiday|promotional|flash_sale|loyalty_boost|custom)$"
    )
    start_date: datetime
    end_date: datetime
    priority: int = Field(1, ge=1, le=10)
    target_audience: str = Field("all", pattern="^(all|new_users|returning|vip|specific)$")

    @model_validator(mode="after")
    def check_period(self):
        if self.start_date >= self.end_date:
            raise ValueError("Start date must be before end date")
        return self

class EventStatusResponse(BaseModel):
    """Campaign event after an activation change"""
    event_id: uuid.UUID
    status: str
    instruments_updated: int

"""
Discount engine schemas
Instruments, checkout context and resolution results
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, List, Dict, FrozenSet, Tuple
from datetime import datetime
from decimal import Decimal
import enum

from storefront.core.exceptions import InvalidInstrumentConfig
from storefront.utils.helpers import ensure_utc

ZERO = Decimal("0.00")

class DiscountKind(str, enum.Enum):
    """Where an instrument comes from"""
    COUPON = "coupon"
    SPECIAL_OFFER = "special_offer"
    EVENT_DISCOUNT = "event_discount"

class DiscountType(str, enum.Enum):
    """How an instrument's value is applied"""
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    FREE_SHIPPING = "free_shipping"
    BUY_ONE_GET_ONE = "buy_one_get_one"

class DiscountInstrument(BaseModel):
    """
    A coupon, special offer or event discount in one shape

    Construction enforces the configuration invariants and raises
    InvalidInstrumentConfig on violation. ``is_active`` is only the manual
    kill-switch; validity for a checkout is computed by the engine.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    kind: DiscountKind = DiscountKind.COUPON
    discount_type: DiscountType
    value: Decimal
    min_order_amount: Decimal = ZERO
    max_discount_amount: Optional[Decimal] = None

    valid_from: datetime
    valid_until: datetime

    usage_limit: Optional[int] = None
    usage_count: int = 0
    per_user_limit: Optional[int] = None

    target_user_groups: FrozenSet[str] = frozenset()
    target_categories: FrozenSet[str] = frozenset()
    excluded_products: FrozenSet[str] = frozenset()

    is_active: bool = True
    stackable: bool = False

    # Descriptive
    code: Optional[str] = None
    name: Optional[str] = None
    event_id: Optional[str] = None

    @field_validator("valid_from", "valid_until")
    @classmethod
    def normalize_timezone(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_validator("code")
    @classmethod
    def uppercase_code(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v else v

    @model_validator(mode="after")
    def check_invariants(self):
        if self.valid_from >= self.valid_until:
            raise InvalidInstrumentConfig("valid_from must be before valid_until")

        if self.value < 0:
            raise InvalidInstrumentConfig("Discount value cannot be negative")

        if self.discount_type == DiscountType.PERCENTAGE and self.value > 100:
            raise InvalidInstrumentConfig("Percentage discount must be between 0 and 100")

        if self.min_order_amount < 0:
            raise InvalidInstrumentConfig("Minimum order amount cannot be negative")

        if self.max_discount_amount is not None and self.max_discount_amount <= 0:
            raise InvalidInstrumentConfig("Maximum discount amount must be greater than 0")

        if self.usage_count < 0:
            raise InvalidInstrumentConfig("Usage count cannot be negative")

        if self.usage_limit is not None:
            if self.usage_limit <= 0:
                raise InvalidInstrumentConfig("Usage limit must be greater than 0")
            if self.usage_count > self.usage_limit:
                raise InvalidInstrumentConfig("Usage count exceeds usage limit")

        if self.per_user_limit is not None and self.per_user_limit <= 0:
            raise InvalidInstrumentConfig("Per-user limit must be greater than 0")

        return self

    @property
    def is_exhausted(self) -> bool:
        """True once every allowed redemption has been used"""
        return self.usage_limit is not None and self.usage_count >= self.usage_limit

class CartLine(BaseModel):
    """Single cart line as seen by the engine"""

    model_config = ConfigDict(frozen=True)

    product_id: str
    category: Optional[str] = None
    amount: Decimal = Field(..., ge=0)
    quantity: int = Field(1, gt=0)

    @property
    def unit_price(self) -> Decimal:
        return self.amount / self.quantity

class CheckoutContext(BaseModel):
    """Everything the engine needs to know about one checkout"""

    model_config = ConfigDict(frozen=True)

    subtotal: Decimal = Field(..., ge=0)
    cart_lines: Tuple[CartLine, ...] = ()
    user_id: Optional[str] = None
    user_segment: Optional[str] = None
    now: datetime
    prior_redemptions_by_user: Dict[str, int] = Field(default_factory=dict)

    @field_validator("now")
    @classmethod
    def normalize_timezone(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def redemptions_of(self, instrument_id: str) -> int:
        """How many times this user already redeemed the instrument"""
        return self.prior_redemptions_by_user.get(instrument_id, 0)

class DiscountOutcome(BaseModel):
    """Result of computing one instrument against a checkout"""

    model_config = ConfigDict(frozen=True)

    instrument_id: str
    amount: Decimal = ZERO
    free_shipping: bool = False

class SelectionResult(BaseModel):
    """Instruments chosen for a checkout and their combined effect"""

    instrument_ids: List[str] = Field(default_factory=list)
    discounts: Dict[str, Decimal] = Field(default_factory=dict)
    total_discount: Decimal = ZERO
    free_shipping: bool = False
    free_shipping_instrument_id: Optional[str] = None

    @classmethod
    def empty(cls) -> "SelectionResult":
        """No applicable instrument, checkout proceeds without discount"""
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.instrument_ids

    @property
    def redeemable_ids(self) -> List[str]:
        """Selected instruments that take money off or waive shipping"""
        return [
            instrument_id for instrument_id in self.instrument_ids
            if self.discounts.get(instrument_id, ZERO) > 0
            or instrument_id == self.free_shipping_instrument_id
        ]

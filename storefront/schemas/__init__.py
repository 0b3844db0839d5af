"""Schemas package"""

from .discount import (
    DiscountKind,
    DiscountType,
    DiscountInstrument,
    CartLine,
    CheckoutContext,
    DiscountOutcome,
    SelectionResult,
)

__all__ = [
    "DiscountKind",
    "DiscountType",
    "DiscountInstrument",
    "CartLine",
    "CheckoutContext",
    "DiscountOutcome",
    "SelectionResult",
]

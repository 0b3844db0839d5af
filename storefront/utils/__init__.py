"""Utilities package"""

from .helpers import to_decimal, round_money, floor_money, ensure_utc, format_currency, generate_coupon_code

__all__ = [
    "to_decimal",
    "round_money",
    "floor_money",
    "ensure_utc",
    "format_currency",
    "generate_coupon_code",
]

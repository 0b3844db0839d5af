"""
Helper utilities
"""

import random
import string
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from datetime import datetime, timezone
from typing import Union

CENT = Decimal("0.01")

def to_decimal(value: Union[Decimal, int, float, str]) -> Decimal:
    """Coerce a numeric value to Decimal without binary float noise"""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))

def round_money(amount: Decimal) -> Decimal:
    """
    Round a monetary amount to 2 decimal places, half up

    Args:
        amount: Unrounded amount

    Returns:
        Amount quantized to cents
    """
    return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)

def floor_money(amount: Decimal) -> Decimal:
    """Largest whole-cent amount not above the given one"""
    return to_decimal(amount).quantize(CENT, rounding=ROUND_DOWN)

def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def format_currency(amount: Decimal, currency: str = "INR") -> str:
    """
    Format amount as currency

    Args:
        amount: Amount to format
        currency: Currency code

    Returns:
        Formatted currency string
    """
    if currency == "INR":
        return f"₹{round_money(amount)}"
    return f"{currency} {round_money(amount)}"

def generate_coupon_code(prefix: str = "SPIN", now: datetime = None) -> str:
    """Generate unique coupon code from a timestamp and random suffix"""
    now = now or datetime.now(timezone.utc)
    timestamp = now.strftime('%Y%m%d%H%M%S')
    random_suffix = ''.join(random.choices(string.ascii_uppercase + string.digits, k=4))

    return f"{prefix}{timestamp}{random_suffix}"

"""
Discount resolution engine
Decides which instruments apply to a checkout and how much they take off

All functions here are pure: the clock comes from the checkout context and
nothing is read from or written to a store.
"""

from typing import Iterable, List, Optional, Tuple
from decimal import Decimal
import logging

from storefront.core.config import settings
from storefront.schemas.discount import (
    CartLine,
    CheckoutContext,
    DiscountInstrument,
    DiscountOutcome,
    DiscountType,
    SelectionResult,
    ZERO,
)
from storefront.utils.helpers import floor_money, format_currency, round_money

logger = logging.getLogger(__name__)

UNRESTRICTED_GROUP = "all"

def qualifying_lines(
    instrument: DiscountInstrument,
    context: CheckoutContext
) -> List[CartLine]:
    """Cart lines inside the instrument's category scope and not excluded"""
    return [
        line for line in context.cart_lines
        if (not instrument.target_categories or line.category in instrument.target_categories)
        and line.product_id not in instrument.excluded_products
    ]

def explain_invalid(
    instrument: DiscountInstrument,
    context: CheckoutContext
) -> Optional[str]:
    """
    Check every validity rule in order

    Args:
        instrument: Candidate instrument
        context: Checkout being priced

    Returns:
        Message for the first failing rule, or None when the instrument is valid
    """
    if not instrument.is_active:
        return "This discount is no longer active"

    if context.now < instrument.valid_from:
        return "This discount is not yet active"

    if context.now > instrument.valid_until:
        return "This discount has expired"

    if instrument.is_exhausted:
        return "This discount has reached its usage limit"

    if (
        instrument.per_user_limit is not None
        and context.redemptions_of(instrument.id) >= instrument.per_user_limit
    ):
        return "You have already used this discount the maximum number of times"

    if context.subtotal < instrument.min_order_amount:
        return (
            f"Minimum order amount of "
            f"{format_currency(instrument.min_order_amount, settings.DISCOUNT_CURRENCY)} required"
        )

    groups = instrument.target_user_groups
    if groups and UNRESTRICTED_GROUP not in groups and context.user_segment not in groups:
        return "This discount is not available for your account"

    if instrument.target_categories and not qualifying_lines(instrument, context):
        return "No items in your cart qualify for this discount"

    return None

def is_valid(instrument: DiscountInstrument, context: CheckoutContext) -> bool:
    """True iff the instrument may be applied to this checkout"""
    return explain_invalid(instrument, context) is None

def compute_discount(
    instrument: DiscountInstrument,
    context: CheckoutContext
) -> DiscountOutcome:
    """
    Calculate the discount an instrument gives on a checkout

    The caller must check validity first; this function does not. The
    amount is rounded half up to cents once, at the end.

    Args:
        instrument: A valid instrument
        context: Checkout being priced

    Returns:
        Monetary amount and free shipping flag
    """
    subtotal = context.subtotal
    free_shipping = False

    if instrument.discount_type == DiscountType.PERCENTAGE:
        amount = subtotal * instrument.value / 100

    elif instrument.discount_type == DiscountType.FIXED_AMOUNT:
        amount = min(instrument.value, subtotal)

    elif instrument.discount_type == DiscountType.FREE_SHIPPING:
        # Shipping cost belongs to the order service
        amount = ZERO
        free_shipping = True

    else:  # buy one get one
        lines = qualifying_lines(instrument, context)
        if len(lines) < 2:
            amount = ZERO
        else:
            amount = min(line.unit_price for line in lines)

    # Bounds are whole cents so the rounded amount can never pass them
    amount = min(round_money(max(ZERO, amount)), floor_money(subtotal))
    if (
        instrument.discount_type == DiscountType.PERCENTAGE
        and instrument.max_discount_amount is not None
    ):
        amount = min(amount, floor_money(instrument.max_discount_amount))

    return DiscountOutcome(
        instrument_id=instrument.id,
        amount=amount,
        free_shipping=free_shipping
    )

def _expiry_key(instrument: DiscountInstrument) -> Tuple:
    # Soonest-expiring first, then id for determinism
    return (instrument.valid_until, instrument.id)

def resolve(
    instruments: Iterable[DiscountInstrument],
    context: CheckoutContext
) -> SelectionResult:
    """
    Select the instruments that apply to a checkout

    Invalid instruments are dropped silently. If any valid instrument is
    non-stackable, only the best non-stackable one is used, even when it
    computes to nothing; otherwise all stackable instruments apply, each
    computed against the original subtotal, and their sum is capped at the
    subtotal. At most one free shipping instrument is honoured alongside the
    monetary selection.

    Args:
        instruments: Candidate instruments
        context: Checkout being priced

    Returns:
        Selection with total discount and free shipping flag
    """
    valid = []
    for instrument in instruments:
        reason = explain_invalid(instrument, context)
        if reason is None:
            valid.append(instrument)
        else:
            logger.debug(f"Discount {instrument.id} rejected: {reason}")

    if not valid:
        return SelectionResult.empty()

    shipping = sorted(
        (i for i in valid if i.discount_type == DiscountType.FREE_SHIPPING),
        key=_expiry_key
    )

    priced = [
        (instrument, compute_discount(instrument, context).amount)
        for instrument in valid
        if instrument.discount_type != DiscountType.FREE_SHIPPING
    ]
    priced.sort(key=lambda pair: (-pair[1], pair[0].valid_until, pair[0].id))

    exclusive = [pair for pair in priced if not pair[0].stackable]
    if exclusive:
        chosen = exclusive[:1]
    else:
        chosen = priced

    discounts = {instrument.id: amount for instrument, amount in chosen}
    total = min(sum(discounts.values(), ZERO), floor_money(context.subtotal))

    result = SelectionResult(
        instrument_ids=[instrument.id for instrument, _ in chosen],
        discounts=discounts,
        total_discount=round_money(total),
    )

    if shipping:
        winner = shipping[0]
        result.instrument_ids.append(winner.id)
        result.discounts[winner.id] = ZERO
        result.free_shipping = True
        result.free_shipping_instrument_id = winner.id

    return result

def available_instruments(
    instruments: Iterable[DiscountInstrument],
    context: CheckoutContext
) -> List[DiscountInstrument]:
    """Valid instruments for a checkout, soonest-expiring first"""
    return sorted(
        (i for i in instruments if is_valid(i, context)),
        key=_expiry_key
    )

def total_after_discount(subtotal: Decimal, selection: SelectionResult) -> Decimal:
    """Order subtotal after the selection's monetary discount"""
    return round_money(max(ZERO, subtotal - selection.total_discount))

"""
Checkout pricing.

price() is evaluated once when the PayTR token is requested and its result is
frozen into the pending payment. Everything downstream (the charge, the order,
the invoice) reads those frozen figures.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from storefront.config import get_settings

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """Coerce str/int/Decimal to a 2-place Decimal."""
    if isinstance(value, float):
        value = repr(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """2700.00 -> 270000 (kuruş). PayTR only accepts integers."""
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    discount_amount: Decimal
    shipping_cost: Decimal
    total: Decimal


def price(
    subtotal: Decimal,
    discount: Decimal,
    item_count: Optional[int] = None,
    free_shipping_threshold: Optional[Decimal] = None,
    flat_shipping_fee: Optional[Decimal] = None,
) -> PriceBreakdown:
    """
    Combine subtotal, discount and the shipping rule into the amount to charge.

    Shipping is free when the pre-discount subtotal reaches the threshold,
    otherwise a flat fee. The discount is clamped to the subtotal and the
    total is never negative. When item_count is given it must be positive:
    there is no price for an empty cart.
    """
    settings = get_settings()
    threshold = to_money(free_shipping_threshold if free_shipping_threshold is not None else settings.FREE_SHIPPING_THRESHOLD)
    flat_fee = to_money(flat_shipping_fee if flat_shipping_fee is not None else settings.FLAT_SHIPPING_FEE)

    subtotal = to_money(subtotal)
    discount = min(max(to_money(discount), ZERO), subtotal)

    if item_count is not None and item_count <= 0:
        raise ValueError("Cannot price an empty cart")

    if subtotal >= threshold:
        shipping_cost = ZERO
    else:
        shipping_cost = flat_fee

    total = max(ZERO, subtotal - discount + shipping_cost)
    return PriceBreakdown(
        subtotal=subtotal,
        discount_amount=discount,
        shipping_cost=shipping_cost,
        total=total,
    )

"""
Tests for checkout pricing: shipping rule, discount clamping and minor units.
"""

from decimal import Decimal

import pytest

from storefront.services.pricing import price, to_minor_units, to_money


THRESHOLD = Decimal("2500.00")
FEE = Decimal("49.90")


def _price(subtotal, discount="0", **kwargs):
    return price(
        Decimal(subtotal),
        Decimal(discount),
        free_shipping_threshold=THRESHOLD,
        flat_shipping_fee=FEE,
        **kwargs,
    )


class TestShipping:

    def test_below_threshold_pays_flat_fee(self):
        result = _price("2499.99")
        assert result.shipping_cost == FEE
        assert result.total == Decimal("2549.89")

    def test_threshold_is_inclusive(self):
        result = _price("2500.00")
        assert result.shipping_cost == Decimal("0.00")
        assert result.total == Decimal("2500.00")

    def test_threshold_uses_pre_discount_subtotal(self):
        """A discount that takes the total under the threshold keeps free shipping."""
        result = _price("3000.00", "600.00")
        assert result.shipping_cost == Decimal("0.00")
        assert result.total == Decimal("2400.00")

    def test_defaults_come_from_settings(self):
        result = price(Decimal("100.00"), Decimal("0"))
        assert result.shipping_cost == FEE


class TestDiscount:

    def test_example_checkout(self):
        """3000.00 with a 10% coupon is charged 2700.00, i.e. 270000 kuruş."""
        result = _price("3000.00", "300.00")
        assert result == result.__class__(
            subtotal=Decimal("3000.00"),
            discount_amount=Decimal("300.00"),
            shipping_cost=Decimal("0.00"),
            total=Decimal("2700.00"),
        )
        assert to_minor_units(result.total) == 270000

    def test_discount_clamped_to_subtotal(self):
        result = _price("300.00", "500.00")
        assert result.discount_amount == Decimal("300.00")
        assert result.total == FEE

    def test_negative_discount_ignored(self):
        result = _price("3000.00", "-50")
        assert result.discount_amount == Decimal("0.00")
        assert result.total == Decimal("3000.00")

    def test_total_never_negative(self):
        result = price(Decimal("10.00"), Decimal("10.00"), free_shipping_threshold=Decimal("0"), flat_shipping_fee=FEE)
        assert result.total == Decimal("0.00")


def test_pricing_is_deterministic():
    assert _price("1234.56", "12.34") == _price("1234.56", "12.34")


def test_empty_cart_cannot_be_priced():
    with pytest.raises(ValueError):
        _price("0", item_count=0)


@pytest.mark.parametrize("amount,minor", [
    ("2700.00", 270000),
    ("49.90", 4990),
    ("0.01", 1),
    ("19.999", 2000),
])
def test_minor_units(amount, minor):
    assert to_minor_units(Decimal(amount)) == minor


def test_to_money_accepts_strings_and_floats():
    assert to_money("10") == Decimal("10.00")
    assert to_money(0.1) == Decimal("0.10")

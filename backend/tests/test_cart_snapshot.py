"""
Tests for the Cart Snapshot Reader: authoritative prices, variant-first
product resolution and dead lines.
"""

from decimal import Decimal

import pytest
from sqlalchemy import delete

from storefront.models import Product, ProductVariant
from storefront.services.cart_snapshot import CartLine, CartSnapshotReader, cart_subtotal


async def _read(session_factory, session_id="sess-1"):
    async with session_factory() as session:
        return await CartSnapshotReader(session).read(session_id)


@pytest.mark.asyncio
async def test_empty_cart(session_factory):
    assert await _read(session_factory) == []


@pytest.mark.asyncio
async def test_variant_price_overrides_base_price(seed, session_factory):
    product, (variant,) = await seed.product(
        "Oversize Hoodie",
        Decimal("1500.00"),
        variants=[{"size": "M", "color": "Siyah", "price": Decimal("1750.00")}],
    )
    await seed.cart_line("sess-1", product, variant, quantity=2)

    (line,) = await _read(session_factory)

    assert line.unit_price == Decimal("1750.00")
    assert line.line_total == Decimal("3500.00")
    assert line.variant_id == variant.id
    assert line.product_name == "Oversize Hoodie"
    assert line.variant_details == "M Siyah"


@pytest.mark.asyncio
async def test_product_without_variant_uses_base_price(seed, session_factory):
    product, _ = await seed.product("Beanie", Decimal("350.00"))
    await seed.cart_line("sess-1", product, quantity=3)

    lines = await _read(session_factory)

    assert lines[0].unit_price == Decimal("350.00")
    assert lines[0].variant_id is None
    assert cart_subtotal(lines) == Decimal("1050.00")


@pytest.mark.asyncio
async def test_variant_product_is_authoritative(seed, session_factory):
    """A cart line pointing at the wrong product resolves through its variant."""
    wrong, _ = await seed.product("Cheap Tee", Decimal("10.00"))
    real, (variant,) = await seed.product("Leather Jacket", Decimal("4000.00"), variants=[{"size": "L"}])
    await seed.cart_line("sess-1", wrong, variant)

    (line,) = await _read(session_factory)

    assert line.product_id == real.id
    assert line.product_name == "Leather Jacket"
    assert line.unit_price == Decimal("4000.00")


@pytest.mark.asyncio
async def test_lines_for_deleted_catalog_entries_are_skipped(seed, session_factory):
    keep, _ = await seed.product("Cap", Decimal("200.00"))
    gone, (gone_variant,) = await seed.product("Discontinued", Decimal("900.00"), variants=[{"size": "S"}])
    await seed.cart_line("sess-1", keep)
    await seed.cart_line("sess-1", gone, gone_variant)

    async with session_factory() as session:
        await session.execute(delete(ProductVariant).where(ProductVariant.id == gone_variant.id))
        await session.execute(delete(Product).where(Product.id == gone.id))
        await session.commit()

    lines = await _read(session_factory)

    assert [line.product_name for line in lines] == ["Cap"]


@pytest.mark.asyncio
async def test_carts_are_isolated_by_session(seed, session_factory):
    product, _ = await seed.product("Cap", Decimal("200.00"))
    await seed.cart_line("sess-other", product)

    assert await _read(session_factory, "sess-1") == []


def test_snapshot_keeps_exact_prices():
    line = CartLine(
        product_id="p1",
        variant_id="v1",
        quantity=2,
        unit_price=Decimal("1499.90"),
        product_name="Oversize Hoodie",
        variant_details="M Siyah",
    )

    data = line.to_snapshot()

    assert data["unit_price"] == "1499.90"
    assert CartLine.from_snapshot(data) == line

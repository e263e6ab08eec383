"""
Cart Snapshot Reader
====================

Turns a session cart into priced lines using the catalog as it is right now.
Client-displayed prices are never consulted.
"""

import logging
from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models import Product, ProductVariant
from storefront.services.cart import CartService
from storefront.services.pricing import to_money, ZERO

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CartLine:
    """A cart line re-resolved against the live catalog."""
    product_id: str
    variant_id: Optional[str]
    quantity: int
    unit_price: Decimal
    product_name: str
    variant_details: Optional[str]

    @property
    def line_total(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)

    def to_snapshot(self) -> dict:
        """JSON-safe dict frozen into PendingPayment.cart_items."""
        data = asdict(self)
        data["unit_price"] = str(self.unit_price)
        return data

    @classmethod
    def from_snapshot(cls, data: dict) -> "CartLine":
        return cls(
            product_id=data["product_id"],
            variant_id=data.get("variant_id"),
            quantity=int(data["quantity"]),
            unit_price=to_money(data["unit_price"]),
            product_name=data["product_name"],
            variant_details=data.get("variant_details"),
        )


def cart_subtotal(lines: List[CartLine]) -> Decimal:
    return sum((line.line_total for line in lines), ZERO)


class CartSnapshotReader:
    """
    Reads the session cart and resolves authoritative products and prices.

    When a line carries a variant, the product is looked up through the
    variant's own product_id rather than the product_id stored on the cart
    line. Lines whose product (or variant) no longer exists are skipped.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.carts = CartService(session)

    async def read(self, session_id: str) -> List[CartLine]:
        items = await self.carts.get_cart_items(session_id)
        lines: List[CartLine] = []

        for item in items:
            variant: Optional[ProductVariant] = None
            product_id = item.product_id

            if item.variant_id:
                variant = await self.session.get(ProductVariant, item.variant_id)
                if variant is None:
                    logger.info(f"Skipping cart line {item.id}: variant {item.variant_id} no longer exists")
                    continue
                product_id = variant.product_id

            product = await self.session.get(Product, product_id)
            if product is None:
                logger.info(f"Skipping cart line {item.id}: product {product_id} no longer exists")
                continue

            unit_price = variant.price if variant is not None else product.base_price
            lines.append(CartLine(
                product_id=product.id,
                variant_id=variant.id if variant is not None else None,
                quantity=item.quantity,
                unit_price=to_money(unit_price),
                product_name=product.name,
                variant_details=variant.description if variant is not None else None,
            ))

        return lines

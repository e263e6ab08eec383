"""
Cart storage for session carts.
"""

import logging
from typing import List, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models import CartItem

logger = logging.getLogger(__name__)


class CartService:
    """Data access for the session cart."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_cart_items(self, session_id: str) -> List[CartItem]:
        result = await self.session.execute(
            select(CartItem)
            .where(CartItem.session_id == session_id)
            .order_by(CartItem.created_at)
        )
        return list(result.scalars().all())

    async def get_cart_item(self, session_id: str, item_id: str) -> Optional[CartItem]:
        result = await self.session.execute(
            select(CartItem).where(CartItem.id == item_id, CartItem.session_id == session_id)
        )
        return result.scalar_one_or_none()

    async def add_to_cart(
        self,
        session_id: str,
        product_id: str,
        quantity: int = 1,
        variant_id: Optional[str] = None,
    ) -> CartItem:
        """Add a line, merging into an existing line for the same product/variant."""
        stmt = select(CartItem).where(
            CartItem.session_id == session_id,
            CartItem.product_id == product_id,
        )
        if variant_id:
            stmt = stmt.where(CartItem.variant_id == variant_id)
        else:
            stmt = stmt.where(CartItem.variant_id.is_(None))

        existing = (await self.session.execute(stmt)).scalar_one_or_none()
        if existing:
            existing.quantity += quantity
            await self.session.flush()
            return existing

        item = CartItem(
            session_id=session_id,
            product_id=product_id,
            variant_id=variant_id,
            quantity=quantity,
        )
        self.session.add(item)
        await self.session.flush()
        return item

    async def update_quantity(self, session_id: str, item_id: str, quantity: int) -> Optional[CartItem]:
        item = await self.get_cart_item(session_id, item_id)
        if item:
            item.quantity = quantity
            await self.session.flush()
        return item

    async def remove(self, session_id: str, item_id: str) -> None:
        await self.session.execute(
            delete(CartItem).where(CartItem.id == item_id, CartItem.session_id == session_id)
        )

    async def clear_cart(self, session_id: str) -> int:
        result = await self.session.execute(
            delete(CartItem).where(CartItem.session_id == session_id)
        )
        logger.debug(f"Cleared {result.rowcount} cart lines for session {session_id[:8]}...")
        return result.rowcount

"""
Inventory Service
=================

Every change to ProductVariant.stock goes through here and is paired with a
StockAdjustment audit row in the same transaction.

Stock is read with SELECT ... FOR UPDATE (a no-op on SQLite, where the
transaction's write lock already serializes writers) and written with a
single clamped UPDATE, so concurrent sales of the same variant never lose
updates and stock never goes below zero.
"""

import logging
from enum import Enum
from typing import List, Optional

from sqlalchemy import select, update, case
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models import ProductVariant, StockAdjustment

logger = logging.getLogger(__name__)


class AdjustmentType(str, Enum):
    SALE = "sale"
    RETURN = "return"
    MANUAL = "manual"
    RESTOCK = "restock"


class VariantNotFoundError(Exception):
    """Raised when a stock change targets a variant that does not exist."""

    def __init__(self, variant_id: str):
        self.variant_id = variant_id
        super().__init__(f"Product variant {variant_id} not found")


class InventoryService:
    """Stock mutations with audit trail."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _locked_stock(self, variant_id: str) -> int:
        result = await self.session.execute(
            select(ProductVariant.stock)
            .where(ProductVariant.id == variant_id)
            .with_for_update()
        )
        stock = result.scalar_one_or_none()
        if stock is None:
            raise VariantNotFoundError(variant_id)
        return stock

    async def decrement_for_sale(
        self,
        variant_id: str,
        quantity: int,
        order_id: str,
        order_number: str,
    ) -> StockAdjustment:
        """Take quantity units out of stock for an order, floored at zero."""
        previous = await self._locked_stock(variant_id)

        await self.session.execute(
            update(ProductVariant)
            .where(ProductVariant.id == variant_id)
            .values(stock=case(
                (ProductVariant.stock > quantity, ProductVariant.stock - quantity),
                else_=0,
            ))
            .execution_options(synchronize_session=False)
        )
        new_stock = max(0, previous - quantity)

        if previous < quantity:
            logger.warning(
                f"Variant {variant_id} oversold on order {order_number}: "
                f"had {previous}, sold {quantity}; stock floored at 0"
            )

        return await self._record(
            variant_id=variant_id,
            adjustment_type=AdjustmentType.SALE,
            quantity=-quantity,
            previous_stock=previous,
            new_stock=new_stock,
            reason=f"Order {order_number}",
            order_id=order_id,
        )

    async def set_stock(
        self,
        variant_id: str,
        new_stock: int,
        reason: str,
        adjustment_type: AdjustmentType = AdjustmentType.MANUAL,
        author_id: Optional[str] = None,
    ) -> StockAdjustment:
        """Overwrite stock with an absolute value (admin correction, restock)."""
        new_stock = max(0, new_stock)
        previous = await self._locked_stock(variant_id)

        await self.session.execute(
            update(ProductVariant)
            .where(ProductVariant.id == variant_id)
            .values(stock=new_stock)
            .execution_options(synchronize_session=False)
        )

        return await self._record(
            variant_id=variant_id,
            adjustment_type=adjustment_type,
            quantity=new_stock - previous,
            previous_stock=previous,
            new_stock=new_stock,
            reason=reason,
            author_id=author_id,
        )

    async def _record(
        self,
        *,
        variant_id: str,
        adjustment_type: AdjustmentType,
        quantity: int,
        previous_stock: int,
        new_stock: int,
        reason: str,
        order_id: Optional[str] = None,
        author_id: Optional[str] = None,
    ) -> StockAdjustment:
        adjustment = StockAdjustment(
            variant_id=variant_id,
            order_id=order_id,
            author_id=author_id,
            adjustment_type=adjustment_type.value,
            quantity=quantity,
            previous_stock=previous_stock,
            new_stock=new_stock,
            reason=reason,
        )
        self.session.add(adjustment)
        await self.session.flush()
        return adjustment

    async def list_adjustments(self, variant_id: Optional[str] = None, limit: int = 200) -> List[StockAdjustment]:
        stmt = select(StockAdjustment).order_by(StockAdjustment.created_at.desc()).limit(limit)
        if variant_id:
            stmt = stmt.where(StockAdjustment.variant_id == variant_id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_low_stock(self, threshold: int = 5) -> List[ProductVariant]:
        result = await self.session.execute(
            select(ProductVariant)
            .where(ProductVariant.is_active.is_(True), ProductVariant.stock <= threshold)
            .order_by(ProductVariant.stock)
        )
        return list(result.scalars().all())

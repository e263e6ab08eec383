"""
Coupon Evaluator
================

Validates coupon codes and computes discounts server-side. The same
validate() call runs when the PayTR token is requested and again when the
order is materialized, because coupon state may change in between (for
example a competing checkout using up a single-use code).

Usage:
    evaluator = CouponEvaluator(session)
    result = await evaluator.validate("save10", Decimal("3000.00"), user_id=None)
    if result.valid:
        discount = result.discount_amount
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import select, func, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models import Coupon, CouponRedemption
from storefront.services.pricing import to_money, ZERO

logger = logging.getLogger(__name__)


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class CouponError(Exception):
    """Raised when a coupon cannot be applied or redeemed."""

    def __init__(self, code: str, reason: str):
        self.code = code
        self.reason = reason
        super().__init__(f"Coupon {code}: {reason}")


@dataclass
class CouponValidation:
    valid: bool
    coupon: Optional[Coupon] = None
    error: Optional[str] = None
    discount_amount: Decimal = ZERO


def normalize_code(code: str) -> str:
    return code.strip().upper()


def compute_discount(coupon: Coupon, subtotal: Decimal) -> Decimal:
    """Percentage or fixed discount, never more than the subtotal."""
    subtotal = to_money(subtotal)
    value = to_money(coupon.discount_value)

    if coupon.discount_type == DiscountType.PERCENTAGE.value:
        discount = to_money(subtotal * value / Decimal(100))
    else:
        discount = value

    return min(max(discount, ZERO), subtotal)


def compute_commission(coupon: Coupon, order_total: Decimal) -> Decimal:
    """Commission owed for one redemption under the coupon's current rule."""
    if not coupon.is_influencer or not coupon.commission_type or coupon.commission_value is None:
        return ZERO
    if coupon.commission_type == DiscountType.PERCENTAGE.value:
        return to_money(to_money(order_total) * to_money(coupon.commission_value) / Decimal(100))
    return to_money(coupon.commission_value)


class CouponEvaluator:
    """Coupon validation and redemption against the live coupon table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_code(self, code: str) -> Optional[Coupon]:
        result = await self.session.execute(
            select(Coupon).where(Coupon.code == normalize_code(code))
        )
        return result.scalar_one_or_none()

    async def count_user_redemptions(self, coupon_id: str, user_id: str) -> int:
        result = await self.session.execute(
            select(func.count(CouponRedemption.id)).where(
                CouponRedemption.coupon_id == coupon_id,
                CouponRedemption.user_id == user_id,
            )
        )
        return result.scalar() or 0

    async def validate(
        self,
        code: str,
        order_subtotal: Decimal,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CouponValidation:
        """
        Run the checks in order; the first failure short-circuits with a
        human-readable reason.
        """
        now = now or datetime.utcnow()
        subtotal = to_money(order_subtotal)

        coupon = await self.get_by_code(code) if code and code.strip() else None
        if coupon is None:
            return CouponValidation(valid=False, error="Coupon not found")

        if not coupon.is_active:
            return CouponValidation(valid=False, coupon=coupon, error="This coupon is no longer active")

        if coupon.starts_at is not None and coupon.starts_at > now:
            return CouponValidation(valid=False, coupon=coupon, error="This coupon is not valid yet")

        if coupon.expires_at is not None and coupon.expires_at < now:
            return CouponValidation(valid=False, coupon=coupon, error="This coupon has expired")

        if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
            return CouponValidation(valid=False, coupon=coupon, error="This coupon has reached its usage limit")

        if coupon.min_order_amount is not None and subtotal < to_money(coupon.min_order_amount):
            return CouponValidation(
                valid=False,
                coupon=coupon,
                error=f"Minimum order amount for this coupon is {to_money(coupon.min_order_amount)}",
            )

        if user_id and coupon.per_user_limit is not None:
            used = await self.count_user_redemptions(coupon.id, user_id)
            if used >= coupon.per_user_limit:
                return CouponValidation(valid=False, coupon=coupon, error="You have already used this coupon")

        return CouponValidation(
            valid=True,
            coupon=coupon,
            discount_amount=compute_discount(coupon, subtotal),
        )

    async def redeem(
        self,
        coupon: Coupon,
        order_id: str,
        discount_amount: Decimal,
        order_total: Decimal,
        user_id: Optional[str] = None,
    ) -> CouponRedemption:
        """
        Record a redemption and bump the usage counter in the caller's
        transaction.

        The increment is a conditional UPDATE so that concurrent redemptions
        of a limited coupon can never push usage_count past usage_limit.
        Raises CouponError when the limit was reached in the meantime.
        """
        commission = compute_commission(coupon, order_total)

        result = await self.session.execute(
            update(Coupon)
            .where(
                Coupon.id == coupon.id,
                or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
            )
            .values(
                usage_count=Coupon.usage_count + 1,
                commission_earned=Coupon.commission_earned + commission,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise CouponError(coupon.code, "usage limit reached")

        redemption = CouponRedemption(
            coupon_id=coupon.id,
            order_id=order_id,
            user_id=user_id,
            discount_amount=to_money(discount_amount),
            commission_type=coupon.commission_type if coupon.is_influencer else None,
            commission_value=coupon.commission_value if coupon.is_influencer else None,
            commission_amount=commission,
        )
        self.session.add(redemption)
        await self.session.flush()

        if commission > ZERO:
            logger.info(f"Coupon {coupon.code} accrued commission {commission} for order {order_id}")
        return redemption

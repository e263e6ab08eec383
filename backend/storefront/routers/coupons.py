"""
Coupon API Router.

Lets the checkout page preview a code. The discount is recomputed at token
time and again at materialization; nothing returned here is trusted later.
"""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.auth_middleware import get_optional_user_id
from storefront.database import get_db
from storefront.services.coupons import CouponEvaluator

router = APIRouter()


class ValidateCouponRequest(BaseModel):
    code: str
    order_total: Decimal = Field(..., ge=0)


class CouponSummary(BaseModel):
    code: str
    description: Optional[str]
    discount_type: str
    discount_value: Decimal

    class Config:
        from_attributes = True


class ValidateCouponResponse(BaseModel):
    valid: bool
    error: Optional[str] = None
    discount_amount: Optional[Decimal] = None
    coupon: Optional[CouponSummary] = None


@router.post("/validate", response_model=ValidateCouponResponse, response_model_exclude_none=True)
async def validate_coupon(
    body: ValidateCouponRequest,
    user_id: Optional[str] = Depends(get_optional_user_id),
    db: AsyncSession = Depends(get_db),
):
    result = await CouponEvaluator(db).validate(body.code, body.order_total, user_id=user_id)
    if not result.valid:
        return ValidateCouponResponse(valid=False, error=result.error)

    return ValidateCouponResponse(
        valid=True,
        discount_amount=result.discount_amount,
        coupon=CouponSummary.model_validate(result.coupon),
    )

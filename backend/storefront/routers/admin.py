"""
Back-office API Router.

Inventory corrections, low-stock report, order lookup and shipment tracking.
All routes require an admin JWT.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.auth_middleware import require_admin
from storefront.database import get_db
from storefront.integrations.circuit_breaker import get_all_circuit_statuses
from storefront.models import Order
from storefront.services.inventory import InventoryService, VariantNotFoundError

router = APIRouter()
logger = logging.getLogger(__name__)


class StockAdjustmentResponse(BaseModel):
    id: str
    variant_id: str
    order_id: Optional[str]
    author_id: Optional[str]
    adjustment_type: str
    quantity: int
    previous_stock: int
    new_stock: int
    reason: str
    created_at: datetime

    class Config:
        from_attributes = True


class LowStockVariantResponse(BaseModel):
    id: str
    product_id: str
    sku: Optional[str]
    size: Optional[str]
    color: Optional[str]
    stock: int

    class Config:
        from_attributes = True


class StockUpdate(BaseModel):
    variant_id: str
    new_stock: int = Field(..., ge=0)
    reason: str = "Manual stock update"


class BulkStockUpdateRequest(BaseModel):
    updates: List[StockUpdate] = Field(..., min_length=1)


class BulkStockUpdateResponse(BaseModel):
    updated: List[StockAdjustmentResponse]
    not_found: List[str]


class OrderItemResponse(BaseModel):
    id: str
    product_id: Optional[str]
    variant_id: Optional[str]
    product_name: str
    variant_details: Optional[str]
    price: Decimal
    quantity: int
    subtotal: Decimal

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: str
    order_number: str
    user_id: Optional[str]
    customer_name: str
    customer_email: str
    customer_phone: str
    shipping_address: dict
    subtotal: Decimal
    shipping_cost: Decimal
    discount_amount: Decimal
    coupon_code: Optional[str]
    total: Decimal
    status: str
    payment_method: Optional[str]
    payment_status: str
    notes: Optional[str]
    tracking_number: Optional[str]
    tracking_url: Optional[str]
    shipping_carrier: Optional[str]
    created_at: datetime
    items: List[OrderItemResponse]

    class Config:
        from_attributes = True


class TrackingUpdateRequest(BaseModel):
    tracking_number: str
    tracking_url: Optional[str] = None
    shipping_carrier: Optional[str] = None


# =============================================================================
# Inventory
# =============================================================================

@router.get("/inventory/adjustments", response_model=List[StockAdjustmentResponse])
async def list_stock_adjustments(
    variant_id: Optional[str] = Query(None),
    limit: int = Query(200, le=1000),
    admin_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    adjustments = await InventoryService(db).list_adjustments(variant_id=variant_id, limit=limit)
    return [StockAdjustmentResponse.model_validate(a) for a in adjustments]


@router.get("/inventory/low-stock", response_model=List[LowStockVariantResponse])
async def list_low_stock(
    threshold: int = Query(5, ge=0),
    admin_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    variants = await InventoryService(db).get_low_stock(threshold)
    return [LowStockVariantResponse.model_validate(v) for v in variants]


@router.post("/inventory/bulk-update", response_model=BulkStockUpdateResponse)
async def bulk_update_stock(
    body: BulkStockUpdateRequest,
    admin_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Set absolute stock levels; each change writes a 'manual' audit row."""
    inventory = InventoryService(db)
    updated, not_found = [], []

    for update in body.updates:
        try:
            adjustment = await inventory.set_stock(
                update.variant_id,
                update.new_stock,
                reason=update.reason,
                author_id=admin_id,
            )
            updated.append(StockAdjustmentResponse.model_validate(adjustment))
        except VariantNotFoundError:
            not_found.append(update.variant_id)

    logger.info(f"Admin {admin_id} updated stock for {len(updated)} variants ({len(not_found)} not found)")
    return BulkStockUpdateResponse(updated=updated, not_found=not_found)


# =============================================================================
# Orders
# =============================================================================

async def _get_order(db: AsyncSession, order_number: str) -> Order:
    result = await db.execute(
        select(Order)
        .options(selectinload(Order.items))
        .where(Order.order_number == order_number)
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.get("/orders/{order_number}", response_model=OrderResponse)
async def get_order(order_number: str, admin_id: str = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return OrderResponse.model_validate(await _get_order(db, order_number))


@router.put("/orders/{order_number}/tracking", response_model=OrderResponse)
async def update_tracking(
    order_number: str,
    body: TrackingUpdateRequest,
    admin_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    order = await _get_order(db, order_number)
    order.tracking_number = body.tracking_number
    order.tracking_url = body.tracking_url
    order.shipping_carrier = body.shipping_carrier
    if order.status in ("confirmed", "processing"):
        order.status = "shipped"
    await db.flush()

    logger.info(f"Order {order_number} tracking set to {body.tracking_number} by {admin_id}")
    return OrderResponse.model_validate(order)


# =============================================================================
# Integrations
# =============================================================================

@router.get("/integrations/status")
async def integration_status(admin_id: str = Depends(require_admin)):
    """Circuit breaker state for PayTR, Klaviyo and BizimHesap."""
    return get_all_circuit_statuses()

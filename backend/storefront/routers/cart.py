"""
Cart API Router.

Session carts keyed by X-Session-Id / session_id cookie. Prices shown here
are informational; checkout re-resolves them from the catalog.
"""

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import get_db
from storefront.models import Product, ProductVariant
from storefront.routers.dependencies import get_session_id
from storefront.services.cart import CartService
from storefront.services.cart_snapshot import CartSnapshotReader, cart_subtotal

router = APIRouter()


class CartItemResponse(BaseModel):
    id: str
    product_id: str
    variant_id: Optional[str]
    quantity: int

    class Config:
        from_attributes = True


class CartLineResponse(BaseModel):
    product_id: str
    variant_id: Optional[str]
    product_name: str
    variant_details: Optional[str]
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class CartResponse(BaseModel):
    items: List[CartItemResponse]
    lines: List[CartLineResponse]
    subtotal: Decimal


class AddToCartRequest(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(1, ge=1, le=99)


class UpdateQuantityRequest(BaseModel):
    quantity: int = Field(..., ge=1, le=99)


@router.get("", response_model=CartResponse)
async def get_cart(session_id: str = Depends(get_session_id), db: AsyncSession = Depends(get_db)):
    items = await CartService(db).get_cart_items(session_id)
    lines = await CartSnapshotReader(db).read(session_id)
    return CartResponse(
        items=[CartItemResponse.model_validate(item) for item in items],
        lines=[
            CartLineResponse(
                product_id=line.product_id,
                variant_id=line.variant_id,
                product_name=line.product_name,
                variant_details=line.variant_details,
                quantity=line.quantity,
                unit_price=line.unit_price,
                line_total=line.line_total,
            )
            for line in lines
        ],
        subtotal=cart_subtotal(lines),
    )


@router.post("", response_model=CartItemResponse, status_code=201)
async def add_to_cart(
    body: AddToCartRequest,
    session_id: str = Depends(get_session_id),
    db: AsyncSession = Depends(get_db),
):
    product = await db.get(Product, body.product_id)
    if product is None or not product.is_active:
        raise HTTPException(status_code=404, detail="Product not found")

    if body.variant_id:
        variant = await db.get(ProductVariant, body.variant_id)
        if variant is None or variant.product_id != product.id or not variant.is_active:
            raise HTTPException(status_code=404, detail="Variant not found")

    item = await CartService(db).add_to_cart(session_id, product.id, body.quantity, body.variant_id)
    return CartItemResponse.model_validate(item)


@router.patch("/{item_id}", response_model=CartItemResponse)
async def update_cart_item(
    item_id: str,
    body: UpdateQuantityRequest,
    session_id: str = Depends(get_session_id),
    db: AsyncSession = Depends(get_db),
):
    item = await CartService(db).update_quantity(session_id, item_id, body.quantity)
    if item is None:
        raise HTTPException(status_code=404, detail="Cart item not found")
    return CartItemResponse.model_validate(item)


@router.delete("/{item_id}", status_code=204)
async def remove_cart_item(item_id: str, session_id: str = Depends(get_session_id), db: AsyncSession = Depends(get_db)):
    await CartService(db).remove(session_id, item_id)


@router.delete("", status_code=204)
async def clear_cart(session_id: str = Depends(get_session_id), db: AsyncSession = Depends(get_db)):
    await CartService(db).clear_cart(session_id)

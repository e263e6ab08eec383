"""
Payment API Router.

POST /create            start checkout, returns the PayTR iframe token
GET  /status/{oid}      poll from the success page
POST /callback          PayTR server-to-server notification

The callback answers the literal "OK" on every path, including internal
errors: anything else makes PayTR redeliver, and duplicate deliveries are
already absorbed by the materializer's idempotency guard.
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.auth_middleware import get_optional_user_id
from storefront.database import get_db
from storefront.integrations.paytr import GatewayError, PayTRGateway
from storefront.models import Order, PendingPaymentStatus
from storefront.routers.dependencies import (
    get_client_ip,
    get_order_materializer,
    get_payment_gateway,
    get_session_id,
    get_side_effect_dispatcher,
)
from storefront.services.checkout import CheckoutDetails, CheckoutService, CheckoutValidationError
from storefront.services.order_materializer import CallbackOutcome, OrderMaterializer
from storefront.services.pending_payments import PendingPaymentStore
from storefront.services.side_effects import SideEffectDispatcher

router = APIRouter()
logger = logging.getLogger(__name__)

CALLBACK_ACK = "OK"


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class CreatePaymentRequest(CamelModel):
    customer_name: str
    customer_email: str
    customer_phone: str
    address: str
    city: str
    district: str
    postal_code: Optional[str] = None
    coupon_code: Optional[str] = None
    create_account: bool = False
    password: Optional[str] = None


class CreatePaymentResponse(CamelModel):
    token: str
    merchant_oid: str
    iframe_url: str


class PaymentStatusResponse(CamelModel):
    status: str
    order_number: Optional[str] = None
    order_id: Optional[str] = None


@router.post("/create", response_model=CreatePaymentResponse)
async def create_payment(
    body: CreatePaymentRequest,
    request: Request,
    session_id: str = Depends(get_session_id),
    user_id: Optional[str] = Depends(get_optional_user_id),
    gateway: PayTRGateway = Depends(get_payment_gateway),
    db: AsyncSession = Depends(get_db),
):
    """Price the cart server-side, stage a pending payment and fetch a PayTR token."""
    details = CheckoutDetails(**body.model_dump(by_alias=False))
    try:
        checkout = await CheckoutService(db, gateway).start(
            session_id,
            details,
            user_ip=get_client_ip(request),
            user_id=user_id,
        )
    except CheckoutValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except GatewayError as e:
        raise HTTPException(status_code=502, detail=f"Payment could not be started, please try again ({e.reason})")

    return CreatePaymentResponse(
        token=checkout.token,
        merchant_oid=checkout.merchant_oid,
        iframe_url=checkout.iframe_url,
    )


@router.get(
    "/status/{merchant_oid}",
    response_model=PaymentStatusResponse,
    response_model_exclude_none=True,
)
async def get_payment_status(merchant_oid: str, db: AsyncSession = Depends(get_db)):
    pending = await PendingPaymentStore(db).get_by_merchant_oid(merchant_oid)
    if pending is None:
        raise HTTPException(status_code=404, detail="Payment not found")

    if pending.status != PendingPaymentStatus.COMPLETED.value:
        return PaymentStatusResponse(status=pending.status)

    order = (await db.execute(
        select(Order).where(Order.order_number == merchant_oid)
    )).scalar_one_or_none()
    return PaymentStatusResponse(
        status=pending.status,
        order_number=order.order_number if order else None,
        order_id=order.id if order else None,
    )


@router.post("/callback", response_class=PlainTextResponse)
async def payment_callback(
    request: Request,
    background_tasks: BackgroundTasks,
    materializer: OrderMaterializer = Depends(get_order_materializer),
    dispatcher: SideEffectDispatcher = Depends(get_side_effect_dispatcher),
):
    """PayTR notification URL. Always acknowledges."""
    try:
        form = await request.form()
        payload = {key: value for key, value in form.items() if isinstance(value, str)}
        result = await materializer.handle_callback(payload)

        if result.outcome == CallbackOutcome.MATERIALIZED:
            background_tasks.add_task(dispatcher.dispatch, result.order_id)
        logger.info(f"PayTR callback {payload.get('merchant_oid')}: {result.outcome.value}")
    except Exception as e:
        logger.exception(f"PayTR callback processing failed: {e}")

    return PlainTextResponse(CALLBACK_ACK)

"""
Order Materializer
==================

Turns a verified PayTR notification into durable state, exactly once per
merchant_oid.

Success path, in one transaction:
    1. unknown merchant_oid            -> UNKNOWN, nothing written
    2. pending payment already terminal -> ALREADY_PROCESSED, nothing written
    3. past expires_at                 -> pending marked failed ('expired'), no order
    4. claim: UPDATE pending_payments SET status='completed'
              WHERE merchant_oid=:oid AND status IN ('pending','token_received')
       zero rows means a concurrent delivery won -> ALREADY_PROCESSED
    5. Order + OrderItems from the pending snapshot, stock decrement + audit
       row per variant line, coupon redemption, cart cleared

The UNIQUE index on orders.order_number backs up the claim: an IntegrityError
on insert is treated as ALREADY_PROCESSED.

Account creation runs afterwards in its own transaction so a failure there
never rolls back the order. Side effects (emails, invoice) are the caller's
business; see services/side_effects.py.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.integrations.paytr import PayTRGateway
from storefront.models import Order, OrderItem, PendingPayment, PendingPaymentStatus, Product
from storefront.services.accounts import AccountService
from storefront.services.cart import CartService
from storefront.services.cart_snapshot import CartLine
from storefront.services.coupons import CouponEvaluator, CouponError
from storefront.services.inventory import InventoryService, VariantNotFoundError
from storefront.services.pending_payments import PendingPaymentStore
from storefront.services.pricing import to_money, to_minor_units

logger = logging.getLogger(__name__)

PAYMENT_METHOD = "paytr"
EXPIRED_REASON = "expired"


class CallbackOutcome(str, Enum):
    MATERIALIZED = "materialized"
    ALREADY_PROCESSED = "already_processed"
    UNKNOWN = "unknown"
    FAILED = "failed"
    EXPIRED = "expired"
    REJECTED = "rejected"


@dataclass
class CallbackResult:
    outcome: CallbackOutcome
    merchant_oid: Optional[str] = None
    order_id: Optional[str] = None
    user_id: Optional[str] = None


def _amount_matches(total_amount: str, expected) -> bool:
    """PayTR reports minor units; accept a decimal rendering as well."""
    try:
        if str(total_amount).isdigit():
            return int(total_amount) == to_minor_units(expected)
        return to_money(total_amount) == to_money(expected)
    except ArithmeticError:
        return False


class OrderMaterializer:
    """Callback state machine: pending -> token_received -> (completed | failed)."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        gateway: Optional[PayTRGateway] = None,
    ):
        if session_factory is None:
            from storefront.database import async_session_maker
            session_factory = async_session_maker
        self.session_factory = session_factory
        self.gateway = gateway or PayTRGateway.from_settings()

    async def handle_callback(self, payload: Mapping[str, Any]) -> CallbackResult:
        """
        Authenticate and apply one notification. Forged payloads are
        rejected before any database access.
        """
        if not self.gateway.verify_callback(payload):
            logger.warning(f"Rejected PayTR callback with invalid hash (merchant_oid={payload.get('merchant_oid')!r})")
            return CallbackResult(outcome=CallbackOutcome.REJECTED)

        merchant_oid = str(payload["merchant_oid"])
        if payload["status"] == "success":
            return await self.materialize(merchant_oid, total_amount=str(payload["total_amount"]))

        reason_parts = [str(payload[k]) for k in ("failed_reason_code", "failed_reason_msg") if payload.get(k)]
        return await self.mark_failed(merchant_oid, ": ".join(reason_parts) or "payment failed")

    async def mark_failed(self, merchant_oid: str, reason: str) -> CallbackResult:
        async with self.session_factory() as session:
            store = PendingPaymentStore(session)
            pending = await store.get_by_merchant_oid(merchant_oid)
            if pending is None:
                logger.warning(f"Failure callback for unknown merchant_oid {merchant_oid}")
                return CallbackResult(outcome=CallbackOutcome.UNKNOWN, merchant_oid=merchant_oid)

            if not await store.transition(merchant_oid, PendingPaymentStatus.FAILED, failure_reason=reason):
                logger.info(f"Failure callback for {merchant_oid} ignored, payment already {pending.status}")
                return CallbackResult(outcome=CallbackOutcome.ALREADY_PROCESSED, merchant_oid=merchant_oid)

            await session.commit()

        logger.info(f"Payment {merchant_oid} failed: {reason}")
        return CallbackResult(outcome=CallbackOutcome.FAILED, merchant_oid=merchant_oid)

    async def materialize(
        self,
        merchant_oid: str,
        total_amount: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CallbackResult:
        async with self.session_factory() as session:
            try:
                result = await self._materialize(session, merchant_oid, total_amount, now or datetime.utcnow())
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(f"Order {merchant_oid} already exists, treating callback as duplicate")
                return CallbackResult(outcome=CallbackOutcome.ALREADY_PROCESSED, merchant_oid=merchant_oid)
            except Exception:
                await session.rollback()
                raise

        if result.outcome == CallbackOutcome.MATERIALIZED:
            result.user_id = await self._create_account(merchant_oid, result.order_id) or result.user_id
        return result

    async def _materialize(
        self,
        session: AsyncSession,
        merchant_oid: str,
        total_amount: Optional[str],
        now: datetime,
    ) -> CallbackResult:
        store = PendingPaymentStore(session)
        pending = await store.get_by_merchant_oid(merchant_oid)

        if pending is None:
            logger.warning(f"Success callback for unknown merchant_oid {merchant_oid}")
            return CallbackResult(outcome=CallbackOutcome.UNKNOWN, merchant_oid=merchant_oid)

        if pending.is_terminal:
            logger.info(f"Duplicate success callback for {merchant_oid} (status={pending.status})")
            return CallbackResult(outcome=CallbackOutcome.ALREADY_PROCESSED, merchant_oid=merchant_oid)

        if pending.is_expired(now):
            if await store.transition(merchant_oid, PendingPaymentStatus.FAILED, failure_reason=EXPIRED_REASON):
                logger.error(
                    f"Payment {merchant_oid} succeeded after its pending record expired at "
                    f"{pending.expires_at.isoformat()}; no order created, refund needs review"
                )
                return CallbackResult(outcome=CallbackOutcome.EXPIRED, merchant_oid=merchant_oid)
            return CallbackResult(outcome=CallbackOutcome.ALREADY_PROCESSED, merchant_oid=merchant_oid)

        if not await store.transition(merchant_oid, PendingPaymentStatus.COMPLETED):
            logger.info(f"Lost materialization race for {merchant_oid}, another delivery completed it")
            return CallbackResult(outcome=CallbackOutcome.ALREADY_PROCESSED, merchant_oid=merchant_oid)

        if total_amount is not None and not _amount_matches(total_amount, pending.total):
            logger.error(
                f"PayTR reported total_amount={total_amount} for {merchant_oid}, "
                f"expected {pending.total} (installment fees?); review for refund"
            )

        order = await self._create_order(session, pending)
        logger.info(f"Order {order.order_number} materialized: total={order.total}, items={len(pending.cart_items)}")
        return CallbackResult(
            outcome=CallbackOutcome.MATERIALIZED,
            merchant_oid=merchant_oid,
            order_id=order.id,
            user_id=order.user_id,
        )

    async def _create_order(self, session: AsyncSession, pending: PendingPayment) -> Order:
        order = Order(
            order_number=pending.merchant_oid,
            user_id=pending.user_id,
            customer_name=pending.customer_name,
            customer_email=pending.customer_email,
            customer_phone=pending.customer_phone,
            shipping_address=pending.shipping_address,
            subtotal=pending.subtotal,
            shipping_cost=pending.shipping_cost,
            discount_amount=pending.discount_amount,
            coupon_code=pending.coupon_code,
            total=pending.total,
            status="confirmed",
            payment_method=PAYMENT_METHOD,
            payment_status="paid",
        )
        session.add(order)
        await session.flush()

        inventory = InventoryService(session)
        for line in (CartLine.from_snapshot(data) for data in pending.cart_items):
            product_id = line.product_id if await session.get(Product, line.product_id) else None
            variant_id = line.variant_id

            if variant_id:
                try:
                    await inventory.decrement_for_sale(variant_id, line.quantity, order.id, order.order_number)
                except VariantNotFoundError:
                    logger.warning(f"Variant {variant_id} on order {order.order_number} no longer exists, stock untouched")
                    variant_id = None

            session.add(OrderItem(
                order_id=order.id,
                product_id=product_id,
                variant_id=variant_id,
                product_name=line.product_name,
                variant_details=line.variant_details,
                price=line.unit_price,
                quantity=line.quantity,
                subtotal=line.line_total,
            ))

        if pending.coupon_code:
            await self._redeem_coupon(session, pending, order)

        await CartService(session).clear_cart(pending.session_id)
        await session.flush()
        return order

    async def _redeem_coupon(self, session: AsyncSession, pending: PendingPayment, order: Order) -> None:
        """
        Re-validate against the live coupon. The customer already paid the
        discounted total, so a coupon that is no longer valid is noted on the
        order rather than blocking it.
        """
        evaluator = CouponEvaluator(session)
        validation = await evaluator.validate(pending.coupon_code, pending.subtotal, user_id=pending.user_id)

        reason = validation.error
        if validation.valid:
            try:
                await evaluator.redeem(
                    validation.coupon,
                    order.id,
                    pending.discount_amount,
                    pending.total,
                    user_id=pending.user_id,
                )
                return
            except CouponError as e:
                reason = e.reason

        logger.warning(f"Coupon {pending.coupon_code} not redeemed for order {order.order_number}: {reason}")
        order.notes = f"Coupon {pending.coupon_code} not redeemed: {reason}"

    async def _create_account(self, merchant_oid: str, order_id: str) -> Optional[str]:
        try:
            async with self.session_factory() as session:
                pending = await PendingPaymentStore(session).get_by_merchant_oid(merchant_oid)
                if pending is None or not pending.create_account:
                    return None

                user = await AccountService(session).create_from_pending(pending)
                if user is None:
                    return None

                order = await session.get(Order, order_id)
                if order is not None and order.user_id is None:
                    order.user_id = user.id
                await session.commit()
                return user.id
        except Exception as e:
            logger.exception(f"Account creation for order {merchant_oid} failed: {e}")
            return None

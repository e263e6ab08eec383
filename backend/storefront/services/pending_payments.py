"""
Pending Payment Store
=====================

Staging records keyed by the PayTR merchant_oid. A record holds everything
the order will be built from, frozen before any payment is confirmed.

Lifecycle:
    pending -> token_received -> (completed | failed)
    deleted when the token request fails; kept as an audit trail otherwise;
    purged by housekeeping once expired without completing.
"""

import logging
import secrets
import time
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import get_settings
from storefront.models import PendingPayment, PendingPaymentStatus
from storefront.services.cart_snapshot import CartLine
from storefront.services.pricing import PriceBreakdown

logger = logging.getLogger(__name__)


def generate_merchant_oid(prefix: str = "HNK") -> str:
    """
    Timestamp + random suffix. PayTR only accepts alphanumeric order ids,
    so no separators.
    """
    return f"{prefix}{int(time.time() * 1000)}{secrets.token_hex(4).upper()}"


class PendingPaymentStore:
    """Data access for pending payments."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        *,
        session_id: str,
        customer_name: str,
        customer_email: str,
        customer_phone: str,
        shipping_address: dict,
        lines: List[CartLine],
        pricing: PriceBreakdown,
        coupon_code: Optional[str] = None,
        user_id: Optional[str] = None,
        create_account: bool = False,
        password_hash: Optional[str] = None,
        merchant_oid: Optional[str] = None,
        ttl_minutes: Optional[int] = None,
    ) -> PendingPayment:
        ttl = ttl_minutes if ttl_minutes is not None else get_settings().PENDING_PAYMENT_TTL_MINUTES
        now = datetime.utcnow()

        pending = PendingPayment(
            merchant_oid=merchant_oid or generate_merchant_oid(),
            session_id=session_id,
            user_id=user_id,
            customer_name=customer_name,
            customer_email=customer_email,
            customer_phone=customer_phone,
            shipping_address=shipping_address,
            cart_items=[line.to_snapshot() for line in lines],
            subtotal=pricing.subtotal,
            shipping_cost=pricing.shipping_cost,
            discount_amount=pricing.discount_amount,
            coupon_code=coupon_code,
            total=pricing.total,
            status=PendingPaymentStatus.PENDING.value,
            create_account=create_account,
            password_hash=password_hash if create_account else None,
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(minutes=ttl),
        )
        self.session.add(pending)
        await self.session.flush()

        logger.info(f"Pending payment {pending.merchant_oid} created: total={pending.total}")
        return pending

    async def get_by_merchant_oid(self, merchant_oid: str) -> Optional[PendingPayment]:
        result = await self.session.execute(
            select(PendingPayment).where(PendingPayment.merchant_oid == merchant_oid)
        )
        return result.scalar_one_or_none()

    async def update_status(
        self,
        merchant_oid: str,
        status: PendingPaymentStatus,
        failure_reason: Optional[str] = None,
    ) -> bool:
        values = {"status": status.value, "updated_at": datetime.utcnow()}
        if failure_reason is not None:
            values["failure_reason"] = failure_reason
        if status == PendingPaymentStatus.COMPLETED:
            values["completed_at"] = datetime.utcnow()

        result = await self.session.execute(
            update(PendingPayment)
            .where(PendingPayment.merchant_oid == merchant_oid)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def transition(
        self,
        merchant_oid: str,
        to_status: PendingPaymentStatus,
        failure_reason: Optional[str] = None,
    ) -> bool:
        """
        Move an open (pending / token_received) record to to_status.

        Compare-and-set: returns False when the record is missing or already
        terminal. Two concurrent callers for the same oid cannot both win.
        """
        now = datetime.utcnow()
        values = {"status": to_status.value, "updated_at": now}
        if failure_reason is not None:
            values["failure_reason"] = failure_reason
        if to_status == PendingPaymentStatus.COMPLETED:
            values["completed_at"] = now

        result = await self.session.execute(
            update(PendingPayment)
            .where(
                PendingPayment.merchant_oid == merchant_oid,
                PendingPayment.status.in_(PendingPaymentStatus.open_states()),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def delete(self, merchant_oid: str) -> None:
        await self.session.execute(
            delete(PendingPayment).where(PendingPayment.merchant_oid == merchant_oid)
        )

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete abandoned checkouts: never completed and past expires_at."""
        now = now or datetime.utcnow()
        result = await self.session.execute(
            delete(PendingPayment).where(
                PendingPayment.status.in_(PendingPaymentStatus.open_states()),
                PendingPayment.expires_at < now,
            )
        )
        if result.rowcount:
            logger.info(f"Purged {result.rowcount} expired pending payments")
        return result.rowcount

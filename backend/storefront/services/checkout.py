"""
Checkout: from a session cart to a PayTR iframe token.

    cart -> authoritative lines -> coupon -> price -> pending payment -> token

The pending payment is committed before PayTR is called so that a fast
callback can always find it. If PayTR does not hand out a token the pending
record is deleted again and the caller gets a GatewayError to retry on.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import get_settings
from storefront.integrations.paytr import GatewayError, PayTRGateway, TokenRequest, build_basket
from storefront.models import PendingPaymentStatus
from storefront.services.accounts import hash_password
from storefront.services.cart_snapshot import CartSnapshotReader, cart_subtotal
from storefront.services.coupons import CouponEvaluator
from storefront.services.pending_payments import PendingPaymentStore, generate_merchant_oid
from storefront.services.pricing import price, to_minor_units, ZERO

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


class CheckoutValidationError(Exception):
    """Bad checkout input; nothing has been written."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


@dataclass
class CheckoutDetails:
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

    @property
    def shipping_address(self) -> dict:
        return {
            "address": self.address,
            "city": self.city,
            "district": self.district,
            "postal_code": self.postal_code,
        }

    @property
    def single_line_address(self) -> str:
        return f"{self.address}, {self.district}, {self.city}"


@dataclass
class CheckoutSession:
    merchant_oid: str
    token: str
    iframe_url: str


class CheckoutService:
    def __init__(self, session: AsyncSession, gateway: Optional[PayTRGateway] = None):
        self.session = session
        self.gateway = gateway or PayTRGateway.from_settings()
        self.store = PendingPaymentStore(session)

    def _validate(self, details: CheckoutDetails) -> None:
        required = {
            "customer_name": details.customer_name,
            "customer_email": details.customer_email,
            "customer_phone": details.customer_phone,
            "address": details.address,
            "city": details.city,
            "district": details.district,
        }
        missing = [name for name, value in required.items() if not (value and value.strip())]
        if missing:
            raise CheckoutValidationError(f"Missing required fields: {', '.join(missing)}")

        local, _, domain = details.customer_email.strip().partition("@")
        if not local or "." not in domain:
            raise CheckoutValidationError("Invalid email address")

        if details.create_account and len(details.password or "") < MIN_PASSWORD_LENGTH:
            raise CheckoutValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    async def _discard(self, merchant_oid: str) -> None:
        await self.session.rollback()
        await self.store.delete(merchant_oid)
        await self.session.commit()

    async def start(
        self,
        session_id: str,
        details: CheckoutDetails,
        user_ip: str,
        user_id: Optional[str] = None,
    ) -> CheckoutSession:
        """
        Raises CheckoutValidationError for bad input (nothing written) and
        GatewayError when PayTR gives no token (pending record removed).
        """
        self._validate(details)

        lines = await CartSnapshotReader(self.session).read(session_id)
        if not lines:
            raise CheckoutValidationError("Cart is empty")

        subtotal = cart_subtotal(lines)
        discount = ZERO
        coupon_code = None
        if details.coupon_code and details.coupon_code.strip():
            validation = await CouponEvaluator(self.session).validate(details.coupon_code, subtotal, user_id=user_id)
            if not validation.valid:
                raise CheckoutValidationError(validation.error)
            discount = validation.discount_amount
            coupon_code = validation.coupon.code

        pricing = price(subtotal, discount, item_count=sum(line.quantity for line in lines))

        password_hash = None
        if details.create_account:
            loop = asyncio.get_running_loop()
            password_hash = await loop.run_in_executor(None, lambda: hash_password(details.password))

        merchant_oid = generate_merchant_oid()
        pending = await self.store.create(
            merchant_oid=merchant_oid,
            session_id=session_id,
            user_id=user_id,
            customer_name=details.customer_name.strip(),
            customer_email=details.customer_email.strip(),
            customer_phone=details.customer_phone.strip(),
            shipping_address=details.shipping_address,
            lines=lines,
            pricing=pricing,
            coupon_code=coupon_code,
            create_account=details.create_account,
            password_hash=password_hash,
        )
        await self.session.commit()

        settings = get_settings()
        token_request = TokenRequest(
            merchant_oid=merchant_oid,
            user_ip=user_ip,
            email=pending.customer_email,
            payment_amount=to_minor_units(pricing.total),
            user_name=pending.customer_name,
            user_address=details.single_line_address,
            user_phone=pending.customer_phone,
            user_basket=build_basket(lines),
            ok_url=f"{settings.FRONTEND_URL}/odeme-basarili?oid={merchant_oid}",
            fail_url=f"{settings.FRONTEND_URL}/odeme?payment=failed",
            currency=settings.CURRENCY,
            timeout_limit=str(settings.PAYMENT_TIMEOUT_LIMIT_MINUTES),
        )
        try:
            response = await self.gateway.request_token(token_request)
        except Exception as e:
            logger.error(f"Token request for {merchant_oid} raised: {e}")
            await self._discard(merchant_oid)
            raise GatewayError("Payment provider unavailable", merchant_oid=merchant_oid) from e

        if not response.ok:
            await self._discard(merchant_oid)
            raise GatewayError(response.reason or "Unknown error", merchant_oid=merchant_oid)

        await self.store.transition(merchant_oid, PendingPaymentStatus.TOKEN_RECEIVED)
        await self.session.commit()

        logger.info(f"Checkout {merchant_oid} started: total={pricing.total} ({to_minor_units(pricing.total)} minor units)")
        return CheckoutSession(
            merchant_oid=merchant_oid,
            token=response.token,
            iframe_url=self.gateway.iframe_url(response.token),
        )

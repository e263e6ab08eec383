"""
Shared fixtures: a throwaway SQLite database per test, mocked Redis for the
circuit breakers, a PayTR gateway with test credentials and an ASGI client
wired to all of them.
"""

import os

# Set env vars BEFORE any application imports to satisfy Pydantic
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DEBUG"] = "false"
os.environ["PAYTR_MERCHANT_ID"] = "123456"
os.environ["PAYTR_MERCHANT_KEY"] = "test-merchant-key"
os.environ["PAYTR_MERCHANT_SALT"] = "test-merchant-salt"
os.environ["ADMIN_EMAIL"] = "admin@hank.com.tr"

from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import async_sessionmaker

from storefront.database import create_engine_for
from storefront.integrations.paytr import PayTRGateway
from storefront.models import (
    Base,
    CartItem,
    Coupon,
    PendingPayment,
    Product,
    ProductVariant,
)
from storefront.services.cart_snapshot import CartLine
from storefront.services.pending_payments import PendingPaymentStore
from storefront.services.pricing import price

from helpers import MERCHANT_ID, MERCHANT_KEY, MERCHANT_SALT


@pytest.fixture(autouse=True)
def mock_redis():
    """Circuit breakers read and write Redis; keep them CLOSED and local."""
    redis = MagicMock()
    redis.get.return_value = None
    redis.incr.return_value = 1
    with patch("storefront.integrations.circuit_breaker.get_redis_client", return_value=redis):
        yield redis


@pytest.fixture
async def engine(tmp_path):
    # File database so concurrent sessions really are separate connections
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def paytr_gateway():
    return PayTRGateway(MERCHANT_ID, MERCHANT_KEY, MERCHANT_SALT, test_mode=True)


class Seeder:
    """Creates committed fixtures, each in its own short transaction."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def _save(self, *objs):
        async with self.session_factory() as session:
            session.add_all(objs)
            await session.commit()
        return objs[0] if len(objs) == 1 else objs

    async def product(
        self,
        name: str = "Oversize Hoodie",
        base_price: Decimal = Decimal("1500.00"),
        variants: Optional[List[dict]] = None,
        slug: Optional[str] = None,
    ):
        """Returns (product, [variants])."""
        product = Product(name=name, slug=slug or name.lower().replace(" ", "-"), base_price=base_price)
        variant_objs = [
            ProductVariant(
                product=product,
                sku=v.get("sku"),
                size=v.get("size"),
                color=v.get("color"),
                price=v.get("price", base_price),
                stock=v.get("stock", 10),
            )
            for v in (variants or [])
        ]
        await self._save(product, *variant_objs)
        return product, variant_objs

    async def cart_line(self, session_id: str, product: Product, variant: Optional[ProductVariant] = None, quantity: int = 1) -> CartItem:
        return await self._save(CartItem(
            session_id=session_id,
            product_id=product.id,
            variant_id=variant.id if variant else None,
            quantity=quantity,
        ))

    async def coupon(self, code: str = "SAVE10", discount_type: str = "percentage", discount_value: Decimal = Decimal("10"), **kwargs) -> Coupon:
        return await self._save(Coupon(code=code, discount_type=discount_type, discount_value=discount_value, **kwargs))

    async def pending_payment(
        self,
        lines: List[CartLine],
        discount: Decimal = Decimal("0"),
        coupon_code: Optional[str] = None,
        session_id: str = "sess-1",
        merchant_oid: Optional[str] = None,
        ttl_minutes: int = 60,
        **kwargs,
    ) -> PendingPayment:
        subtotal = sum((line.line_total for line in lines), Decimal("0"))
        async with self.session_factory() as session:
            pending = await PendingPaymentStore(session).create(
                session_id=session_id,
                customer_name=kwargs.pop("customer_name", "Ayşe Yılmaz"),
                customer_email=kwargs.pop("customer_email", "ayse@example.com"),
                customer_phone=kwargs.pop("customer_phone", "05551234567"),
                shipping_address=kwargs.pop("shipping_address", {
                    "address": "Bağdat Cad. 10/3",
                    "city": "İstanbul",
                    "district": "Kadıköy",
                    "postal_code": "34710",
                }),
                lines=lines,
                pricing=price(subtotal, discount),
                coupon_code=coupon_code,
                merchant_oid=merchant_oid,
                ttl_minutes=ttl_minutes,
                **kwargs,
            )
            await session.commit()
        return pending


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


@pytest.fixture
def paytr_token_transport():
    """PayTR get-token endpoint; set .response to a dict or an exception."""
    class _Transport(httpx.MockTransport):
        def __init__(self):
            self.requests = []
            self.response = {"status": "success", "token": "iframe-token-abc"}
            super().__init__(self._handle)

        def _handle(self, request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            if isinstance(self.response, Exception):
                raise self.response
            return httpx.Response(200, json=self.response)

    return _Transport()


@pytest.fixture
def side_effects():
    dispatcher = MagicMock()
    dispatcher.dispatch = AsyncMock(return_value={})
    return dispatcher


@pytest.fixture
async def client(session_factory, paytr_token_transport, side_effects):
    from storefront.database import get_db
    from storefront.main import app
    from storefront.routers.dependencies import (
        get_order_materializer,
        get_payment_gateway,
        get_side_effect_dispatcher,
    )
    from storefront.services.order_materializer import OrderMaterializer

    gateway = PayTRGateway(MERCHANT_ID, MERCHANT_KEY, MERCHANT_SALT, test_mode=True, transport=paytr_token_transport)

    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_order_materializer] = lambda: OrderMaterializer(session_factory, gateway)
    app.dependency_overrides[get_side_effect_dispatcher] = lambda: side_effects

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def expired_now():
    """A clock two hours ahead: every pending payment created now is expired."""
    return datetime.utcnow() + timedelta(hours=2)

"""
Post-order side effects.

Runs after the callback has been acknowledged (FastAPI BackgroundTasks).
Customer email, admin email and invoice are independent: each one runs in its
own error boundary, a failure is logged and never reaches the order or the
other two. Transient provider errors are retried by the connectors
themselves (tenacity), which is fine here because nothing waits on us.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from storefront.integrations.bizimhesap import BizimHesapConnector
from storefront.integrations.klaviyo import KlaviyoConnector
from storefront.models import Order, OrderItem, ProductVariant

logger = logging.getLogger(__name__)


class SideEffectDispatcher:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        email: Optional[KlaviyoConnector] = None,
        invoicing: Optional[BizimHesapConnector] = None,
    ):
        if session_factory is None:
            from storefront.database import async_session_maker
            session_factory = async_session_maker
        self.session_factory = session_factory
        self.email = email or KlaviyoConnector.from_settings()
        self.invoicing = invoicing or BizimHesapConnector.from_settings()

    async def _load(self, order_id: str):
        async with self.session_factory() as session:
            order = await session.get(Order, order_id)
            if order is None:
                return None, [], {}

            items = list((await session.execute(
                select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.created_at)
            )).scalars().all())

            variant_ids = [item.variant_id for item in items if item.variant_id]
            skus: Dict[str, str] = {}
            if variant_ids:
                rows = await session.execute(
                    select(ProductVariant.id, ProductVariant.sku).where(ProductVariant.id.in_(variant_ids))
                )
                skus = {variant_id: sku for variant_id, sku in rows if sku}
            return order, items, skus

    async def dispatch(self, order_id: str) -> Dict[str, bool]:
        """
        Fire all side effects for an order. Never raises.

        Returns {effect_name: succeeded} for logging and tests.
        """
        try:
            order, items, skus = await self._load(order_id)
        except Exception as e:
            logger.exception(f"Could not load order {order_id} for side effects: {e}")
            return {}

        if order is None:
            logger.error(f"Side effects requested for missing order {order_id}")
            return {}

        effects = {
            "order_confirmation": self.email.send_order_confirmation(order, items),
            "admin_notification": self.email.send_admin_notification(order, items),
            "invoice": self._submit_invoice(order, items, skus),
        }
        results = await asyncio.gather(*effects.values(), return_exceptions=True)

        outcome = {}
        for name, result in zip(effects.keys(), results):
            if isinstance(result, BaseException):
                logger.error(f"Side effect '{name}' failed for order {order.order_number}: {result!r}")
                outcome[name] = False
            else:
                outcome[name] = bool(result)
                if not result:
                    logger.warning(f"Side effect '{name}' did not complete for order {order.order_number}")
        return outcome

    async def _submit_invoice(self, order: Order, items: List[OrderItem], skus: Dict[str, str]) -> bool:
        result = await self.invoicing.submit_invoice(order, items, skus=skus)
        return result.success

import logging
from typing import Any, Dict, List, Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception, before_sleep_log

from storefront.config import get_settings
from storefront.integrations.base import BaseConnector
from storefront.integrations.circuit_breaker import get_klaviyo_circuit_breaker, CircuitBreakerOpenError
from storefront.models import Order, OrderItem

logger = logging.getLogger(__name__)

ORDER_CONFIRMATION_METRIC = "Order Confirmation"
ADMIN_ORDER_METRIC = "Admin Order Notification"


def is_retryable_error(exception):
    """Return True if exception is a retryable HTTP error (429, 5xx) or a transport failure."""
    if isinstance(exception, httpx.HTTPStatusError):
        status = exception.response.status_code
        return status == 429 or status >= 500
    return isinstance(exception, (httpx.TimeoutException, httpx.NetworkError))


def order_event_properties(order: Order, items: List[OrderItem]) -> Dict[str, Any]:
    """Flatten an order into Klaviyo event properties; the flow template renders them."""
    return {
        "order_number": order.order_number,
        "customer_name": order.customer_name,
        "customer_phone": order.customer_phone,
        "shipping_address": order.shipping_address,
        "subtotal": str(order.subtotal),
        "shipping_cost": str(order.shipping_cost),
        "discount_amount": str(order.discount_amount),
        "coupon_code": order.coupon_code,
        "total": str(order.total),
        "items": [
            {
                "product_name": item.product_name,
                "variant_details": item.variant_details,
                "price": str(item.price),
                "quantity": item.quantity,
                "subtotal": str(item.subtotal),
            }
            for item in items
        ],
    }


class KlaviyoConnector(BaseConnector):
    """
    Transactional email through Klaviyo events.

    Each send triggers a metric; a Klaviyo Flow listening on that metric
    renders and delivers the email.
    """
    BASE_URL = "https://a.klaviyo.com/api"

    @classmethod
    def from_settings(cls, **kwargs) -> "KlaviyoConnector":
        return cls(get_settings().KLAVIYO_API_KEY, **kwargs)

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self, idempotency_key: Optional[str] = None):
        headers = {
            "Authorization": f"Klaviyo-API-Key {self.api_key}",
            "accept": "application/vnd.api+json",
            "content-type": "application/vnd.api+json",
            "revision": "2024-10-15"
        }
        if idempotency_key:
            headers["idempotency-key"] = idempotency_key
        return headers

    @retry(
        retry=retry_if_exception(is_retryable_error),
        wait=wait_exponential(multiplier=1, min=1, max=30),
        stop=stop_after_attempt(3),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    async def send_event(
        self,
        metric_name: str,
        to_email: str,
        properties: Dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> bool:
        """
        Trigger a metric event for a profile.

        Returns False for non-retryable failures and an open circuit;
        429/5xx are raised so tenacity can retry them.
        """
        if not self.is_configured:
            logger.warning(f"Klaviyo not configured, skipping '{metric_name}' for {to_email}")
            return False

        url = f"{self.BASE_URL}/events"
        payload = {
            "data": {
                "type": "event",
                "attributes": {
                    "properties": properties,
                    "metric": {
                        "data": {
                            "type": "metric",
                            "attributes": {"name": metric_name}
                        }
                    },
                    "profile": {
                        "data": {
                            "type": "profile",
                            "attributes": {"email": to_email}
                        }
                    }
                }
            }
        }

        async def _execute():
            async with self._client() as client:
                response = await client.post(url, json=payload, headers=self._headers(idempotency_key))
            # Klaviyo returns 202 Accepted for events
            if response.status_code in (201, 202):
                logger.info(f"Klaviyo event '{metric_name}' triggered for {to_email}")
                return True
            response.raise_for_status()
            logger.error(f"Klaviyo event '{metric_name}' unexpected response: {response.status_code}")
            return False

        try:
            return await get_klaviyo_circuit_breaker().call(_execute)
        except CircuitBreakerOpenError:
            return False
        except Exception as e:
            if is_retryable_error(e):
                raise
            logger.error(f"Klaviyo event '{metric_name}' error: {e}")
            return False

    async def send_order_confirmation(self, order: Order, items: List[OrderItem]) -> bool:
        return await self.send_event(
            ORDER_CONFIRMATION_METRIC,
            order.customer_email,
            order_event_properties(order, items),
            idempotency_key=f"order-confirmation-{order.order_number}",
        )

    async def send_admin_notification(self, order: Order, items: List[OrderItem], admin_email: Optional[str] = None) -> bool:
        admin_email = admin_email or get_settings().ADMIN_EMAIL
        if not admin_email:
            logger.warning(f"ADMIN_EMAIL not configured, skipping admin notification for {order.order_number}")
            return False

        properties = order_event_properties(order, items)
        properties["customer_email"] = order.customer_email
        return await self.send_event(
            ADMIN_ORDER_METRIC,
            admin_email,
            properties,
            idempotency_key=f"admin-order-{order.order_number}",
        )

"""
BizimHesap e-invoice integration.

Order prices are VAT inclusive. Each invoice line carries the line total after
its proportional share of the order discount, split into net and tax at
INVOICE_TAX_RATE. Shipping, when charged, is an extra KARGO line.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception, before_sleep_log

from storefront.config import get_settings
from storefront.integrations.base import BaseConnector
from storefront.integrations.circuit_breaker import get_bizimhesap_circuit_breaker
from storefront.integrations.klaviyo import is_retryable_error
from storefront.models import Order, OrderItem
from storefront.services.pricing import to_money, ZERO

logger = logging.getLogger(__name__)

INVOICE_TYPE_SALES = 3
SHIPPING_PRODUCT_ID = "KARGO"


@dataclass
class InvoiceResult:
    success: bool
    guid: Optional[str] = None
    url: Optional[str] = None
    error: Optional[str] = None


def _split_vat(gross: Decimal, tax_rate: int):
    net = to_money(gross / (1 + Decimal(tax_rate) / Decimal(100)))
    return net, to_money(gross - net)


def _detail(product_id: str, name: str, quantity: int, gross: Decimal, tax_rate: int, barcode: str = "") -> Dict[str, Any]:
    net, tax = _split_vat(gross, tax_rate)
    return {
        "productId": product_id,
        "productName": name,
        "note": "",
        "barcode": barcode,
        "taxRate": f"{tax_rate}.00",
        "quantity": quantity,
        "unitPrice": str(to_money(net / quantity)),
        "grossPrice": str(net),
        "discount": "0.00",
        "net": str(net),
        "tax": str(tax),
        "total": str(to_money(gross)),
    }


def build_invoice_payload(
    order: Order,
    items: List[OrderItem],
    firm_id: str,
    tax_rate: int = 20,
    skus: Optional[Dict[str, str]] = None,
    invoice_date: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    skus maps variant_id -> variant SKU and is used as the line barcode.
    """
    skus = skus or {}
    issued = (invoice_date or datetime.utcnow()).isoformat()

    items_total = sum((to_money(item.subtotal) for item in items), ZERO)
    discount = to_money(order.discount_amount or 0)
    ratio = discount / items_total if items_total > 0 else ZERO

    details = []
    for index, item in enumerate(items):
        line_total = to_money(item.subtotal)
        discounted = to_money(line_total - line_total * ratio)

        name = item.product_name or "Ürün"
        if item.variant_details:
            name = f"{name} - {item.variant_details}"

        product_id = item.product_id[:20] if item.product_id else f"ITEM-{order.order_number}-{index}"
        details.append(_detail(
            product_id, name, item.quantity, discounted, tax_rate,
            barcode=skus.get(item.variant_id, "") if item.variant_id else "",
        ))

    shipping = to_money(order.shipping_cost or 0)
    if shipping > 0:
        details.append(_detail(SHIPPING_PRODUCT_ID, "Kargo Ücreti", 1, shipping, tax_rate))

    total = to_money(order.total)
    net_total, tax_total = _split_vat(total, tax_rate)
    address = order.shipping_address or {}

    return {
        "firmId": firm_id,
        "invoiceNo": order.order_number,
        "invoiceType": INVOICE_TYPE_SALES,
        "note": f"HANK Online Sipariş - {order.order_number}",
        "dates": {
            "invoiceDate": issued,
            "dueDate": issued,
            "deliveryDate": issued,
        },
        "customer": {
            "customerId": order.customer_email,
            "title": order.customer_name,
            "taxOffice": "",
            "taxNo": "",
            "email": order.customer_email,
            "phone": order.customer_phone or "",
            "address": f"{address.get('address', '')}, {address.get('district', '')}, {address.get('city', '')}",
        },
        "amounts": {
            "currency": "TL",
            "gross": str(net_total),
            "discount": "0.00",
            "net": str(net_total),
            "tax": str(tax_total),
            "total": str(total),
        },
        "details": details,
    }


class BizimHesapConnector(BaseConnector):
    """Submits sales invoices; the firm id doubles as the API credential."""

    def __init__(self, firm_id: Optional[str], api_url: str, tax_rate: int = 20, **kwargs):
        super().__init__(firm_id, **kwargs)
        self.api_url = api_url
        self.tax_rate = tax_rate

    @classmethod
    def from_settings(cls, **kwargs) -> "BizimHesapConnector":
        settings = get_settings()
        return cls(settings.BIZIMHESAP_FIRM_ID, settings.BIZIMHESAP_API_URL, settings.INVOICE_TAX_RATE, **kwargs)

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @retry(
        retry=retry_if_exception(is_retryable_error),
        wait=wait_exponential(multiplier=1, min=2, max=60),
        stop=stop_after_attempt(3),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    async def submit_invoice(
        self,
        order: Order,
        items: List[OrderItem],
        skus: Optional[Dict[str, str]] = None,
    ) -> InvoiceResult:
        if not self.is_configured:
            logger.error("BIZIMHESAP_FIRM_ID is not configured")
            return InvoiceResult(success=False, error="BizimHesap is not configured")

        payload = build_invoice_payload(order, items, self.api_key, self.tax_rate, skus=skus)
        logger.debug(f"Sending invoice {order.order_number} to BizimHesap")

        async def _execute() -> Dict[str, Any]:
            async with self._client() as client:
                response = await client.post(self.api_url, json=payload)
            response.raise_for_status()
            return response.json()

        result = await get_bizimhesap_circuit_breaker().call(_execute)

        if result.get("error"):
            logger.error(f"BizimHesap rejected invoice {order.order_number}: {result['error']}")
            return InvoiceResult(success=False, error=result["error"])

        logger.info(f"BizimHesap invoice created for {order.order_number}: {result.get('guid')}")
        return InvoiceResult(success=True, guid=result.get("guid"), url=result.get("url"))

"""
Tests for the BizimHesap invoice payload and connector.
"""

import json
from datetime import datetime
from decimal import Decimal

import httpx
import pytest

from storefront.integrations.bizimhesap import BizimHesapConnector, build_invoice_payload
from storefront.models import Order, OrderItem


def _order(**overrides) -> Order:
    data = dict(
        id="order-1",
        order_number="HNK1700000000000ABCDEF01",
        customer_name="Ayşe Yılmaz",
        customer_email="ayse@example.com",
        customer_phone="05551234567",
        shipping_address={"address": "Bağdat Cad. 10/3", "city": "İstanbul", "district": "Kadıköy"},
        subtotal=Decimal("3000.00"),
        shipping_cost=Decimal("0.00"),
        discount_amount=Decimal("300.00"),
        total=Decimal("2700.00"),
    )
    data.update(overrides)
    return Order(**data)


def _item(subtotal="3000.00", quantity=2, variant_id="variant-1", **overrides) -> OrderItem:
    data = dict(
        order_id="order-1",
        product_id="product-1",
        variant_id=variant_id,
        product_name="Oversize Hoodie",
        variant_details="M Siyah",
        price=Decimal(subtotal) / quantity,
        quantity=quantity,
        subtotal=Decimal(subtotal),
    )
    data.update(overrides)
    return OrderItem(**data)


class TestInvoicePayload:

    def test_discount_spread_over_lines(self):
        payload = build_invoice_payload(
            _order(), [_item()], "firm-1", tax_rate=20,
            skus={"variant-1": "HNK-HD-M-BLK"},
            invoice_date=datetime(2024, 11, 5, 12, 0),
        )

        (line,) = payload["details"]
        assert line["productName"] == "Oversize Hoodie - M Siyah"
        assert line["barcode"] == "HNK-HD-M-BLK"
        assert line["quantity"] == 2
        assert line["total"] == "2700.00"
        assert line["net"] == "2250.00"
        assert line["tax"] == "450.00"
        assert line["unitPrice"] == "1125.00"
        assert line["taxRate"] == "20.00"

        assert payload["amounts"] == {
            "currency": "TL",
            "gross": "2250.00",
            "discount": "0.00",
            "net": "2250.00",
            "tax": "450.00",
            "total": "2700.00",
        }
        assert payload["firmId"] == "firm-1"
        assert payload["invoiceNo"] == "HNK1700000000000ABCDEF01"
        assert payload["invoiceType"] == 3
        assert payload["dates"]["invoiceDate"] == "2024-11-05T12:00:00"
        assert payload["customer"]["address"] == "Bağdat Cad. 10/3, Kadıköy, İstanbul"

    def test_shipping_becomes_kargo_line(self):
        order = _order(
            subtotal=Decimal("1500.00"),
            discount_amount=Decimal("0.00"),
            shipping_cost=Decimal("49.90"),
            total=Decimal("1549.90"),
        )

        payload = build_invoice_payload(order, [_item("1500.00", 1)], "firm-1")

        product_line, shipping_line = payload["details"]
        assert product_line["total"] == "1500.00"
        assert shipping_line["productId"] == "KARGO"
        assert shipping_line["productName"] == "Kargo Ücreti"
        assert shipping_line["net"] == "41.58"
        assert shipping_line["tax"] == "8.32"
        assert payload["amounts"]["total"] == "1549.90"

    def test_line_without_product_gets_placeholder_id(self):
        payload = build_invoice_payload(_order(), [_item(product_id=None, variant_id=None)], "firm-1")

        assert payload["details"][0]["productId"] == "ITEM-HNK1700000000000ABCDEF01-0"
        assert payload["details"][0]["barcode"] == ""


class TestConnector:

    @pytest.mark.asyncio
    async def test_submits_invoice(self):
        sent = []

        def handler(request: httpx.Request) -> httpx.Response:
            sent.append(json.loads(request.content))
            return httpx.Response(200, json={"guid": "inv-guid", "url": "https://bizimhesap.com/inv/1"})

        connector = BizimHesapConnector("firm-1", "https://bizimhesap.test/addinvoice", transport=httpx.MockTransport(handler))

        result = await connector.submit_invoice(_order(), [_item()])

        assert result.success
        assert result.guid == "inv-guid"
        assert sent[0]["invoiceNo"] == "HNK1700000000000ABCDEF01"

    @pytest.mark.asyncio
    async def test_api_error_field_is_a_failure(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"error": "Geçersiz firma"}))
        connector = BizimHesapConnector("firm-1", "https://bizimhesap.test/addinvoice", transport=transport)

        result = await connector.submit_invoice(_order(), [_item()])

        assert not result.success
        assert result.error == "Geçersiz firma"

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        connector = BizimHesapConnector(None, "https://bizimhesap.test/addinvoice")

        result = await connector.submit_invoice(_order(), [_item()])

        assert not result.success

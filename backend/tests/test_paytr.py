"""
Tests for the PayTR adapter: token form and hash, basket encoding, token
request failure modes and callback verification.
"""

import base64
import hashlib
import hmac
import json
from datetime import datetime
from decimal import Decimal

import httpx
import pytest
import redis

from storefront.integrations.circuit_breaker import CircuitState
from storefront.integrations.paytr import (
    PayTRGateway,
    TokenRequest,
    build_basket,
    encode_basket,
)
from storefront.services.cart_snapshot import CartLine

from helpers import MERCHANT_ID, MERCHANT_KEY, MERCHANT_SALT, callback_payload, sign_callback


def _line(name="Oversize Hoodie", variant="M Siyah", unit_price="1500.00", quantity=2):
    return CartLine(
        product_id="p1",
        variant_id="v1" if variant else None,
        quantity=quantity,
        unit_price=Decimal(unit_price),
        product_name=name,
        variant_details=variant,
    )


def _token_request(**overrides):
    data = dict(
        merchant_oid="HNK1700000000000ABCDEF01",
        user_ip="85.105.1.1",
        email="ayse@example.com",
        payment_amount=270000,
        user_name="Ayşe Yılmaz",
        user_address="Bağdat Cad. 10/3, Kadıköy, İstanbul",
        user_phone="05551234567",
        user_basket=build_basket([_line()]),
        ok_url="http://localhost:3000/odeme-basarili?oid=HNK1700000000000ABCDEF01",
        fail_url="http://localhost:3000/odeme?payment=failed",
    )
    data.update(overrides)
    return TokenRequest(**data)


class TestBasket:

    def test_basket_uses_minor_units_and_variant_label(self):
        basket = build_basket([_line(), _line("Beanie", None, "350.50", 1)])

        assert basket == [
            ["Oversize Hoodie (M Siyah)", "150000", 2],
            ["Beanie", "35050", 1],
        ]

    def test_encoding_is_base64_json_with_unicode(self):
        encoded = encode_basket([["Şal", "9990", 1]])

        assert json.loads(base64.b64decode(encoded).decode("utf-8")) == [["Şal", "9990", 1]]
        assert "Şal" in base64.b64decode(encoded).decode("utf-8")


class TestTokenForm:

    def test_token_hash_matches_paytr_recipe(self, paytr_gateway):
        request = _token_request()
        form = paytr_gateway.build_form(request)

        hash_str = (
            MERCHANT_ID + request.user_ip + request.merchant_oid + request.email + "270000"
            + form["user_basket"] + "1" + "0" + "TL" + "1" + MERCHANT_SALT
        )
        expected = base64.b64encode(
            hmac.new(MERCHANT_KEY.encode(), hash_str.encode(), hashlib.sha256).digest()
        ).decode()

        assert form["paytr_token"] == expected

    def test_form_fields(self, paytr_gateway):
        form = paytr_gateway.build_form(_token_request())

        assert form["merchant_id"] == MERCHANT_ID
        assert form["payment_amount"] == "270000"
        assert form["test_mode"] == "1"
        assert form["currency"] == "TL"
        assert form["no_installment"] == "1"
        assert form["max_installment"] == "0"
        assert form["lang"] == "tr"
        assert form["merchant_ok_url"].endswith("oid=HNK1700000000000ABCDEF01")
        assert all(isinstance(value, str) for value in form.values())

    def test_iframe_url(self, paytr_gateway):
        assert paytr_gateway.iframe_url("abc") == "https://www.paytr.com/odeme/guvenli/abc"


class TestRequestToken:

    @pytest.fixture
    def gateway(self, paytr_token_transport):
        return PayTRGateway(MERCHANT_ID, MERCHANT_KEY, MERCHANT_SALT, test_mode=True, transport=paytr_token_transport)

    @pytest.mark.asyncio
    async def test_success(self, gateway, paytr_token_transport):
        response = await gateway.request_token(_token_request())

        assert response.ok
        assert response.token == "iframe-token-abc"
        (sent,) = paytr_token_transport.requests
        assert sent.url == "https://www.paytr.com/odeme/api/get-token"
        assert b"payment_amount=270000" in sent.content

    @pytest.mark.asyncio
    async def test_paytr_refusal_carries_reason(self, gateway, paytr_token_transport):
        paytr_token_transport.response = {"status": "failed", "reason": "paytr_token gecersiz"}

        response = await gateway.request_token(_token_request())

        assert not response.ok
        assert response.reason == "paytr_token gecersiz"

    @pytest.mark.asyncio
    async def test_timeout_is_a_failed_response(self, gateway, paytr_token_transport):
        paytr_token_transport.response = httpx.ReadTimeout("slow")

        response = await gateway.request_token(_token_request())

        assert response.status == "failed"
        assert response.reason == "Payment provider timed out"

    @pytest.mark.asyncio
    async def test_connection_error_is_a_failed_response(self, gateway, paytr_token_transport):
        paytr_token_transport.response = httpx.ConnectError("refused")

        response = await gateway.request_token(_token_request())

        assert response.status == "failed"
        assert response.reason == "Connection error"

    @pytest.mark.asyncio
    async def test_open_circuit_skips_paytr(self, gateway, paytr_token_transport, mock_redis):
        mock_redis.get.side_effect = lambda key: {
            "circuit_breaker:paytr:state": CircuitState.OPEN.value,
            "circuit_breaker:paytr:last_failure": datetime.utcnow().isoformat(),
        }.get(key)

        response = await gateway.request_token(_token_request())

        assert not response.ok
        assert paytr_token_transport.requests == []

    @pytest.mark.asyncio
    async def test_redis_outage_is_a_failed_response(self, gateway, paytr_token_transport, mock_redis):
        mock_redis.get.side_effect = redis.exceptions.ConnectionError("redis down")

        response = await gateway.request_token(_token_request())

        assert response.status == "failed"
        assert response.reason == "Payment provider unavailable"


class TestVerifyCallback:

    def test_valid_signature(self, paytr_gateway):
        assert paytr_gateway.verify_callback(callback_payload("HNK1"))

    def test_tampered_amount(self, paytr_gateway):
        payload = callback_payload("HNK1", total_amount="270000")
        payload["total_amount"] = "100"

        assert not paytr_gateway.verify_callback(payload)

    def test_tampered_status(self, paytr_gateway):
        payload = callback_payload("HNK1", status="failed")
        payload["status"] = "success"

        assert not paytr_gateway.verify_callback(payload)

    def test_wrong_key(self, paytr_gateway):
        payload = callback_payload("HNK1")
        payload["hash"] = sign_callback("HNK1", "success", "270000", key="someone-else")

        assert not paytr_gateway.verify_callback(payload)

    def test_missing_hash(self, paytr_gateway):
        payload = callback_payload("HNK1")
        del payload["hash"]

        assert not paytr_gateway.verify_callback(payload)

    def test_unconfigured_gateway_rejects_everything(self):
        gateway = PayTRGateway(MERCHANT_ID, "", "")

        assert not gateway.verify_callback(callback_payload("HNK1"))

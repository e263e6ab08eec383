"""
PayTR hosted payment page adapter.

Two independent operations:
- request_token(): signed form POST to the get-token endpoint. The returned
  token is embedded by the frontend as {PAYTR_IFRAME_URL}/{token}.
- verify_callback(): authenticates PayTR's server-to-server notification.
  This is the only authentication the callback endpoint has, so a mismatch
  must stop processing before anything touches the database.

Hash formats:
    paytr_token = b64(HMAC-SHA256(key, merchant_id + user_ip + merchant_oid + email
                  + payment_amount + user_basket + no_installment + max_installment
                  + currency + test_mode + salt))
    callback    = b64(HMAC-SHA256(key, merchant_oid + salt + status + total_amount))
"""

import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from storefront.config import get_settings, Settings
from storefront.integrations.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerOpenError,
    get_paytr_circuit_breaker,
)
from storefront.services.cart_snapshot import CartLine
from storefront.services.pricing import to_minor_units

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """Raised when PayTR cannot issue a payment token."""

    def __init__(self, reason: str, merchant_oid: Optional[str] = None):
        self.reason = reason
        self.merchant_oid = merchant_oid
        super().__init__(f"PayTR token request failed: {reason}")


@dataclass
class TokenRequest:
    merchant_oid: str
    user_ip: str
    email: str
    payment_amount: int  # minor units (kuruş)
    user_name: str
    user_address: str
    user_phone: str
    user_basket: List[list] = field(default_factory=list)
    ok_url: str = ""
    fail_url: str = ""
    no_installment: str = "1"
    max_installment: str = "0"
    currency: str = "TL"
    lang: str = "tr"
    timeout_limit: str = "30"


@dataclass
class TokenResponse:
    status: str
    token: Optional[str] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "success" and bool(self.token)


def build_basket(lines: List[CartLine]) -> List[list]:
    """[[name, unit price in minor units as string, qty], ...]"""
    basket = []
    for line in lines:
        name = line.product_name
        if line.variant_details:
            name = f"{name} ({line.variant_details})"
        basket.append([name, str(to_minor_units(line.unit_price)), line.quantity])
    return basket


def encode_basket(basket: List[list]) -> str:
    raw = json.dumps(basket, ensure_ascii=False, separators=(",", ":"))
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def _hmac_b64(key: str, message: str) -> str:
    digest = hmac.new(key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


class PayTRGateway:
    """PayTR iFrame API client."""

    def __init__(
        self,
        merchant_id: str,
        merchant_key: str,
        merchant_salt: str,
        *,
        token_url: str = "https://www.paytr.com/odeme/api/get-token",
        iframe_base_url: str = "https://www.paytr.com/odeme/guvenli",
        timeout: float = 20.0,
        test_mode: bool = False,
        debug_on: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.merchant_id = merchant_id
        self.merchant_key = merchant_key
        self.merchant_salt = merchant_salt
        self.token_url = token_url
        self.iframe_base_url = iframe_base_url.rstrip("/")
        self.timeout = timeout
        self.test_mode = "1" if test_mode else "0"
        self.debug_on = "1" if debug_on else "0"
        self._transport = transport
        self._breaker = breaker

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs) -> "PayTRGateway":
        settings = settings or get_settings()
        return cls(
            settings.PAYTR_MERCHANT_ID,
            settings.PAYTR_MERCHANT_KEY,
            settings.PAYTR_MERCHANT_SALT,
            token_url=settings.PAYTR_TOKEN_URL,
            iframe_base_url=settings.PAYTR_IFRAME_URL,
            timeout=settings.PAYTR_TIMEOUT_SECONDS,
            test_mode=settings.PAYTR_TEST_MODE,
            debug_on=settings.PAYTR_DEBUG_ON,
            **kwargs,
        )

    @property
    def breaker(self) -> CircuitBreaker:
        if self._breaker is None:
            self._breaker = get_paytr_circuit_breaker()
        return self._breaker

    # ------------------------------------------------------------------
    # Token request
    # ------------------------------------------------------------------

    def token_hash(self, request: TokenRequest, user_basket_b64: str) -> str:
        hash_str = (
            self.merchant_id
            + request.user_ip
            + request.merchant_oid
            + request.email
            + str(request.payment_amount)
            + user_basket_b64
            + request.no_installment
            + request.max_installment
            + request.currency
            + self.test_mode
            + self.merchant_salt
        )
        return _hmac_b64(self.merchant_key, hash_str)

    def build_form(self, request: TokenRequest) -> Dict[str, str]:
        basket_b64 = encode_basket(request.user_basket)
        return {
            "merchant_id": self.merchant_id,
            "user_ip": request.user_ip,
            "merchant_oid": request.merchant_oid,
            "email": request.email,
            "payment_amount": str(request.payment_amount),
            "paytr_token": self.token_hash(request, basket_b64),
            "user_basket": basket_b64,
            "debug_on": self.debug_on,
            "no_installment": request.no_installment,
            "max_installment": request.max_installment,
            "user_name": request.user_name,
            "user_address": request.user_address,
            "user_phone": request.user_phone,
            "merchant_ok_url": request.ok_url,
            "merchant_fail_url": request.fail_url,
            "timeout_limit": request.timeout_limit,
            "currency": request.currency,
            "test_mode": self.test_mode,
            "lang": request.lang,
        }

    async def request_token(self, request: TokenRequest) -> TokenResponse:
        """
        Ask PayTR for an iframe token. Never raises: timeouts, connection
        errors, bad responses and an open circuit all come back as
        status='failed' with a reason.
        """
        form = self.build_form(request)

        async def _execute() -> Dict[str, Any]:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.token_url, data=form)
            response.raise_for_status()
            return response.json()

        try:
            data = await self.breaker.call(_execute)
        except CircuitBreakerOpenError as e:
            logger.warning(f"PayTR token request for {request.merchant_oid} rejected: {e}")
            return TokenResponse(status="failed", reason="Payment provider temporarily unavailable")
        except httpx.TimeoutException:
            logger.error(f"PayTR token request for {request.merchant_oid} timed out after {self.timeout}s")
            return TokenResponse(status="failed", reason="Payment provider timed out")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"PayTR token request for {request.merchant_oid} failed: {e}")
            return TokenResponse(status="failed", reason="Connection error")
        except Exception as e:
            logger.error(f"PayTR token request for {request.merchant_oid} crashed: {type(e).__name__}: {e}")
            return TokenResponse(status="failed", reason="Payment provider unavailable")

        if data.get("status") == "success" and data.get("token"):
            logger.info(f"PayTR token issued for {request.merchant_oid}")
            return TokenResponse(status="success", token=data["token"])

        reason = data.get("reason") or "Unknown error"
        logger.warning(f"PayTR refused token for {request.merchant_oid}: {reason}")
        return TokenResponse(status="failed", reason=reason)

    def iframe_url(self, token: str) -> str:
        return f"{self.iframe_base_url}/{token}"

    # ------------------------------------------------------------------
    # Callback verification
    # ------------------------------------------------------------------

    def callback_hash(self, merchant_oid: str, status: str, total_amount: str) -> str:
        return _hmac_b64(self.merchant_key, merchant_oid + self.merchant_salt + status + total_amount)

    def verify_callback(self, payload: Dict[str, Any]) -> bool:
        """Constant-time comparison of the notification hash."""
        if not self.merchant_key or not self.merchant_salt:
            logger.error("PayTR callback received but merchant credentials are not configured")
            return False

        try:
            merchant_oid = str(payload["merchant_oid"])
            status = str(payload["status"])
            total_amount = str(payload["total_amount"])
            supplied = str(payload["hash"])
        except KeyError as e:
            logger.warning(f"PayTR callback missing field {e}")
            return False

        expected = self.callback_hash(merchant_oid, status, total_amount)
        return hmac.compare_digest(expected.encode("utf-8"), supplied.encode("utf-8"))

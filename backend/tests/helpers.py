"""
Test helpers shared by the test modules (importable because pytest puts
this directory on sys.path).
"""

import base64
import hashlib
import hmac
import os
from decimal import Decimal
from typing import Optional

from storefront.models import Product, ProductVariant
from storefront.services.cart_snapshot import CartLine

MERCHANT_ID = os.environ.get("PAYTR_MERCHANT_ID", "123456")
MERCHANT_KEY = os.environ.get("PAYTR_MERCHANT_KEY", "test-merchant-key")
MERCHANT_SALT = os.environ.get("PAYTR_MERCHANT_SALT", "test-merchant-salt")


def sign_callback(merchant_oid: str, status: str, total_amount: str, key: str = MERCHANT_KEY, salt: str = MERCHANT_SALT) -> str:
    """What PayTR puts in the callback's hash field."""
    digest = hmac.new(key.encode(), (merchant_oid + salt + status + total_amount).encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def callback_payload(merchant_oid: str, status: str = "success", total_amount: str = "270000", **extra) -> dict:
    payload = {
        "merchant_oid": merchant_oid,
        "status": status,
        "total_amount": total_amount,
        "hash": sign_callback(merchant_oid, status, total_amount),
    }
    payload.update(extra)
    return payload


def line_for(product: Product, variant: Optional[ProductVariant] = None, quantity: int = 1) -> CartLine:
    unit_price = variant.price if variant is not None else product.base_price
    return CartLine(
        product_id=product.id,
        variant_id=variant.id if variant else None,
        quantity=quantity,
        unit_price=Decimal(unit_price),
        product_name=product.name,
        variant_details=variant.description if variant else None,
    )

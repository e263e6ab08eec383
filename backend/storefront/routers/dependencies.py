"""
Router Dependencies
====================

Shared FastAPI dependencies for cart sessions and the checkout pipeline.
"""

from typing import Optional

from fastapi import Cookie, Header, HTTPException, Request

from storefront.integrations.paytr import PayTRGateway
from storefront.services.order_materializer import OrderMaterializer
from storefront.services.side_effects import SideEffectDispatcher


async def get_session_id(
    x_session_id: Optional[str] = Header(None, alias="X-Session-Id"),
    session_id: Optional[str] = Cookie(None),
) -> str:
    """
    The anonymous cart session, from the X-Session-Id header or the
    session_id cookie.

    Raises:
        HTTPException(400): If the request carries neither.
    """
    value = x_session_id or session_id
    if not value:
        raise HTTPException(status_code=400, detail="Missing cart session")
    return value


def get_client_ip(request: Request) -> str:
    """Client IP for PayTR; honours the first X-Forwarded-For hop behind a proxy."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"


def get_payment_gateway() -> PayTRGateway:
    return PayTRGateway.from_settings()


def get_order_materializer() -> OrderMaterializer:
    return OrderMaterializer()


def get_side_effect_dispatcher() -> SideEffectDispatcher:
    return SideEffectDispatcher()

"""
JWT Authentication.

Customers and admins carry an HS256 JWT whose subject is the user id and
whose "role" claim separates the two. Checkout works without a token;
admin routes require role=admin.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Header, HTTPException, Depends, Request
from jose import JWTError, jwt

logger = logging.getLogger(__name__)

# JWT Configuration
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7  # 7 days

ROLE_CUSTOMER = "customer"
ROLE_ADMIN = "admin"


def _get_secret_key() -> str:
    """Lazy-load the secret key to support testing."""
    from storefront.config import get_settings
    return get_settings().SECRET_KEY


def create_access_token(user_id: str, role: str = ROLE_CUSTOMER, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed JWT for a user.

    Args:
        user_id: The user's UUID.
        role: customer or admin.
        expires_delta: Optional custom expiration time.
    """
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": user_id, "role": role, "exp": expire}
    return jwt.encode(to_encode, _get_secret_key(), algorithm=ALGORITHM)


def _extract_token(request: Request, authorization: Optional[str]) -> Optional[str]:
    # 1. Authorization header, 2. HttpOnly cookie
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:]
    return request.cookies.get("auth_token")


def decode_token(token: str) -> dict:
    """Raises JWTError on a bad signature, expiry or missing subject."""
    payload = jwt.decode(token, _get_secret_key(), algorithms=[ALGORITHM])
    if payload.get("sub") is None:
        raise JWTError("Token has no subject")
    return payload


async def get_current_claims(
    request: Request,
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> dict:
    """
    FastAPI dependency returning the validated JWT claims.
    Supports both 'Authorization: Bearer' header and 'auth_token' cookie.
    """
    credentials_exception = HTTPException(
        status_code=401,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token = _extract_token(request, authorization)
    if not token:
        raise credentials_exception

    try:
        return decode_token(token)
    except JWTError:
        raise credentials_exception


async def get_optional_user_id(
    request: Request,
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> Optional[str]:
    """
    The customer id when a valid token is present, else None.
    Guest checkout is allowed, so a bad token is treated as anonymous.
    """
    token = _extract_token(request, authorization)
    if not token:
        return None

    try:
        return decode_token(token)["sub"]
    except JWTError:
        logger.info("Ignoring invalid auth token on anonymous-capable route")
        return None


async def require_admin(claims: dict = Depends(get_current_claims)) -> str:
    """Dependency for back-office routes; returns the admin's user id."""
    if claims.get("role") != ROLE_ADMIN:
        raise HTTPException(status_code=403, detail="Admin access required")
    return claims["sub"]

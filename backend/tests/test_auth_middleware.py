"""
Tests for JWT Authentication Middleware.

Verifies token creation, validation, roles and the guest-checkout fallback.
"""

import pytest
from datetime import timedelta
from unittest.mock import MagicMock, patch

from fastapi import HTTPException
from jose import jwt

# Constants matching the middleware
ALGORITHM = "HS256"
TEST_SECRET = "test-secret-key-for-testing-only"


@pytest.fixture
def mock_secret():
    """Mock the secret key for all tests."""
    with patch('storefront.auth_middleware._get_secret_key', return_value=TEST_SECRET):
        yield TEST_SECRET


def make_request(cookies=None):
    request = MagicMock()
    request.cookies = cookies or {}
    return request


class TestCreateAccessToken:
    """Tests for create_access_token function."""

    def test_creates_valid_token(self, mock_secret):
        """Token should be decodable and carry user id and role."""
        from storefront.auth_middleware import create_access_token

        token = create_access_token("user-123")

        payload = jwt.decode(token, TEST_SECRET, algorithms=[ALGORITHM])

        assert payload["sub"] == "user-123"
        assert payload["role"] == "customer"
        assert "exp" in payload

    def test_custom_expiration(self, mock_secret):
        """Token should respect custom expiration delta."""
        from storefront.auth_middleware import create_access_token

        token = create_access_token("user-456", role="admin", expires_delta=timedelta(minutes=5))

        payload = jwt.decode(token, TEST_SECRET, algorithms=[ALGORITHM])

        assert payload["sub"] == "user-456"
        assert payload["role"] == "admin"


class TestGetCurrentClaims:
    """Tests for get_current_claims dependency."""

    @pytest.mark.asyncio
    async def test_valid_bearer_token(self, mock_secret):
        from storefront.auth_middleware import create_access_token, get_current_claims

        token = create_access_token("user-789")

        claims = await get_current_claims(make_request(), f"Bearer {token}")

        assert claims["sub"] == "user-789"

    @pytest.mark.asyncio
    async def test_cookie_token(self, mock_secret):
        """auth_token cookie is accepted when no header is sent."""
        from storefront.auth_middleware import create_access_token, get_current_claims

        token = create_access_token("user-cookie")

        claims = await get_current_claims(make_request({"auth_token": token}), None)

        assert claims["sub"] == "user-cookie"

    @pytest.mark.asyncio
    async def test_missing_token_raises_401(self, mock_secret):
        from storefront.auth_middleware import get_current_claims

        with pytest.raises(HTTPException) as exc_info:
            await get_current_claims(make_request(), None)

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_token_with_wrong_secret_raises_401(self, mock_secret):
        """Token signed with different secret should raise 401."""
        from storefront.auth_middleware import get_current_claims

        token = jwt.encode({"sub": "user-abc"}, "wrong-secret-key", algorithm=ALGORITHM)

        with pytest.raises(HTTPException) as exc_info:
            await get_current_claims(make_request(), f"Bearer {token}")

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_token_without_sub_raises_401(self, mock_secret):
        """Token without 'sub' claim should raise 401."""
        from storefront.auth_middleware import get_current_claims

        token = jwt.encode({"other": "data"}, TEST_SECRET, algorithm=ALGORITHM)

        with pytest.raises(HTTPException) as exc_info:
            await get_current_claims(make_request(), f"Bearer {token}")

        assert exc_info.value.status_code == 401


class TestOptionalUser:
    """Guest checkout: a missing or broken token means anonymous."""

    @pytest.mark.asyncio
    async def test_no_token_is_anonymous(self, mock_secret):
        from storefront.auth_middleware import get_optional_user_id

        assert await get_optional_user_id(make_request(), None) is None

    @pytest.mark.asyncio
    async def test_invalid_token_is_anonymous(self, mock_secret):
        from storefront.auth_middleware import get_optional_user_id

        assert await get_optional_user_id(make_request(), "Bearer invalid.token.here") is None

    @pytest.mark.asyncio
    async def test_valid_token_returns_user_id(self, mock_secret):
        from storefront.auth_middleware import create_access_token, get_optional_user_id

        token = create_access_token("user-guest-upgrade")

        assert await get_optional_user_id(make_request(), f"Bearer {token}") == "user-guest-upgrade"


class TestRequireAdmin:

    @pytest.mark.asyncio
    async def test_customer_role_is_forbidden(self):
        from storefront.auth_middleware import require_admin

        with pytest.raises(HTTPException) as exc_info:
            await require_admin({"sub": "user-1", "role": "customer"})

        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_admin_role_passes(self):
        from storefront.auth_middleware import require_admin

        assert await require_admin({"sub": "admin-1", "role": "admin"}) == "admin-1"

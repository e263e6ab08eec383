"""
SQLAlchemy Models for the storefront checkout backend.

This package is organized by domain:
- base.py: Base class and mixins
- catalog.py: Product, variant and stock audit models
- cart.py: Session cart lines
- user.py: Customer accounts and saved addresses
- coupon.py: Coupons and redemptions
- order.py: Order and line item models
- payment.py: Pending payments staged for PayTR

All models are re-exported from this module.
"""

# Base
from storefront.models.base import Base, UUIDMixin, TimestampMixin, CreatedAtMixin

# Catalog and cart
from storefront.models.catalog import Product, ProductVariant, StockAdjustment
from storefront.models.cart import CartItem

# Accounts
from storefront.models.user import User, UserAddress

# Checkout
from storefront.models.coupon import Coupon, CouponRedemption
from storefront.models.order import Order, OrderItem
from storefront.models.payment import PendingPayment, PendingPaymentStatus


__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "CreatedAtMixin",

    # Catalog
    "Product",
    "ProductVariant",
    "StockAdjustment",
    "CartItem",

    # Accounts
    "User",
    "UserAddress",

    # Checkout
    "Coupon",
    "CouponRedemption",
    "Order",
    "OrderItem",
    "PendingPayment",
    "PendingPaymentStatus",
]

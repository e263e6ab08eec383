"""
Order models - completed purchases and their line items.
"""

from decimal import Decimal
from typing import Optional, List

from sqlalchemy import String, Text, Numeric, ForeignKey, Index, Integer, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.models.base import Base, UUIDMixin, TimestampMixin, CreatedAtMixin


class Order(Base, UUIDMixin, TimestampMixin):
    """
    Authoritative record of a paid checkout. order_number equals the PayTR
    merchant_oid; the UNIQUE index on it is the last line of defence against
    double materialization.

    status: confirmed, processing, shipped, completed, cancelled
    payment_status: pending, paid, failed, refunded
    """
    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))

    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[str] = mapped_column(String(50), nullable=False)
    shipping_address: Mapped[dict] = mapped_column(JSON, nullable=False)

    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    shipping_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    coupon_code: Mapped[Optional[str]] = mapped_column(String(50))
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    status: Mapped[str] = mapped_column(String(20), default="confirmed", nullable=False)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50))
    payment_status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    # Tracking
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100))
    tracking_url: Mapped[Optional[str]] = mapped_column(Text)
    shipping_carrier: Mapped[Optional[str]] = mapped_column(String(100))

    items: Mapped[List["OrderItem"]] = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_order_email", "customer_email"),
        Index("idx_order_created", "created_at"),
    )


class OrderItem(Base, UUIDMixin, CreatedAtMixin):
    """A line item priced at time of purchase."""
    __tablename__ = "order_items"

    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[Optional[str]] = mapped_column(ForeignKey("products.id", ondelete="SET NULL"))
    variant_id: Mapped[Optional[str]] = mapped_column(ForeignKey("product_variants.id", ondelete="SET NULL"))

    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    variant_details: Mapped[Optional[str]] = mapped_column(Text)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    __table_args__ = (
        Index("idx_orderitem_order", "order_id"),
    )

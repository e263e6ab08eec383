"""
Pending payment model - the staged checkout intent handed to PayTR.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Text, Boolean, DateTime, Numeric, Index, JSON
from sqlalchemy.orm import Mapped, mapped_column

from storefront.models.base import Base, UUIDMixin, TimestampMixin


class PendingPaymentStatus(str, Enum):
    """pending -> token_received -> (completed | failed)"""
    PENDING = "pending"
    TOKEN_RECEIVED = "token_received"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def open_states(cls) -> tuple:
        return (cls.PENDING.value, cls.TOKEN_RECEIVED.value)

    @classmethod
    def terminal_states(cls) -> tuple:
        return (cls.COMPLETED.value, cls.FAILED.value)


class PendingPayment(Base, UUIDMixin, TimestampMixin):
    """
    Full intended order, frozen before any money moves.

    cart_items is a list of snapshot dicts:
        {product_id, variant_id, quantity, unit_price, product_name, variant_details}
    with prices as strings so the JSON round trip is exact.
    """
    __tablename__ = "pending_payments"

    merchant_oid: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    session_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(36))

    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[str] = mapped_column(String(50), nullable=False)
    shipping_address: Mapped[dict] = mapped_column(JSON, nullable=False)
    cart_items: Mapped[list] = mapped_column(JSON, nullable=False)

    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    shipping_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    coupon_code: Mapped[Optional[str]] = mapped_column(String(50))
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    status: Mapped[str] = mapped_column(String(20), default=PendingPaymentStatus.PENDING.value, nullable=False)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text)

    # Deferred account creation (hash computed before payment)
    create_account: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    password_hash: Mapped[Optional[str]] = mapped_column(Text)

    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    @property
    def is_terminal(self) -> bool:
        return self.status in PendingPaymentStatus.terminal_states()

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.utcnow()) > self.expires_at

    __table_args__ = (
        Index("idx_pending_payment_status_expiry", "status", "expires_at"),
    )

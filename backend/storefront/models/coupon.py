"""
Coupon models - discount codes, influencer commission and redemption history.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import String, Text, Boolean, Integer, DateTime, Numeric, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from storefront.models.base import Base, UUIDMixin, TimestampMixin, CreatedAtMixin


class Coupon(Base, UUIDMixin, TimestampMixin):
    """
    A discount code. Codes are case-insensitive and stored upper-cased.

    discount_type: percentage, fixed
    commission_type (influencer codes only): percentage, fixed
    """
    __tablename__ = "coupons"

    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    discount_type: Mapped[str] = mapped_column(String(20), nullable=False)
    discount_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    # Constraints
    min_order_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    usage_limit: Mapped[Optional[int]] = mapped_column(Integer)
    per_user_limit: Mapped[Optional[int]] = mapped_column(Integer)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    starts_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Influencer commission
    is_influencer: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    influencer_name: Mapped[Optional[str]] = mapped_column(String(255))
    commission_type: Mapped[Optional[str]] = mapped_column(String(20))
    commission_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    commission_earned: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    commission_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    redemptions: Mapped[List["CouponRedemption"]] = relationship("CouponRedemption", back_populates="coupon")

    @validates("code")
    def _normalize_code(self, key, value: str) -> str:
        return value.strip().upper()


class CouponRedemption(Base, UUIDMixin, CreatedAtMixin):
    """
    One row per order that used a coupon. The discount actually applied and
    the commission rule in force are recorded here, never recomputed later.
    """
    __tablename__ = "coupon_redemptions"

    coupon_id: Mapped[str] = mapped_column(ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), unique=True, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))

    discount_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    # Commission snapshot
    commission_type: Mapped[Optional[str]] = mapped_column(String(20))
    commission_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    commission_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)

    coupon: Mapped["Coupon"] = relationship("Coupon", back_populates="redemptions")

    __table_args__ = (
        Index("idx_redemption_coupon_user", "coupon_id", "user_id"),
    )

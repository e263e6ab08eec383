"""
Catalog models - products, sellable variants and the stock audit trail.
"""

from decimal import Decimal
from typing import Optional, List

from sqlalchemy import String, Text, Boolean, Integer, Numeric, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.models.base import Base, UUIDMixin, TimestampMixin, CreatedAtMixin


class Product(Base, UUIDMixin, TimestampMixin):
    """A catalog product. Prices on variants override base_price."""
    __tablename__ = "products"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String(255))
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    variants: Mapped[List["ProductVariant"]] = relationship(
        "ProductVariant", back_populates="product", cascade="all, delete-orphan"
    )


class ProductVariant(Base, UUIDMixin, TimestampMixin):
    """A sellable size/color combination with its own stock counter."""
    __tablename__ = "product_variants"

    product_id: Mapped[str] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), nullable=False)

    sku: Mapped[Optional[str]] = mapped_column(String(255), unique=True)
    size: Mapped[Optional[str]] = mapped_column(String(50))
    color: Mapped[Optional[str]] = mapped_column(String(50))
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    product: Mapped["Product"] = relationship("Product", back_populates="variants")

    @property
    def description(self) -> Optional[str]:
        """Human readable variant label, e.g. 'M Siyah'."""
        label = f"{self.size or ''} {self.color or ''}".strip()
        return label or None

    __table_args__ = (
        Index("idx_variant_product", "product_id"),
    )


class StockAdjustment(Base, UUIDMixin, CreatedAtMixin):
    """
    Audit row paired with every ProductVariant.stock mutation.
    adjustment_type: sale, return, manual, restock
    """
    __tablename__ = "stock_adjustments"

    variant_id: Mapped[str] = mapped_column(ForeignKey("product_variants.id", ondelete="CASCADE"), nullable=False)
    order_id: Mapped[Optional[str]] = mapped_column(ForeignKey("orders.id", ondelete="SET NULL"))
    author_id: Mapped[Optional[str]] = mapped_column(String(36))

    adjustment_type: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)  # signed requested delta
    previous_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    new_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        Index("idx_stock_adjustment_variant", "variant_id", "created_at"),
    )

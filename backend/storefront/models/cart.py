"""
Cart models - session-scoped cart lines.
"""

from typing import Optional

from sqlalchemy import String, Integer, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from storefront.models.base import Base, UUIDMixin, CreatedAtMixin


class CartItem(Base, UUIDMixin, CreatedAtMixin):
    """
    One cart line. product_id is what the client added; when variant_id is set
    the variant's own product reference is authoritative at checkout.
    """
    __tablename__ = "cart_items"

    session_id: Mapped[str] = mapped_column(String(255), nullable=False)
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    variant_id: Mapped[Optional[str]] = mapped_column(ForeignKey("product_variants.id", ondelete="CASCADE"))
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    __table_args__ = (
        Index("idx_cart_session", "session_id"),
    )

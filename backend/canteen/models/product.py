"""Nomenclature models: product categories and products."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Boolean, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from canteen.db.base import Base, TimestampMixin


class Category(Base, TimestampMixin):
    """Product category (Dairy, Vegetables, Dry goods...)."""

    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    products: Mapped[list["Product"]] = relationship("Product", back_populates="category")


class Product(Base, TimestampMixin):
    """Product in the nomenclature."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    article: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True
    )
    unit: Mapped[str] = mapped_column(String(20), default="pcs", nullable=False)  # pcs, kg, l
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    category: Mapped[Optional["Category"]] = relationship("Category", back_populates="products")
    stock_balances: Mapped[list["StockBalance"]] = relationship(
        "StockBalance", back_populates="product"
    )


# Forward references
from canteen.models.stock import StockBalance

"""Warehouse model."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from canteen.db.base import Base, TimestampMixin


class Warehouse(Base, TimestampMixin):
    """Physical storage place (main store, kitchen, bar fridge)."""

    __tablename__ = "warehouses"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    stock_balances: Mapped[list["StockBalance"]] = relationship(
        "StockBalance", back_populates="warehouse"
    )
    inventories: Mapped[list["Inventory"]] = relationship(
        "Inventory", back_populates="warehouse"
    )


# Forward references
from canteen.models.stock import StockBalance
from canteen.models.inventory import Inventory

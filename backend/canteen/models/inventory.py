"""Inventory count models: Inventory, InventoryItem and InventoryAdjustment."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from canteen.db.base import Base, TimestampMixin, VersionMixin


class InventoryStatus(str, Enum):
    """Lifecycle of an inventory count. Transitions are strictly linear."""

    DRAFT = "DRAFT"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    APPROVED = "APPROVED"


# Statuses in which count lines may still be written
EDITABLE_STATUSES = (InventoryStatus.DRAFT, InventoryStatus.IN_PROGRESS)


class AdjustmentKind(str, Enum):
    """Which side of the variance an adjustment document corrects."""

    SURPLUS = "SURPLUS"  # counted more than the books: stock-in
    SHORTAGE = "SHORTAGE"  # counted less than the books: stock-out


class Inventory(Base, TimestampMixin):
    """A physical stock count of one warehouse."""

    __tablename__ = "inventories"

    id: Mapped[int] = mapped_column(primary_key=True)
    number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    warehouse_id: Mapped[int] = mapped_column(
        ForeignKey("warehouses.id"), nullable=False, index=True
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    status: Mapped[InventoryStatus] = mapped_column(
        SQLEnum(InventoryStatus), default=InventoryStatus.DRAFT, nullable=False, index=True
    )
    responsible_person_id: Mapped[Optional[int]] = mapped_column(nullable=True, index=True)
    notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    created_by_id: Mapped[Optional[int]] = mapped_column(nullable=True)

    started_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    started_by_id: Mapped[Optional[int]] = mapped_column(nullable=True)
    completed_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_by_id: Mapped[Optional[int]] = mapped_column(nullable=True)
    approved_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by_id: Mapped[Optional[int]] = mapped_column(nullable=True)
    # Set once every adjustment document the variance needs has been created
    adjustments_created_at: Mapped[Optional[dt.datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    warehouse: Mapped["Warehouse"] = relationship("Warehouse", back_populates="inventories")
    items: Mapped[list["InventoryItem"]] = relationship(
        "InventoryItem", back_populates="inventory", cascade="all, delete-orphan",
        order_by="InventoryItem.id",
    )
    adjustments: Mapped[list["InventoryAdjustment"]] = relationship(
        "InventoryAdjustment", back_populates="inventory", order_by="InventoryAdjustment.id",
    )

    @property
    def is_editable(self) -> bool:
        return self.status in EDITABLE_STATUSES


class InventoryItem(Base, VersionMixin):
    """A single product line of an inventory count.

    ``expected_quantity`` and ``price`` are what the books said when the
    sheet was generated and never change afterwards.
    """

    __tablename__ = "inventory_items"
    __table_args__ = (
        UniqueConstraint("inventory_id", "product_id", name="uq_inventory_item_product"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    inventory_id: Mapped[int] = mapped_column(
        ForeignKey("inventories.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"), nullable=False, index=True)
    expected_quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    actual_quantity: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 3), nullable=True)  # None = not counted
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    counted_by_id: Mapped[Optional[int]] = mapped_column(nullable=True)
    counted_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # Relationships
    inventory: Mapped["Inventory"] = relationship("Inventory", back_populates="items")
    product: Mapped["Product"] = relationship("Product")

    @property
    def is_counted(self) -> bool:
        return self.actual_quantity is not None

    @property
    def quantity_variance(self) -> Optional[Decimal]:
        if self.actual_quantity is None:
            return None
        return self.actual_quantity - self.expected_quantity


class InventoryAdjustment(Base):
    """Link between an inventory and an adjustment document it generated."""

    __tablename__ = "inventory_adjustments"
    __table_args__ = (
        UniqueConstraint("inventory_id", "kind", name="uq_inventory_adjustment_kind"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    inventory_id: Mapped[int] = mapped_column(
        ForeignKey("inventories.id"), nullable=False, index=True
    )
    kind: Mapped[AdjustmentKind] = mapped_column(SQLEnum(AdjustmentKind), nullable=False)
    document_id: Mapped[int] = mapped_column(ForeignKey("documents.id"), nullable=False)
    document_number: Mapped[str] = mapped_column(String(30), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    created_by_id: Mapped[Optional[int]] = mapped_column(nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    inventory: Mapped["Inventory"] = relationship("Inventory", back_populates="adjustments")


# Forward references
from canteen.models.warehouse import Warehouse
from canteen.models.product import Product

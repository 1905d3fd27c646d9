"""Accounting document models: Document and DocumentItem."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Date, DateTime, Enum as SQLEnum, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from canteen.db.base import Base, TimestampMixin


class DocumentType(str, Enum):
    """Kinds of stock documents."""

    RECEIPT = "RECEIPT"
    WRITEOFF = "WRITEOFF"
    TRANSFER = "TRANSFER"


class DocumentStatus(str, Enum):
    """Document posting status."""

    DRAFT = "DRAFT"
    APPROVED = "APPROVED"
    CANCELLED = "CANCELLED"


class Document(Base, TimestampMixin):
    """A stock document; approving it writes stock movements."""

    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(primary_key=True)
    number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    type: Mapped[DocumentType] = mapped_column(SQLEnum(DocumentType), nullable=False, index=True)
    status: Mapped[DocumentStatus] = mapped_column(
        SQLEnum(DocumentStatus), default=DocumentStatus.DRAFT, nullable=False, index=True
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    warehouse_from_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("warehouses.id"), nullable=True
    )
    warehouse_to_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("warehouses.id"), nullable=True
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    created_by_id: Mapped[Optional[int]] = mapped_column(nullable=True)
    approved_by_id: Mapped[Optional[int]] = mapped_column(nullable=True)
    approved_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    items: Mapped[list["DocumentItem"]] = relationship(
        "DocumentItem", back_populates="document", cascade="all, delete-orphan",
        order_by="DocumentItem.id",
    )


class DocumentItem(Base):
    """A product line on a document."""

    __tablename__ = "document_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    document_id: Mapped[int] = mapped_column(
        ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    document: Mapped["Document"] = relationship("Document", back_populates="items")

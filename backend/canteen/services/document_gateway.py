"""Document gateway - creates and posts stock documents.

Adjustment generation and inventory approval only depend on
``DocumentGatewayBase``. ``SqlDocumentGateway`` writes to the local
``documents`` tables in the caller's session and leaves committing to the
caller, so a document and whatever links to it land together.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from canteen.core.exceptions import DependencyFailure, InvalidState, NotFound, ValidationError
from canteen.models.document import Document, DocumentItem, DocumentStatus, DocumentType
from canteen.models.stock import MovementType
from canteen.services.numbering import NUMBER_RETRIES, next_document_number
from canteen.services.stock_balance_store import SqlStockBalanceStore, StockBalanceStoreBase

logger = logging.getLogger(__name__)

MONEY_QUANT = Decimal("0.01")


# ============== Data Transfer Objects ==============

@dataclass
class DocumentLine:
    """One product line of a document to be created."""
    product_id: int
    quantity: Decimal
    price: Decimal

    @property
    def total(self) -> Decimal:
        return (Decimal(self.quantity) * Decimal(self.price)).quantize(
            MONEY_QUANT, rounding=ROUND_HALF_UP
        )


@dataclass
class DocumentRef:
    """What callers get back about a document."""
    id: int
    number: str
    type: DocumentType
    status: DocumentStatus
    total_amount: Decimal
    warehouse_from_id: Optional[int] = None
    warehouse_to_id: Optional[int] = None
    line_count: int = 0
    notes: Optional[str] = None


class DocumentGatewayBase(ABC):
    """Abstract base class for the document subsystem."""

    @abstractmethod
    def create_document(
        self,
        doc_type: DocumentType,
        lines: List[DocumentLine],
        warehouse_from_id: Optional[int] = None,
        warehouse_to_id: Optional[int] = None,
        notes: Optional[str] = None,
        actor_id: Optional[int] = None,
        doc_date: Optional[date] = None,
    ) -> DocumentRef:
        """Create a DRAFT document. Raises DependencyFailure on storage errors.

        A number that another writer took first is regenerated up to
        ``NUMBER_RETRIES`` times.
        """
        pass

    @abstractmethod
    def approve_document(self, document_id: int, actor_id: Optional[int] = None) -> DocumentRef:
        """Post a DRAFT document. Approving an approved document is a no-op."""
        pass

    @abstractmethod
    def get_document(self, document_id: int) -> Optional[DocumentRef]:
        pass


def _to_ref(doc: Document) -> DocumentRef:
    return DocumentRef(
        id=doc.id,
        number=doc.number,
        type=doc.type,
        status=doc.status,
        total_amount=Decimal(doc.total_amount or 0),
        warehouse_from_id=doc.warehouse_from_id,
        warehouse_to_id=doc.warehouse_to_id,
        line_count=len(doc.items),
        notes=doc.notes,
    )


class SqlDocumentGateway(DocumentGatewayBase):
    """Document subsystem backed by the local database."""

    def __init__(self, db: Session, balance_store: Optional[StockBalanceStoreBase] = None):
        self.db = db
        self.balance_store = balance_store or SqlStockBalanceStore(db)

    def create_document(
        self,
        doc_type: DocumentType,
        lines: List[DocumentLine],
        warehouse_from_id: Optional[int] = None,
        warehouse_to_id: Optional[int] = None,
        notes: Optional[str] = None,
        actor_id: Optional[int] = None,
        doc_date: Optional[date] = None,
    ) -> DocumentRef:
        if not lines:
            raise ValidationError("A document needs at least one line", field="items")
        if doc_type == DocumentType.RECEIPT and warehouse_to_id is None:
            raise ValidationError("Receipt requires a destination warehouse", field="warehouse_to_id")
        if doc_type == DocumentType.WRITEOFF and warehouse_from_id is None:
            raise ValidationError("Write-off requires a source warehouse", field="warehouse_from_id")

        doc_date = doc_date or date.today()
        for attempt in range(1, NUMBER_RETRIES + 1):
            number = next_document_number(self.db, doc_type, doc_date)
            try:
                with self.db.begin_nested():
                    doc = Document(
                        number=number,
                        type=doc_type,
                        status=DocumentStatus.DRAFT,
                        date=doc_date,
                        warehouse_from_id=warehouse_from_id,
                        warehouse_to_id=warehouse_to_id,
                        notes=notes,
                        created_by_id=actor_id,
                        total_amount=sum((line.total for line in lines), Decimal("0")),
                    )
                    for line in lines:
                        doc.items.append(DocumentItem(
                            product_id=line.product_id,
                            quantity=Decimal(line.quantity),
                            price=Decimal(line.price),
                            total=line.total,
                        ))
                    self.db.add(doc)
                    self.db.flush()
            except IntegrityError as e:
                taken = self.db.execute(select(Document.id).where(Document.number == number)).first()
                if taken is None:
                    raise DependencyFailure(
                        f"Could not create {doc_type.value} document: {e.__class__.__name__}",
                        dependency="document_subsystem",
                    ) from e
                logger.warning(
                    "Document number %s taken, retrying (%d/%d)", number, attempt, NUMBER_RETRIES
                )
                continue
            except SQLAlchemyError as e:
                raise DependencyFailure(
                    f"Could not create {doc_type.value} document: {e.__class__.__name__}",
                    dependency="document_subsystem",
                ) from e
            break
        else:
            raise DependencyFailure(
                f"Could not allocate a {doc_type.value} document number after {NUMBER_RETRIES} attempts",
                dependency="document_subsystem",
            )

        logger.info(
            "Created %s document %s (%d lines, total %s) by user %s",
            doc_type.value, doc.number, len(lines), doc.total_amount, actor_id,
        )
        return _to_ref(doc)

    def get_document(self, document_id: int) -> Optional[DocumentRef]:
        doc = self.db.get(Document, document_id)
        return _to_ref(doc) if doc else None

    def approve_document(self, document_id: int, actor_id: Optional[int] = None) -> DocumentRef:
        try:
            result = self.db.execute(
                update(Document)
                .where(Document.id == document_id, Document.status == DocumentStatus.DRAFT)
                .values(
                    status=DocumentStatus.APPROVED,
                    approved_by_id=actor_id,
                    approved_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            raise DependencyFailure(
                f"Could not approve document {document_id}", dependency="document_subsystem"
            ) from e

        doc = self.db.execute(
            select(Document).where(Document.id == document_id).execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if doc is None:
            raise NotFound(f"Document {document_id} not found")

        if result.rowcount == 0:
            if doc.status == DocumentStatus.APPROVED:
                logger.info("Document %s already approved, skipping", doc.number)
                return _to_ref(doc)
            raise InvalidState(
                f"Document {doc.number} cannot be approved from status {doc.status.value}",
                current_status=doc.status.value,
            )

        for item in doc.items:
            if doc.type in (DocumentType.RECEIPT, DocumentType.TRANSFER):
                self.balance_store.apply_movement(
                    doc.warehouse_to_id, item.product_id, item.quantity, item.price,
                    MovementType.IN if doc.type == DocumentType.RECEIPT else MovementType.TRANSFER_IN,
                    document_id=doc.id, actor_id=actor_id,
                )
            if doc.type in (DocumentType.WRITEOFF, DocumentType.TRANSFER):
                self.balance_store.apply_movement(
                    doc.warehouse_from_id, item.product_id, -item.quantity, item.price,
                    MovementType.WRITEOFF if doc.type == DocumentType.WRITEOFF else MovementType.TRANSFER_OUT,
                    document_id=doc.id, actor_id=actor_id,
                )

        logger.info("Approved document %s (%d lines) by user %s", doc.number, len(doc.items), actor_id)
        return _to_ref(doc)

"""Adjustment documents from a completed inventory.

Surplus lines become one RECEIPT into the counted warehouse, shortage lines
one WRITEOFF out of it (absolute quantities, frozen prices). Each document is
committed on its own together with its ``InventoryAdjustment`` link, so:

- a kind that already has a document is never created again;
- if the receipt is saved and the write-off fails, the receipt stays, the
  caller gets PartialFailure listing both outcomes, and a retry only creates
  the missing write-off.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from canteen.core.exceptions import DependencyFailure, InventoryError, PartialFailure
from canteen.models.document import DocumentType
from canteen.models.inventory import (
    AdjustmentKind,
    Inventory,
    InventoryAdjustment,
    InventoryStatus,
)
from canteen.services.document_gateway import (
    DocumentGatewayBase,
    DocumentLine,
    DocumentRef,
    SqlDocumentGateway,
)
from canteen.services.inventory.common import get_inventory, require_status, utcnow
from canteen.services.inventory.variance_analyzer import VarianceAnalyzer, VarianceLine

logger = logging.getLogger(__name__)

NO_VARIANCE = "no-variance"
ALREADY_ADJUSTED = "already-adjusted"

DOCUMENT_TYPES = {
    AdjustmentKind.SURPLUS: DocumentType.RECEIPT,
    AdjustmentKind.SHORTAGE: DocumentType.WRITEOFF,
}


@dataclass
class AdjustmentOutcome:
    """What happened to one adjustment kind during a call."""
    kind: AdjustmentKind
    ok: bool
    document: Optional[DocumentRef] = None
    already_existed: bool = False
    error: Optional[str] = None
    cause: Optional[Exception] = field(default=None, repr=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "ok": self.ok,
            "already_existed": self.already_existed,
            "document_id": self.document.id if self.document else None,
            "document_number": self.document.number if self.document else None,
            "error": self.error,
        }


@dataclass
class AdjustmentResult:
    inventory_id: int
    created: List[DocumentRef] = field(default_factory=list)
    documents: List[DocumentRef] = field(default_factory=list)
    already_created: bool = False
    reason: Optional[str] = None


class AdjustmentGenerator:
    """Turns the variance of a COMPLETED inventory into stock documents."""

    def __init__(
        self,
        db: Session,
        document_gateway: Optional[DocumentGatewayBase] = None,
        analyzer: Optional[VarianceAnalyzer] = None,
    ):
        self.db = db
        self.document_gateway = document_gateway or SqlDocumentGateway(db)
        self.analyzer = analyzer or VarianceAnalyzer(db)

    def _existing_refs(self, inventory_id: int) -> Dict[AdjustmentKind, DocumentRef]:
        links = self.db.execute(
            select(InventoryAdjustment)
            .where(InventoryAdjustment.inventory_id == inventory_id)
            .order_by(InventoryAdjustment.id)
        ).scalars().all()
        refs = {}
        for link in links:
            ref = self.document_gateway.get_document(link.document_id)
            if ref is None:
                raise DependencyFailure(
                    f"Adjustment document {link.document_number} is missing",
                    dependency="document_subsystem",
                )
            refs[link.kind] = ref
        return refs

    def list_adjustments(self, inventory_id: int) -> List[DocumentRef]:
        get_inventory(self.db, inventory_id)
        return list(self._existing_refs(inventory_id).values())

    @staticmethod
    def _lines(kind: AdjustmentKind, variances: List[VarianceLine]) -> List[DocumentLine]:
        return [
            DocumentLine(
                product_id=v.product_id,
                quantity=abs(v.quantity_variance),
                price=v.price,
            )
            for v in variances
        ]

    def _create_one(
        self,
        inventory: Inventory,
        kind: AdjustmentKind,
        variances: List[VarianceLine],
        actor_id: Optional[int],
    ) -> AdjustmentOutcome:
        doc_type = DOCUMENT_TYPES[kind]
        label = "surplus" if kind == AdjustmentKind.SURPLUS else "shortage"
        warehouse = {"warehouse_to_id": inventory.warehouse_id} if kind == AdjustmentKind.SURPLUS \
            else {"warehouse_from_id": inventory.warehouse_id}

        try:
            ref = self.document_gateway.create_document(
                doc_type,
                self._lines(kind, variances),
                notes=f"Inventory {inventory.number}: {label} adjustment",
                actor_id=actor_id,
                doc_date=date.today(),
                **warehouse,
            )
            self.db.add(InventoryAdjustment(
                inventory_id=inventory.id,
                kind=kind,
                document_id=ref.id,
                document_number=ref.number,
                total_amount=ref.total_amount,
                created_by_id=actor_id,
            ))
            self.db.commit()
        except IntegrityError:
            # Another request linked this kind first; its document wins
            self.db.rollback()
            existing = self._existing_refs(inventory.id).get(kind)
            if existing is None:
                raise
            logger.info("Inventory %s: %s adjustment created concurrently", inventory.number, label)
            return AdjustmentOutcome(kind, True, document=existing, already_existed=True)
        except (InventoryError, SQLAlchemyError) as e:
            self.db.rollback()
            message = e.message if isinstance(e, InventoryError) else f"{e.__class__.__name__}"
            logger.error(
                "Inventory %s: %s adjustment failed: %s", inventory.number, label, message
            )
            return AdjustmentOutcome(kind, False, error=message, cause=e)

        logger.info(
            "Inventory %s: created %s %s for %d lines, total %s",
            inventory.number, doc_type.value, ref.number, len(variances), ref.total_amount,
        )
        return AdjustmentOutcome(kind, True, document=ref)

    def create_adjustments(self, inventory_id: int, actor_id: Optional[int] = None) -> AdjustmentResult:
        """Create whichever adjustment documents the variance still needs."""
        inventory = get_inventory(self.db, inventory_id)
        require_status(inventory, (InventoryStatus.COMPLETED,), "create adjustments")

        report = self.analyzer.analyze(inventory_id, 0)
        needed = {
            AdjustmentKind.SURPLUS: report.surplus_lines,
            AdjustmentKind.SHORTAGE: report.shortage_lines,
        }
        needed = {kind: lines for kind, lines in needed.items() if lines}

        result = AdjustmentResult(inventory_id=inventory_id)
        if not needed:
            result.reason = NO_VARIANCE
            logger.info("Inventory %s: no variance, no adjustments", inventory.number)
            return result

        existing = self._existing_refs(inventory_id)
        missing = [kind for kind in needed if kind not in existing]
        if not missing:
            result.documents = list(existing.values())
            result.already_created = True
            result.reason = ALREADY_ADJUSTED
            return result

        outcomes = [
            AdjustmentOutcome(kind, True, document=existing[kind], already_existed=True)
            for kind in needed if kind in existing
        ]
        for kind in missing:
            outcomes.append(self._create_one(inventory, kind, needed[kind], actor_id))

        failed = [o for o in outcomes if not o.ok]
        if not failed:
            self.db.execute(
                update(Inventory)
                .where(
                    Inventory.id == inventory_id,
                    Inventory.status == InventoryStatus.COMPLETED,
                    Inventory.adjustments_created_at.is_(None),
                )
                .values(adjustments_created_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
            result.created = [o.document for o in outcomes if not o.already_existed]
            result.documents = [o.document for o in outcomes]
            return result

        details = [o.to_dict() for o in outcomes]
        if len(failed) == len(outcomes):
            raise DependencyFailure(
                f"Could not create adjustment documents for inventory {inventory.number}: "
                f"{failed[0].error}",
                dependency="document_subsystem",
                details=details,
            ) from failed[0].cause
        raise PartialFailure(
            f"Some adjustment documents for inventory {inventory.number} were created, "
            f"{len(failed)} failed",
            details=details,
        ) from failed[0].cause

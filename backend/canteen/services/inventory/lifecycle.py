"""Inventory lifecycle - creation, status transitions, approval, deletion.

    DRAFT -> IN_PROGRESS -> COMPLETED -> APPROVED

Transitions are linear. Each one is a single guarded UPDATE
(``... WHERE id = :id AND status = :expected``), so when two people press
"complete" at the same moment exactly one of them wins and the other gets
InvalidState instead of a double transition.
"""

import logging
from datetime import date
from typing import Any, Dict, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from canteen.core.config import settings
from canteen.core.exceptions import InvalidState, NotFound, ValidationError
from canteen.models.inventory import (
    AdjustmentKind,
    Inventory,
    InventoryAdjustment,
    InventoryItem,
    InventoryStatus,
)
from canteen.models.warehouse import Warehouse
from canteen.services.document_gateway import DocumentGatewayBase, SqlDocumentGateway
from canteen.services.inventory.common import (
    diagnose_guard_miss,
    get_inventory,
    require_status,
    save_new_inventory,
    utcnow,
)
from canteen.services.inventory.variance_analyzer import VarianceAnalyzer

logger = logging.getLogger(__name__)

# Header fields may still be corrected after counting finished, until approval
HEADER_EDITABLE_STATUSES = (
    InventoryStatus.DRAFT,
    InventoryStatus.IN_PROGRESS,
    InventoryStatus.COMPLETED,
)
HEADER_FIELDS = ("date", "responsible_person_id", "notes")


class InventoryLifecycle:
    """Creates inventories and moves them through their statuses."""

    def __init__(
        self,
        db: Session,
        document_gateway: Optional[DocumentGatewayBase] = None,
        post_adjustments: Optional[bool] = None,
    ):
        self.db = db
        self.document_gateway = document_gateway or SqlDocumentGateway(db)
        if post_adjustments is None:
            post_adjustments = settings.post_adjustments_on_approve
        self.post_adjustments = post_adjustments

    # ------------------------------------------------------------------ create

    def create(
        self,
        warehouse_id: int,
        inventory_date: date,
        actor_id: Optional[int] = None,
        responsible_person_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Inventory:
        """Create an empty DRAFT inventory; lines are added later."""
        if self.db.get(Warehouse, warehouse_id) is None:
            raise NotFound(f"Warehouse {warehouse_id} not found", field="warehouse_id")

        def build(number: str) -> Inventory:
            inventory = Inventory(
                number=number,
                warehouse_id=warehouse_id,
                date=inventory_date,
                status=InventoryStatus.DRAFT,
                responsible_person_id=responsible_person_id,
                notes=notes,
                created_by_id=actor_id,
            )
            self.db.add(inventory)
            return inventory

        inventory = save_new_inventory(self.db, build)
        logger.info(
            "Created inventory %s (id=%s) for warehouse %s by user %s",
            inventory.number, inventory.id, warehouse_id, actor_id,
        )
        return inventory

    # ------------------------------------------------------------- transitions

    def _transition(
        self,
        inventory_id: int,
        expected: InventoryStatus,
        target: InventoryStatus,
        action: str,
        actor_id: Optional[int],
        values: Dict[str, Any],
    ) -> Inventory:
        result = self.db.execute(
            update(Inventory)
            .where(Inventory.id == inventory_id, Inventory.status == expected)
            .values(status=target, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            raise diagnose_guard_miss(self.db, inventory_id, (expected,), action)

        self.db.commit()
        inventory = get_inventory(self.db, inventory_id)
        logger.info(
            "Inventory %s: %s -> %s by user %s",
            inventory.number, expected.value, target.value, actor_id,
        )
        return inventory

    def start_counting(self, inventory_id: int, actor_id: Optional[int] = None) -> Inventory:
        return self._transition(
            inventory_id, InventoryStatus.DRAFT, InventoryStatus.IN_PROGRESS, "start counting", actor_id,
            {"started_at": utcnow(), "started_by_id": actor_id},
        )

    def complete_counting(self, inventory_id: int, actor_id: Optional[int] = None) -> Inventory:
        """Close the counting phase. Uncounted lines stay uncounted."""
        return self._transition(
            inventory_id, InventoryStatus.IN_PROGRESS, InventoryStatus.COMPLETED, "complete counting", actor_id,
            {"completed_at": utcnow(), "completed_by_id": actor_id},
        )

    def _reject_incomplete_adjustments(self, inventory: Inventory, links) -> None:
        """Refuse approval while a failed adjustment run left a kind without its document."""
        report = VarianceAnalyzer(self.db).analyze(inventory.id, 0)
        needed = []
        if report.surplus_lines:
            needed.append(AdjustmentKind.SURPLUS)
        if report.shortage_lines:
            needed.append(AdjustmentKind.SHORTAGE)
        linked = {link.kind for link in links}
        missing = [kind.value for kind in needed if kind not in linked]
        if not missing:
            return
        logger.warning(
            "Inventory %s: approval refused, adjustments missing for %s",
            inventory.number, missing,
        )
        raise InvalidState(
            f"Cannot approve: inventory {inventory.number} is missing its "
            f"{', '.join(missing)} adjustment document; create adjustments again first",
            current_status=inventory.status.value,
            details=[{"kind": kind} for kind in missing],
        )

    def approve(self, inventory_id: int, actor_id: Optional[int] = None) -> Inventory:
        """Approve a completed inventory. Terminal.

        When ``post_adjustments`` is on, every linked adjustment document is
        approved first, in the same transaction as the status flip. Documents
        that are already approved are skipped, so retrying a failed approve
        never posts a movement twice. An inventory whose adjustment run failed
        half way is not approved until the missing document exists.
        """
        inventory = get_inventory(self.db, inventory_id)
        require_status(inventory, (InventoryStatus.COMPLETED,), "approve")

        links = self.db.execute(
            select(InventoryAdjustment)
            .where(InventoryAdjustment.inventory_id == inventory_id)
            .order_by(InventoryAdjustment.id)
        ).scalars().all()
        if links and inventory.adjustments_created_at is None:
            self._reject_incomplete_adjustments(inventory, links)

        if self.post_adjustments:
            try:
                for link in links:
                    self.document_gateway.approve_document(link.document_id, actor_id=actor_id)
            except Exception:
                self.db.rollback()
                raise

        return self._transition(
            inventory_id, InventoryStatus.COMPLETED, InventoryStatus.APPROVED, "approve", actor_id,
            {"approved_at": utcnow(), "approved_by_id": actor_id},
        )

    # ------------------------------------------------------------------ header

    def update_header(self, inventory_id: int, changes: Dict[str, Any]) -> Inventory:
        """Change date, responsible person or notes.

        ``changes`` holds only the fields the caller actually sent. Status and
        warehouse cannot be changed here.
        """
        unknown = set(changes) - set(HEADER_FIELDS)
        if unknown:
            field = sorted(unknown)[0]
            raise ValidationError(f"Field '{field}' cannot be changed", field=field)
        if "date" in changes and changes["date"] is None:
            raise ValidationError("Inventory date cannot be empty", field="date")

        if not changes:
            return get_inventory(self.db, inventory_id)

        result = self.db.execute(
            update(Inventory)
            .where(
                Inventory.id == inventory_id,
                Inventory.status.in_(HEADER_EDITABLE_STATUSES),
            )
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            raise diagnose_guard_miss(self.db, inventory_id, HEADER_EDITABLE_STATUSES, "update")

        self.db.commit()
        inventory = get_inventory(self.db, inventory_id)
        logger.info("Inventory %s header updated: %s", inventory.number, sorted(changes))
        return inventory

    # ------------------------------------------------------------------ delete

    def delete(self, inventory_id: int, actor_id: Optional[int] = None) -> None:
        """Delete a DRAFT inventory together with its lines."""
        inventory = get_inventory(self.db, inventory_id)
        number = inventory.number
        require_status(inventory, (InventoryStatus.DRAFT,), "delete")

        still_draft = select(Inventory.id).where(
            Inventory.id == inventory_id, Inventory.status == InventoryStatus.DRAFT
        )
        self.db.execute(
            delete(InventoryItem)
            .where(InventoryItem.inventory_id.in_(still_draft))
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(
            delete(Inventory)
            .where(Inventory.id == inventory_id, Inventory.status == InventoryStatus.DRAFT)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            raise diagnose_guard_miss(self.db, inventory_id, (InventoryStatus.DRAFT,), "delete")

        self.db.commit()
        logger.info("Deleted inventory %s (id=%s) by user %s", number, inventory_id, actor_id)

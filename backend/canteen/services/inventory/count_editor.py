"""Count editor - records what was physically counted.

Counts are last-writer-wins: two people typing a number for the same line
both succeed and the later save is kept. A caller that wants to be told about
an intervening save passes ``expected_version`` (the item's ``version`` as it
last read it) and gets VersionConflict instead.

Every write is one guarded UPDATE that also re-checks that the parent
inventory is still DRAFT or IN_PROGRESS, so a count can never land on an
inventory that was completed a moment earlier.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from canteen.core.exceptions import (
    InvalidState,
    InventoryError,
    NotFound,
    ValidationError,
    VersionConflict,
)
from canteen.models.inventory import (
    EDITABLE_STATUSES,
    Inventory,
    InventoryItem,
    InventoryStatus,
)
from canteen.models.product import Product
from canteen.services.inventory.common import (
    diagnose_guard_miss,
    get_inventory,
    require_status,
    utcnow,
)
from canteen.services.stock_balance_store import SqlStockBalanceStore, StockBalanceStoreBase

logger = logging.getLogger(__name__)

# Quantities are stored as Numeric(12, 3)
QUANTITY_PLACES = 3
MAX_QUANTITY = Decimal("999999999.999")

UNSET: Any = object()


@dataclass
class CountEntry:
    """One line of a bulk count submission."""
    item_id: int
    actual_quantity: Decimal
    notes: Optional[str] = UNSET
    expected_version: Optional[int] = None


@dataclass
class LineOutcome:
    item_id: int
    ok: bool
    version: Optional[int] = None
    error: Optional[str] = None
    code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"item_id": self.item_id, "ok": self.ok}
        if self.ok:
            data["version"] = self.version
        else:
            data["error"] = self.error
            data["code"] = self.code
        return data


@dataclass
class BulkCountResult:
    inventory_id: int
    results: List[LineOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    @property
    def all_ok(self) -> bool:
        return self.failed == 0


def validate_quantity(value, item_id: Optional[int] = None, field_name: str = "actual_quantity") -> Decimal:
    """Reject negative, non-finite and over-precise quantities."""
    try:
        quantity = Decimal(str(value))
    except (ArithmeticError, ValueError, TypeError) as e:
        raise ValidationError(f"'{value}' is not a number", field=field_name, item_id=item_id) from e

    if not quantity.is_finite():
        raise ValidationError("Quantity must be a finite number", field=field_name, item_id=item_id)
    if quantity < 0:
        raise ValidationError(
            f"Quantity cannot be negative (got {quantity})", field=field_name, item_id=item_id
        )
    if quantity > MAX_QUANTITY:
        raise ValidationError(f"Quantity {quantity} is too large", field=field_name, item_id=item_id)
    if quantity.normalize().as_tuple().exponent < -QUANTITY_PLACES:
        raise ValidationError(
            f"Quantity allows at most {QUANTITY_PLACES} decimal places",
            field=field_name, item_id=item_id,
        )
    return quantity


class CountEditor:
    """Writes actual quantities onto inventory lines."""

    def __init__(self, db: Session, balance_store: Optional[StockBalanceStoreBase] = None):
        self.db = db
        self.balance_store = balance_store or SqlStockBalanceStore(db)

    # ------------------------------------------------------------ single line

    def set_actual(
        self,
        item_id: int,
        actual_quantity,
        actor_id: Optional[int] = None,
        notes: Optional[str] = UNSET,
        expected_version: Optional[int] = None,
    ) -> InventoryItem:
        """Record the counted quantity of one line.

        ``notes`` is left untouched unless passed; pass None to clear it.
        """
        quantity = validate_quantity(actual_quantity, item_id=item_id)
        version = self._write_count(
            item_id, quantity, actor_id, notes=notes, expected_version=expected_version
        )
        self.db.commit()

        item = self.db.get(InventoryItem, item_id)
        logger.info(
            "Counted item %s of inventory %s: %s (v%s) by user %s",
            item_id, item.inventory_id, quantity, version, actor_id,
        )
        return item

    def _write_count(
        self,
        item_id: int,
        quantity: Decimal,
        actor_id: Optional[int],
        notes: Optional[str] = UNSET,
        expected_version: Optional[int] = None,
    ) -> int:
        editable_parents = select(Inventory.id).where(Inventory.status.in_(EDITABLE_STATUSES))
        stmt = update(InventoryItem).where(
            InventoryItem.id == item_id,
            InventoryItem.inventory_id.in_(editable_parents),
        )
        if expected_version is not None:
            stmt = stmt.where(InventoryItem.version == expected_version)

        values: Dict[str, Any] = {
            "actual_quantity": quantity,
            "counted_by_id": actor_id,
            "counted_at": utcnow(),
            "version": InventoryItem.version + 1,
        }
        if notes is not UNSET:
            values["notes"] = notes

        result = self.db.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise self._diagnose_write_miss(item_id, expected_version)

        return self.db.execute(
            select(InventoryItem.version).where(InventoryItem.id == item_id)
        ).scalar_one()

    def _diagnose_write_miss(self, item_id: int, expected_version: Optional[int]) -> InventoryError:
        row = self.db.execute(
            select(InventoryItem.version, Inventory.number, Inventory.status)
            .join(Inventory, Inventory.id == InventoryItem.inventory_id)
            .where(InventoryItem.id == item_id)
        ).first()
        if row is None:
            return NotFound(f"Inventory item {item_id} not found", item_id=item_id)

        version, number, status = row
        if status not in EDITABLE_STATUSES:
            return InvalidState(
                f"Counts of inventory {number} are locked (status {status.value})",
                current_status=status.value,
                item_id=item_id,
            )
        return VersionConflict(item_id, expected_version, version)

    # -------------------------------------------------------------- bulk save

    def bulk_set_actual(
        self,
        inventory_id: int,
        entries: Sequence[CountEntry],
        actor_id: Optional[int] = None,
    ) -> BulkCountResult:
        """Save many counts of one inventory.

        All entries are validated up front; if any is malformed nothing is
        written and one ValidationError lists every bad entry. Valid batches
        are then written line by line, each inside its own savepoint, and the
        result reports every line's outcome.
        """
        inventory = get_inventory(self.db, inventory_id)
        require_status(inventory, EDITABLE_STATUSES, "record counts")

        if not entries:
            raise ValidationError("No count lines submitted", field="items")

        item_ids = set(self.db.execute(
            select(InventoryItem.id).where(InventoryItem.inventory_id == inventory_id)
        ).scalars().all())

        problems: List[Dict[str, Any]] = []
        quantities: Dict[int, Decimal] = {}
        seen = set()
        for index, entry in enumerate(entries):
            if entry.item_id in seen:
                problems.append({
                    "index": index, "item_id": entry.item_id, "field": "item_id",
                    "message": f"Item {entry.item_id} appears more than once",
                })
                continue
            seen.add(entry.item_id)

            if entry.item_id not in item_ids:
                problems.append({
                    "index": index, "item_id": entry.item_id, "field": "item_id",
                    "message": f"Item {entry.item_id} does not belong to inventory {inventory.number}",
                })
                continue

            try:
                quantities[entry.item_id] = validate_quantity(entry.actual_quantity, item_id=entry.item_id)
            except ValidationError as e:
                problems.append({
                    "index": index, "item_id": entry.item_id, "field": e.field, "message": e.message,
                })

        if problems:
            raise ValidationError(
                f"{len(problems)} of {len(entries)} count lines are invalid",
                field="items",
                details=problems,
            )

        result = BulkCountResult(inventory_id=inventory_id)
        for entry in entries:
            try:
                with self.db.begin_nested():
                    version = self._write_count(
                        entry.item_id,
                        quantities[entry.item_id],
                        actor_id,
                        notes=entry.notes,
                        expected_version=entry.expected_version,
                    )
                result.results.append(LineOutcome(entry.item_id, True, version=version))
            except InventoryError as e:
                result.results.append(
                    LineOutcome(entry.item_id, False, error=e.message, code=e.code)
                )
            except SQLAlchemyError as e:
                logger.warning("Count write failed for item %s: %s", entry.item_id, e)
                result.results.append(
                    LineOutcome(entry.item_id, False, error="Could not save count", code="dependency_failure")
                )

        self.db.commit()
        logger.info(
            "Bulk count on inventory %s by user %s: %d saved, %d failed",
            inventory.number, actor_id, result.succeeded, result.failed,
        )
        return result

    # --------------------------------------------------------- sheet editing

    def add_item(
        self,
        inventory_id: int,
        product_id: int,
        actor_id: Optional[int] = None,
        actual_quantity=None,
        notes: Optional[str] = None,
    ) -> InventoryItem:
        """Add a line for a product that is not on the sheet yet.

        Expected quantity and price are taken from the current balance
        (zero when the product has never been stocked in this warehouse).
        """
        inventory = get_inventory(self.db, inventory_id)
        require_status(inventory, EDITABLE_STATUSES, "add a line")

        if self.db.get(Product, product_id) is None:
            raise NotFound(f"Product {product_id} not found", field="product_id")

        duplicate = self.db.execute(
            select(InventoryItem.id).where(
                InventoryItem.inventory_id == inventory_id,
                InventoryItem.product_id == product_id,
            )
        ).scalar_one_or_none()
        if duplicate is not None:
            raise ValidationError(
                f"Product {product_id} is already on inventory {inventory.number}",
                field="product_id",
                item_id=duplicate,
            )

        quantity = None
        if actual_quantity is not None:
            quantity = validate_quantity(actual_quantity)

        balance = self.balance_store.get_balance(inventory.warehouse_id, product_id)
        item = InventoryItem(
            inventory_id=inventory_id,
            product_id=product_id,
            expected_quantity=balance.quantity if balance else Decimal("0"),
            price=balance.avg_price if balance else Decimal("0"),
            actual_quantity=quantity,
            notes=notes,
            counted_by_id=actor_id if quantity is not None else None,
            counted_at=utcnow() if quantity is not None else None,
        )
        self.db.add(item)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ValidationError(
                f"Product {product_id} is already on this inventory", field="product_id"
            ) from e

        self.db.refresh(item)
        logger.info(
            "Added product %s to inventory %s as item %s by user %s",
            product_id, inventory.number, item.id, actor_id,
        )
        return item

    def remove_item(self, inventory_id: int, item_id: int) -> None:
        """Remove a line from a DRAFT inventory."""
        item = self.db.get(InventoryItem, item_id)
        if item is None or item.inventory_id != inventory_id:
            raise NotFound(
                f"Item {item_id} not found in inventory {inventory_id}", item_id=item_id
            )

        still_draft = select(Inventory.id).where(
            Inventory.id == inventory_id, Inventory.status == InventoryStatus.DRAFT
        )
        result = self.db.execute(
            delete(InventoryItem)
            .where(InventoryItem.id == item_id, InventoryItem.inventory_id.in_(still_draft))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            raise diagnose_guard_miss(self.db, inventory_id, (InventoryStatus.DRAFT,), "remove a line")

        self.db.commit()
        logger.info("Removed item %s from inventory %s", item_id, inventory_id)

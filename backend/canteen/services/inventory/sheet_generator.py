"""Count sheet generation from current stock balances.

The sheet is a snapshot: expected quantities and prices are copied from the
balance store once, in a single query, and never re-read. When an inventory
is created from the sheet, the read and the inserts share one transaction
(and, on PostgreSQL, the balance rows are share-locked until it commits).
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from canteen.core.config import settings
from canteen.core.exceptions import NotFound
from canteen.models.inventory import Inventory, InventoryItem, InventoryStatus
from canteen.services.inventory.common import save_new_inventory
from canteen.services.stock_balance_store import (
    BalanceSnapshot,
    SqlStockBalanceStore,
    StockBalanceStoreBase,
)

logger = logging.getLogger(__name__)


@dataclass
class SheetLine:
    """One row of a count sheet."""
    product_id: int
    product_name: str
    category_id: Optional[int]
    category_name: str
    unit: str
    expected_quantity: Decimal
    price: Decimal
    total_value: Decimal

    @classmethod
    def from_balance(cls, balance: BalanceSnapshot) -> "SheetLine":
        return cls(
            product_id=balance.product_id,
            product_name=balance.product_name,
            category_id=balance.category_id,
            category_name=balance.category_name,
            unit=balance.unit,
            expected_quantity=balance.quantity,
            price=balance.avg_price,
            total_value=balance.total_value,
        )


class SheetGenerator:
    """Builds count sheets and seeds inventories from them."""

    def __init__(
        self,
        db: Session,
        balance_store: Optional[StockBalanceStoreBase] = None,
        lock_balances: Optional[bool] = None,
    ):
        self.db = db
        self.balance_store = balance_store or SqlStockBalanceStore(db)
        if lock_balances is None:
            lock_balances = settings.lock_balances_on_snapshot
        self.lock_balances = lock_balances

    def generate(
        self,
        warehouse_id: int,
        category_ids: Optional[Sequence[int]] = None,
        product_ids: Optional[Sequence[int]] = None,
        include_zero_balances: bool = False,
    ) -> List[SheetLine]:
        """Return the count sheet for a warehouse.

        Category and product filters are a union: a product is on the sheet
        when it is in one of the categories or listed explicitly. An empty
        result is not an error.
        """
        if not self.balance_store.warehouse_exists(warehouse_id):
            raise NotFound(f"Warehouse {warehouse_id} not found", field="warehouse_id")

        balances = self.balance_store.list_balances(
            warehouse_id,
            category_ids=category_ids,
            product_ids=product_ids,
            include_zero=include_zero_balances,
            lock=self.lock_balances,
        )
        return [SheetLine.from_balance(b) for b in balances]

    def create_from_balances(
        self,
        warehouse_id: int,
        inventory_date: date,
        actor_id: Optional[int] = None,
        responsible_person_id: Optional[int] = None,
        notes: Optional[str] = None,
        category_ids: Optional[Sequence[int]] = None,
        product_ids: Optional[Sequence[int]] = None,
        include_zero_balances: bool = False,
    ) -> Inventory:
        """Create a DRAFT inventory with one line per sheet row."""

        def build(number: str) -> Inventory:
            sheet = self.generate(
                warehouse_id,
                category_ids=category_ids,
                product_ids=product_ids,
                include_zero_balances=include_zero_balances,
            )
            inventory = Inventory(
                number=number,
                warehouse_id=warehouse_id,
                date=inventory_date,
                status=InventoryStatus.DRAFT,
                responsible_person_id=responsible_person_id,
                notes=notes,
                created_by_id=actor_id,
            )
            inventory.items = [
                InventoryItem(
                    product_id=line.product_id,
                    expected_quantity=line.expected_quantity,
                    price=line.price,
                )
                for line in sheet
            ]
            self.db.add(inventory)
            return inventory

        inventory = save_new_inventory(self.db, build)
        logger.info(
            "Created inventory %s (id=%s) from balances of warehouse %s: %d lines, by user %s",
            inventory.number, inventory.id, warehouse_id, len(inventory.items), actor_id,
        )
        return inventory

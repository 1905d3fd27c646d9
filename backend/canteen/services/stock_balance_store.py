"""Stock balance store - per-warehouse quantities and average cost.

The reconciliation engine only talks to the store through
``StockBalanceStoreBase``. ``SqlStockBalanceStore`` reads and writes the
``stock_balances`` table in the caller's session, so a sheet snapshot and the
inventory created from it share one transaction.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Sequence

import logging

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from canteen.core.exceptions import DependencyFailure
from canteen.models.product import Category, Product
from canteen.models.stock import MovementType, StockBalance, StockMovement
from canteen.models.warehouse import Warehouse

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"
PRICE_QUANT = Decimal("0.01")
QTY_QUANT = Decimal("0.001")


# ============== Data Transfer Objects ==============

@dataclass
class BalanceSnapshot:
    """Book quantity and average price of one product in one warehouse."""
    warehouse_id: int
    product_id: int
    product_name: str
    unit: str
    quantity: Decimal
    avg_price: Decimal
    category_id: Optional[int] = None
    category_name: str = UNCATEGORIZED

    @property
    def total_value(self) -> Decimal:
        return (self.quantity * self.avg_price).quantize(PRICE_QUANT, rounding=ROUND_HALF_UP)


class StockBalanceStoreBase(ABC):
    """Abstract base class for stock balance stores."""

    @abstractmethod
    def warehouse_exists(self, warehouse_id: int) -> bool:
        pass

    @abstractmethod
    def get_balance(self, warehouse_id: int, product_id: int) -> Optional[BalanceSnapshot]:
        """Current balance, or None when the product was never stocked here."""
        pass

    @abstractmethod
    def list_balances(
        self,
        warehouse_id: int,
        category_ids: Optional[Sequence[int]] = None,
        product_ids: Optional[Sequence[int]] = None,
        include_zero: bool = False,
        lock: bool = False,
    ) -> List[BalanceSnapshot]:
        """Balances of a warehouse sorted by category name, then product name.

        ``category_ids`` and ``product_ids`` are combined as a union. When
        both are empty every balance of the warehouse is returned.
        """
        pass

    @abstractmethod
    def apply_movement(
        self,
        warehouse_id: int,
        product_id: int,
        quantity: Decimal,
        price: Decimal,
        movement_type: MovementType,
        document_id: Optional[int] = None,
        actor_id: Optional[int] = None,
    ) -> BalanceSnapshot:
        """Apply a signed quantity change and record it in the movement ledger."""
        pass


class SqlStockBalanceStore(StockBalanceStoreBase):
    """Balance store backed by the local ``stock_balances`` table."""

    def __init__(self, db: Session):
        self.db = db

    def warehouse_exists(self, warehouse_id: int) -> bool:
        try:
            found = self.db.execute(
                select(Warehouse.id).where(Warehouse.id == warehouse_id)
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise DependencyFailure(
                f"Could not read warehouse {warehouse_id}", dependency="stock_balance_store"
            ) from e
        return found is not None

    def _base_query(self):
        return (
            select(StockBalance, Product, Category)
            .join(Product, Product.id == StockBalance.product_id)
            .outerjoin(Category, Category.id == Product.category_id)
        )

    @staticmethod
    def _to_snapshot(balance: StockBalance, product: Product, category: Optional[Category]) -> BalanceSnapshot:
        return BalanceSnapshot(
            warehouse_id=balance.warehouse_id,
            product_id=product.id,
            product_name=product.name,
            unit=product.unit,
            quantity=Decimal(balance.quantity or 0),
            avg_price=Decimal(balance.avg_price or 0),
            category_id=category.id if category else None,
            category_name=category.name if category else UNCATEGORIZED,
        )

    def get_balance(self, warehouse_id: int, product_id: int) -> Optional[BalanceSnapshot]:
        stmt = self._base_query().where(
            StockBalance.warehouse_id == warehouse_id,
            StockBalance.product_id == product_id,
        )
        try:
            row = self.db.execute(stmt).first()
        except SQLAlchemyError as e:
            raise DependencyFailure(
                f"Could not read balance of product {product_id} in warehouse {warehouse_id}",
                dependency="stock_balance_store",
            ) from e
        if row is None:
            return None
        return self._to_snapshot(*row)

    def list_balances(
        self,
        warehouse_id: int,
        category_ids: Optional[Sequence[int]] = None,
        product_ids: Optional[Sequence[int]] = None,
        include_zero: bool = False,
        lock: bool = False,
    ) -> List[BalanceSnapshot]:
        stmt = self._base_query().where(StockBalance.warehouse_id == warehouse_id)

        filters = []
        if category_ids:
            filters.append(Product.category_id.in_(list(category_ids)))
        if product_ids:
            filters.append(Product.id.in_(list(product_ids)))
        if filters:
            stmt = stmt.where(or_(*filters))

        if not include_zero:
            stmt = stmt.where(StockBalance.quantity != 0)

        # Uncategorized products sort after named categories
        stmt = stmt.order_by(
            Category.name.is_(None), Category.name, Product.name, Product.id
        )

        if lock:
            # FOR SHARE on PostgreSQL, ignored by SQLite
            stmt = stmt.with_for_update(read=True, of=StockBalance)

        try:
            rows = self.db.execute(stmt).all()
        except SQLAlchemyError as e:
            raise DependencyFailure(
                f"Could not read balances of warehouse {warehouse_id}",
                dependency="stock_balance_store",
            ) from e

        return [self._to_snapshot(*row) for row in rows]

    def apply_movement(
        self,
        warehouse_id: int,
        product_id: int,
        quantity: Decimal,
        price: Decimal,
        movement_type: MovementType,
        document_id: Optional[int] = None,
        actor_id: Optional[int] = None,
    ) -> BalanceSnapshot:
        quantity = Decimal(quantity)
        price = Decimal(price)
        try:
            balance = self.db.execute(
                select(StockBalance)
                .where(
                    StockBalance.warehouse_id == warehouse_id,
                    StockBalance.product_id == product_id,
                )
                .with_for_update()
            ).scalar_one_or_none()

            if balance is None:
                balance = StockBalance(
                    warehouse_id=warehouse_id,
                    product_id=product_id,
                    quantity=Decimal("0"),
                    avg_price=Decimal("0"),
                )
                self.db.add(balance)

            current_qty = Decimal(balance.quantity or 0)
            current_price = Decimal(balance.avg_price or 0)
            new_qty = current_qty + quantity

            # Weighted average cost only moves on incoming stock
            if quantity > 0:
                if current_qty > 0 and new_qty > 0:
                    balance.avg_price = (
                        (current_qty * current_price + quantity * price) / new_qty
                    ).quantize(PRICE_QUANT, rounding=ROUND_HALF_UP)
                else:
                    balance.avg_price = price.quantize(PRICE_QUANT, rounding=ROUND_HALF_UP)

            balance.quantity = new_qty.quantize(QTY_QUANT)

            self.db.add(StockMovement(
                warehouse_id=warehouse_id,
                product_id=product_id,
                document_id=document_id,
                type=movement_type.value,
                quantity=quantity,
                price=price,
                created_by_id=actor_id,
            ))
            self.db.flush()
        except SQLAlchemyError as e:
            raise DependencyFailure(
                f"Could not apply movement for product {product_id} in warehouse {warehouse_id}",
                dependency="stock_balance_store",
            ) from e

        logger.info(
            "Stock movement %s: warehouse=%s product=%s qty=%s price=%s doc=%s",
            movement_type.value, warehouse_id, product_id, quantity, price, document_id,
        )
        return self.get_balance(warehouse_id, product_id)

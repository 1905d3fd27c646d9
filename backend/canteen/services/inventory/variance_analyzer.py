"""Variance analysis of a counted inventory.

For each counted line:

    quantity_variance = actual - expected
    variance_percent  = quantity_variance / expected * 100
    value_variance    = quantity_variance * price      (rounded to cents)

Uncounted lines (actual is NULL) carry no variance data and are left out of
the analysis rather than treated as zero. When expected is 0 and something
was found the percent has no value; such lines are reported with
``variance_percent = None`` and always pass a positive threshold.

Line values are rounded before they are summed, so

    total_variance_value == surplus_value - shortage_value

holds exactly for every threshold.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from canteen.core.config import settings
from canteen.core.exceptions import ValidationError
from canteen.models.inventory import InventoryItem, InventoryStatus
from canteen.models.product import Product
from canteen.services.inventory.common import get_inventory

logger = logging.getLogger(__name__)

MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


class VarianceKind(str, Enum):
    SURPLUS = "SURPLUS"
    SHORTAGE = "SHORTAGE"
    EXACT = "EXACT"


@dataclass(frozen=True)
class VarianceLine:
    item_id: int
    product_id: int
    product_name: str
    unit: str
    expected_quantity: Decimal
    actual_quantity: Decimal
    price: Decimal
    quantity_variance: Decimal
    variance_percent: Optional[Decimal]
    value_variance: Decimal
    kind: VarianceKind

    @property
    def percent_defined(self) -> bool:
        return self.variance_percent is not None

    def passes(self, threshold: Decimal) -> bool:
        if self.variance_percent is None:
            return True
        return abs(self.variance_percent) >= threshold


@dataclass(frozen=True)
class VarianceReport:
    inventory_id: int
    inventory_number: str
    status: InventoryStatus
    threshold_percent: Decimal
    total_items: int
    uncounted_items: int
    items_with_variance: int
    exact_items: int
    surplus_items: int
    shortage_items: int
    surplus_value: Decimal
    shortage_value: Decimal
    total_variance_value: Decimal
    items: Tuple[VarianceLine, ...]

    @property
    def surplus_lines(self) -> List[VarianceLine]:
        return [line for line in self.items if line.kind == VarianceKind.SURPLUS]

    @property
    def shortage_lines(self) -> List[VarianceLine]:
        return [line for line in self.items if line.kind == VarianceKind.SHORTAGE]


def compute_line(item: InventoryItem, product_name: str, unit: str, percent_places: int = 2) -> VarianceLine:
    """Variance figures of one counted line."""
    expected = Decimal(item.expected_quantity)
    actual = Decimal(item.actual_quantity)
    price = Decimal(item.price)
    variance = actual - expected

    if expected != 0:
        percent_quant = Decimal(1).scaleb(-percent_places)
        percent = (variance / expected * HUNDRED).quantize(percent_quant, rounding=ROUND_HALF_UP)
    elif variance == 0:
        percent = ZERO
    else:
        percent = None

    if variance > 0:
        kind = VarianceKind.SURPLUS
    elif variance < 0:
        kind = VarianceKind.SHORTAGE
    else:
        kind = VarianceKind.EXACT

    return VarianceLine(
        item_id=item.id,
        product_id=item.product_id,
        product_name=product_name,
        unit=unit,
        expected_quantity=expected,
        actual_quantity=actual,
        price=price,
        quantity_variance=variance,
        variance_percent=percent,
        value_variance=(variance * price).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP),
        kind=kind,
    )


class VarianceAnalyzer:
    """Read-only analysis; never changes inventory state."""

    def __init__(self, db: Session, percent_places: Optional[int] = None):
        self.db = db
        if percent_places is None:
            percent_places = settings.variance_decimal_places
        self.percent_places = percent_places

    def analyze(self, inventory_id: int, variance_threshold_percent=ZERO) -> VarianceReport:
        threshold = Decimal(str(variance_threshold_percent or 0))
        if not threshold.is_finite() or threshold < 0:
            raise ValidationError(
                "Variance threshold must be a non-negative number", field="variance_threshold"
            )

        inventory = get_inventory(self.db, inventory_id)
        rows = self.db.execute(
            select(InventoryItem, Product.name, Product.unit)
            .join(Product, Product.id == InventoryItem.product_id)
            .where(InventoryItem.inventory_id == inventory_id)
            .order_by(InventoryItem.id)
        ).all()

        counted = []
        uncounted = 0
        for item, name, unit in rows:
            if item.actual_quantity is None:
                uncounted += 1
                continue
            counted.append(compute_line(item, name, unit, self.percent_places))

        selected = tuple(line for line in counted if line.passes(threshold))

        surplus_value = sum(
            (line.value_variance for line in selected if line.value_variance > 0), ZERO
        )
        shortage_value = sum(
            (-line.value_variance for line in selected if line.value_variance < 0), ZERO
        )

        report = VarianceReport(
            inventory_id=inventory.id,
            inventory_number=inventory.number,
            status=inventory.status,
            threshold_percent=threshold,
            total_items=len(counted),
            uncounted_items=uncounted,
            items_with_variance=sum(1 for line in selected if line.kind != VarianceKind.EXACT),
            exact_items=sum(1 for line in selected if line.kind == VarianceKind.EXACT),
            surplus_items=sum(1 for line in selected if line.kind == VarianceKind.SURPLUS),
            shortage_items=sum(1 for line in selected if line.kind == VarianceKind.SHORTAGE),
            surplus_value=surplus_value.quantize(MONEY_QUANT),
            shortage_value=shortage_value.quantize(MONEY_QUANT),
            total_variance_value=(surplus_value - shortage_value).quantize(MONEY_QUANT),
            items=selected,
        )
        logger.debug(
            "Analyzed inventory %s at %s%%: %d/%d lines, total %s",
            inventory.number, threshold, len(selected), len(counted), report.total_variance_value,
        )
        return report

"""Inventory reconciliation: count sheet -> counts -> variance -> adjustments."""

from canteen.services.inventory.sheet_generator import SheetGenerator, SheetLine
from canteen.services.inventory.lifecycle import InventoryLifecycle
from canteen.services.inventory.count_editor import (
    BulkCountResult,
    CountEditor,
    CountEntry,
    LineOutcome,
)
from canteen.services.inventory.variance_analyzer import (
    VarianceAnalyzer,
    VarianceKind,
    VarianceLine,
    VarianceReport,
)
from canteen.services.inventory.adjustment_generator import (
    AdjustmentGenerator,
    AdjustmentOutcome,
    AdjustmentResult,
)

__all__ = [
    "SheetGenerator",
    "SheetLine",
    "InventoryLifecycle",
    "BulkCountResult",
    "CountEditor",
    "CountEntry",
    "LineOutcome",
    "VarianceAnalyzer",
    "VarianceKind",
    "VarianceLine",
    "VarianceReport",
    "AdjustmentGenerator",
    "AdjustmentOutcome",
    "AdjustmentResult",
]

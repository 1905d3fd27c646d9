"""SQLAlchemy models."""

from canteen.models.warehouse import Warehouse
from canteen.models.product import Category, Product
from canteen.models.stock import StockBalance, StockMovement, MovementType
from canteen.models.document import Document, DocumentItem, DocumentStatus, DocumentType
from canteen.models.inventory import (
    EDITABLE_STATUSES,
    AdjustmentKind,
    Inventory,
    InventoryAdjustment,
    InventoryItem,
    InventoryStatus,
)

__all__ = [
    "Warehouse",
    "Category",
    "Product",
    "StockBalance",
    "StockMovement",
    "MovementType",
    "Document",
    "DocumentItem",
    "DocumentStatus",
    "DocumentType",
    "EDITABLE_STATUSES",
    "AdjustmentKind",
    "Inventory",
    "InventoryAdjustment",
    "InventoryItem",
    "InventoryStatus",
]

from canteen.db.immutability import register_immutability_listeners

register_immutability_listeners()

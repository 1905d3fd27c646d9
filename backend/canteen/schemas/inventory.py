"""Inventory, count line, variance and adjustment schemas."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from canteen.models.document import DocumentStatus, DocumentType
from canteen.models.inventory import InventoryStatus
from canteen.services.inventory.variance_analyzer import VarianceKind


# ============== Count sheet ==============

class SheetRequest(BaseModel):
    """Filters for a count sheet. Category and product ids are a union."""

    warehouse_id: int = Field(gt=0)
    category_ids: Optional[List[int]] = None
    product_ids: Optional[List[int]] = None
    include_zero_balances: bool = False


class SheetLineResponse(BaseModel):
    product_id: int
    product_name: str
    category_id: Optional[int] = None
    category_name: str
    unit: str
    expected_quantity: Decimal
    price: Decimal
    total_value: Decimal

    model_config = {"from_attributes": True}


class SheetResponse(BaseModel):
    warehouse_id: int
    items: List[SheetLineResponse]
    total_items: int
    total_value: Decimal


# ============== Inventory ==============

class InventoryCreate(BaseModel):
    """Inventory creation schema."""

    warehouse_id: int = Field(gt=0)
    date: dt.date

    model_config = {"extra": "forbid"}

    responsible_person_id: Optional[int] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class InventoryFromBalancesCreate(InventoryCreate):
    """Inventory seeded from current balances."""

    category_ids: Optional[List[int]] = None
    product_ids: Optional[List[int]] = None
    include_zero_balances: bool = False


class InventoryUpdate(BaseModel):
    """Header fields that may still change before approval."""

    model_config = {"extra": "forbid"}

    date: Optional[dt.date] = None
    responsible_person_id: Optional[int] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class InventoryItemResponse(BaseModel):
    id: int
    inventory_id: int
    product_id: int
    product_name: Optional[str] = None
    unit: Optional[str] = None
    expected_quantity: Decimal
    actual_quantity: Optional[Decimal] = None
    price: Decimal
    notes: Optional[str] = None
    counted_by_id: Optional[int] = None
    counted_at: Optional[dt.datetime] = None
    version: int

    model_config = {"from_attributes": True}


class InventoryResponse(BaseModel):
    """Inventory header."""

    id: int
    number: str
    warehouse_id: int
    date: dt.date
    status: InventoryStatus
    responsible_person_id: Optional[int] = None
    notes: Optional[str] = None
    created_by_id: Optional[int] = None
    started_at: Optional[dt.datetime] = None
    started_by_id: Optional[int] = None
    completed_at: Optional[dt.datetime] = None
    completed_by_id: Optional[int] = None
    approved_at: Optional[dt.datetime] = None
    approved_by_id: Optional[int] = None
    adjustments_created_at: Optional[dt.datetime] = None
    created_at: dt.datetime
    updated_at: dt.datetime

    model_config = {"from_attributes": True}


class InventoryDetailResponse(InventoryResponse):
    """Inventory with its lines."""

    items: List[InventoryItemResponse] = []
    total_items: int = 0
    counted_items: int = 0


# ============== Counts ==============

class InventoryItemCreate(BaseModel):
    """Add a product that is missing from the sheet."""

    product_id: int = Field(gt=0)
    actual_quantity: Optional[Decimal] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class CountUpdate(BaseModel):
    """Record the counted quantity of one line.

    Leave ``notes`` out to keep the current note; send null to clear it.
    """

    actual_quantity: Decimal
    notes: Optional[str] = Field(default=None, max_length=500)
    expected_version: Optional[int] = Field(default=None, ge=1)


class BulkCountLine(CountUpdate):
    item_id: int


class BulkCountRequest(BaseModel):
    items: List[BulkCountLine] = Field(min_length=1)


class CountLineResult(BaseModel):
    item_id: int
    ok: bool
    version: Optional[int] = None
    error: Optional[str] = None
    code: Optional[str] = None


class BulkCountResponse(BaseModel):
    inventory_id: int
    succeeded: int
    failed: int
    results: List[CountLineResult]


# ============== Variance ==============

class VarianceLineResponse(BaseModel):
    item_id: int
    product_id: int
    product_name: str
    unit: str
    expected_quantity: Decimal
    actual_quantity: Decimal
    price: Decimal
    quantity_variance: Decimal
    variance_percent: Optional[Decimal] = None
    percent_defined: bool
    value_variance: Decimal
    kind: VarianceKind

    model_config = {"from_attributes": True}


class VarianceReportResponse(BaseModel):
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
    items: List[VarianceLineResponse]

    model_config = {"from_attributes": True}


# ============== Adjustments ==============

class AdjustmentDocumentResponse(BaseModel):
    id: int
    number: str
    type: DocumentType
    status: DocumentStatus
    total_amount: Decimal
    warehouse_from_id: Optional[int] = None
    warehouse_to_id: Optional[int] = None
    line_count: int
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class AdjustmentResponse(BaseModel):
    inventory_id: int
    created: List[AdjustmentDocumentResponse]
    documents: List[AdjustmentDocumentResponse]
    already_created: bool = False
    reason: Optional[str] = None

    model_config = {"from_attributes": True}

"""Inventory reconciliation routes.

Count sheet -> inventory -> counts -> variance -> adjustment documents -> approval.
Domain errors raised by the services are turned into JSON responses by the
handler registered in ``canteen.main``.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Query, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.orm import selectinload

logger = logging.getLogger("inventory")

from canteen.core.exceptions import NotFound
from canteen.core.rate_limit import limiter
from canteen.core.rbac import CurrentUser, RequireManager
from canteen.core.responses import list_response, paginated_response
from canteen.db.session import DbSession
from canteen.models.inventory import Inventory, InventoryItem, InventoryStatus
from canteen.schemas.inventory import (
    AdjustmentDocumentResponse,
    AdjustmentResponse,
    BulkCountRequest,
    BulkCountResponse,
    CountUpdate,
    InventoryCreate,
    InventoryDetailResponse,
    InventoryFromBalancesCreate,
    InventoryItemCreate,
    InventoryItemResponse,
    InventoryResponse,
    InventoryUpdate,
    SheetLineResponse,
    SheetRequest,
    SheetResponse,
    VarianceReportResponse,
)
from canteen.services.inventory import (
    AdjustmentGenerator,
    CountEditor,
    CountEntry,
    InventoryLifecycle,
    SheetGenerator,
    VarianceAnalyzer,
)
from canteen.services.inventory.count_editor import UNSET

router = APIRouter()


def _item_response(item: InventoryItem) -> InventoryItemResponse:
    data = InventoryItemResponse.model_validate(item)
    if item.product is not None:
        data.product_name = item.product.name
        data.unit = item.product.unit
    return data


def _detail_response(inventory: Inventory) -> InventoryDetailResponse:
    items = [_item_response(i) for i in inventory.items]
    detail = InventoryDetailResponse.model_validate(inventory)
    detail.items = items
    detail.total_items = len(items)
    detail.counted_items = sum(1 for i in items if i.actual_quantity is not None)
    return detail


# ==================== COUNT SHEET ====================

@router.post("/generate-sheet", response_model=SheetResponse)
@limiter.limit("30/minute")
def generate_sheet(request: Request, body: SheetRequest, db: DbSession, current_user: CurrentUser):
    """Preview the count sheet of a warehouse without creating anything."""
    lines = SheetGenerator(db).generate(
        body.warehouse_id,
        category_ids=body.category_ids,
        product_ids=body.product_ids,
        include_zero_balances=body.include_zero_balances,
    )
    return SheetResponse(
        warehouse_id=body.warehouse_id,
        items=[SheetLineResponse.model_validate(line) for line in lines],
        total_items=len(lines),
        total_value=sum((line.total_value for line in lines), Decimal("0")),
    )


# ==================== INVENTORIES ====================

@router.get("/")
@limiter.limit("60/minute")
def list_inventories(
    request: Request,
    db: DbSession,
    current_user: CurrentUser,
    warehouse_id: Optional[int] = Query(None),
    status_filter: Optional[InventoryStatus] = Query(None, alias="status"),
    responsible_person_id: Optional[int] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    """List inventories, newest first."""
    query = db.query(Inventory)
    if warehouse_id:
        query = query.filter(Inventory.warehouse_id == warehouse_id)
    if status_filter:
        query = query.filter(Inventory.status == status_filter)
    if responsible_person_id:
        query = query.filter(Inventory.responsible_person_id == responsible_person_id)
    if date_from:
        query = query.filter(Inventory.date >= date_from)
    if date_to:
        query = query.filter(Inventory.date <= date_to)

    total = query.count()
    rows = (
        query.order_by(Inventory.date.desc(), Inventory.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    items = [InventoryResponse.model_validate(r).model_dump(mode="json") for r in rows]
    return paginated_response(items, total, page=page, limit=limit)


@router.post("/", response_model=InventoryResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_inventory(request: Request, body: InventoryCreate, db: DbSession, current_user: CurrentUser):
    """Create an empty inventory; lines are added one by one."""
    return InventoryLifecycle(db).create(
        body.warehouse_id,
        body.date,
        actor_id=current_user.user_id,
        responsible_person_id=body.responsible_person_id,
        notes=body.notes,
    )


@router.post("/from-balances", response_model=InventoryDetailResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_inventory_from_balances(
    request: Request, body: InventoryFromBalancesCreate, db: DbSession, current_user: CurrentUser
):
    """Create an inventory pre-filled with the current book balances."""
    inventory = SheetGenerator(db).create_from_balances(
        body.warehouse_id,
        body.date,
        actor_id=current_user.user_id,
        responsible_person_id=body.responsible_person_id,
        notes=body.notes,
        category_ids=body.category_ids,
        product_ids=body.product_ids,
        include_zero_balances=body.include_zero_balances,
    )
    return _detail_response(inventory)


@router.get("/{inventory_id}", response_model=InventoryDetailResponse)
@limiter.limit("60/minute")
def get_inventory_detail(request: Request, inventory_id: int, db: DbSession, current_user: CurrentUser):
    """Get an inventory with all of its lines."""
    inventory = (
        db.query(Inventory)
        .options(selectinload(Inventory.items).selectinload(InventoryItem.product))
        .filter(Inventory.id == inventory_id)
        .first()
    )
    if inventory is None:
        raise NotFound(f"Inventory {inventory_id} not found")
    return _detail_response(inventory)


@router.put("/{inventory_id}", response_model=InventoryResponse)
@limiter.limit("30/minute")
def update_inventory(
    request: Request, inventory_id: int, body: InventoryUpdate, db: DbSession, current_user: CurrentUser
):
    """Correct date, responsible person or notes before approval."""
    changes = body.model_dump(exclude_unset=True)
    return InventoryLifecycle(db).update_header(inventory_id, changes)


@router.delete("/{inventory_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("30/minute")
def delete_inventory(request: Request, inventory_id: int, db: DbSession, current_user: CurrentUser):
    """Delete a DRAFT inventory."""
    InventoryLifecycle(db).delete(inventory_id, actor_id=current_user.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ==================== LIFECYCLE ====================

@router.post("/{inventory_id}/start", response_model=InventoryResponse)
@limiter.limit("30/minute")
def start_counting(request: Request, inventory_id: int, db: DbSession, current_user: CurrentUser):
    return InventoryLifecycle(db).start_counting(inventory_id, actor_id=current_user.user_id)


@router.post("/{inventory_id}/complete", response_model=InventoryResponse)
@limiter.limit("30/minute")
def complete_counting(request: Request, inventory_id: int, db: DbSession, current_user: CurrentUser):
    return InventoryLifecycle(db).complete_counting(inventory_id, actor_id=current_user.user_id)


@router.post("/{inventory_id}/approve", response_model=InventoryResponse)
@limiter.limit("10/minute")
def approve_inventory(request: Request, inventory_id: int, db: DbSession, current_user: RequireManager):
    """Approve a completed inventory and post its adjustment documents."""
    inventory = InventoryLifecycle(db).approve(inventory_id, actor_id=current_user.user_id)
    logger.info(f"Inventory {inventory.number} approved by user {current_user.user_id}")
    return inventory


# ==================== LINES & COUNTS ====================

@router.post("/{inventory_id}/items", response_model=InventoryItemResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("60/minute")
def add_item(
    request: Request, inventory_id: int, body: InventoryItemCreate, db: DbSession, current_user: CurrentUser
):
    """Add a product that was found but is missing from the sheet."""
    item = CountEditor(db).add_item(
        inventory_id,
        body.product_id,
        actor_id=current_user.user_id,
        actual_quantity=body.actual_quantity,
        notes=body.notes,
    )
    return _item_response(item)


@router.delete("/{inventory_id}/items/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("60/minute")
def remove_item(request: Request, inventory_id: int, item_id: int, db: DbSession, current_user: CurrentUser):
    CountEditor(db).remove_item(inventory_id, item_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/items/{item_id}", response_model=InventoryItemResponse)
@limiter.limit("120/minute")
def set_actual(request: Request, item_id: int, body: CountUpdate, db: DbSession, current_user: CurrentUser):
    """Record the counted quantity of one line."""
    item = CountEditor(db).set_actual(
        item_id,
        body.actual_quantity,
        actor_id=current_user.user_id,
        notes=body.notes if "notes" in body.model_fields_set else UNSET,
        expected_version=body.expected_version,
    )
    return _item_response(item)


@router.put("/{inventory_id}/items/bulk", response_model=BulkCountResponse)
@limiter.limit("30/minute")
def bulk_set_actual(
    request: Request, inventory_id: int, body: BulkCountRequest, db: DbSession, current_user: CurrentUser
):
    """Save many counts at once. Answers 207 when some lines failed."""
    entries = [
        CountEntry(
            item_id=line.item_id,
            actual_quantity=line.actual_quantity,
            notes=line.notes if "notes" in line.model_fields_set else UNSET,
            expected_version=line.expected_version,
        )
        for line in body.items
    ]
    result = CountEditor(db).bulk_set_actual(inventory_id, entries, actor_id=current_user.user_id)
    payload = BulkCountResponse(
        inventory_id=result.inventory_id,
        succeeded=result.succeeded,
        failed=result.failed,
        results=[r.to_dict() for r in result.results],
    )
    if not result.all_ok:
        return JSONResponse(
            status_code=status.HTTP_207_MULTI_STATUS, content=jsonable_encoder(payload)
        )
    return payload


# ==================== VARIANCE & ADJUSTMENTS ====================

@router.get("/{inventory_id}/analyze", response_model=VarianceReportResponse)
@limiter.limit("60/minute")
def analyze_variances(
    request: Request,
    inventory_id: int,
    db: DbSession,
    current_user: CurrentUser,
    variance_threshold: Decimal = Query(Decimal("0")),
):
    """Variance report; ``variance_threshold`` hides lines below that percent."""
    report = VarianceAnalyzer(db).analyze(inventory_id, variance_threshold)
    return VarianceReportResponse.model_validate(report)


@router.post("/{inventory_id}/create-adjustments", response_model=AdjustmentResponse)
@limiter.limit("10/minute")
def create_adjustments(
    request: Request, response: Response, inventory_id: int, db: DbSession, current_user: CurrentUser
):
    """Create RECEIPT / WRITEOFF documents for the surplus and shortage."""
    result = AdjustmentGenerator(db).create_adjustments(inventory_id, actor_id=current_user.user_id)
    if result.created:
        response.status_code = status.HTTP_201_CREATED
    return AdjustmentResponse.model_validate(result)


@router.get("/{inventory_id}/adjustments")
@limiter.limit("60/minute")
def list_adjustments(request: Request, inventory_id: int, db: DbSession, current_user: CurrentUser):
    docs = AdjustmentGenerator(db).list_adjustments(inventory_id)
    return list_response([AdjustmentDocumentResponse.model_validate(d).model_dump(mode="json") for d in docs])

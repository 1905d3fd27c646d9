"""Human-readable sequential numbers for inventories and documents.

Inventory:  <PREFIX>-<YYYY>-<NNNN>      e.g. INV-2026-0007
Document:   <TYPE>-<YYYY><MM><NNNN>     e.g. RC-2026100003

The sequence restarts every calendar year (inventories) or month
(documents). Numbers are unique-constrained in the database, so two writers
racing for the same number make one of them fail on commit; callers retry.
"""

from datetime import date
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from canteen.core.config import settings
from canteen.models.document import Document, DocumentType
from canteen.models.inventory import Inventory

DOCUMENT_PREFIXES = {
    DocumentType.RECEIPT: "RC",
    DocumentType.WRITEOFF: "WO",
    DocumentType.TRANSFER: "TR",
}

# How many times a creator regenerates a number after a unique violation
NUMBER_RETRIES = 3


def _last_sequence(db: Session, column, prefix: str) -> int:
    last = db.execute(
        select(column)
        .where(column.like(f"{prefix}%"))
        # longest first, so 10000 sorts above 9999
        .order_by(func.length(column).desc(), column.desc())
        .limit(1)
    ).scalar_one_or_none()
    if not last:
        return 0
    try:
        return int(last[len(prefix):])
    except ValueError:
        return 0


def next_inventory_number(db: Session, on: Optional[date] = None, prefix: Optional[str] = None) -> str:
    on = on or date.today()
    head = f"{prefix or settings.inventory_number_prefix}-{on.year:04d}-"
    seq = _last_sequence(db, Inventory.number, head) + 1
    return f"{head}{seq:04d}"


def next_document_number(db: Session, doc_type: DocumentType, on: Optional[date] = None) -> str:
    on = on or date.today()
    head = f"{DOCUMENT_PREFIXES[doc_type]}-{on.year:04d}{on.month:02d}"
    seq = _last_sequence(db, Document.number, head) + 1
    return f"{head}{seq:04d}"

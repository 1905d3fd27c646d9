"""Lookups and guards shared by the inventory services."""

import logging
from datetime import datetime, timezone
from typing import Callable, Iterable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from canteen.core.exceptions import DependencyFailure, InvalidState, NotFound
from canteen.models.inventory import Inventory, InventoryStatus
from canteen.services.numbering import NUMBER_RETRIES, next_inventory_number

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_inventory(db: Session, inventory_id: int) -> Inventory:
    inventory = db.get(Inventory, inventory_id)
    if inventory is None:
        raise NotFound(f"Inventory {inventory_id} not found")
    return inventory


def require_status(
    inventory: Inventory, allowed: Iterable[InventoryStatus], action: str
) -> None:
    allowed = tuple(allowed)
    if inventory.status not in allowed:
        expected = " or ".join(s.value for s in allowed)
        raise InvalidState(
            f"Cannot {action}: inventory {inventory.number} is {inventory.status.value}, "
            f"expected {expected}",
            current_status=inventory.status.value,
        )


def diagnose_guard_miss(
    db: Session, inventory_id: int, allowed: Iterable[InventoryStatus], action: str
) -> InvalidState:
    """Explain why a status-guarded statement matched no row.

    Raises NotFound when the inventory is gone, otherwise returns the
    InvalidState for the caller to raise.
    """
    row = db.execute(
        select(Inventory.number, Inventory.status).where(Inventory.id == inventory_id)
    ).first()
    if row is None:
        raise NotFound(f"Inventory {inventory_id} not found")
    number, status = row
    expected = " or ".join(s.value for s in allowed)
    return InvalidState(
        f"Cannot {action}: inventory {number} is {status.value}, expected {expected}",
        current_status=status.value,
    )


def save_new_inventory(db: Session, build: Callable[[str], Inventory]) -> Inventory:
    """Run ``build(number)`` and commit, regenerating the number on a clash.

    ``build`` must do all of its reads and ``db.add`` calls itself so that a
    retry repeats them inside the fresh transaction.
    """
    for attempt in range(1, NUMBER_RETRIES + 1):
        number = next_inventory_number(db)
        inventory = build(number)
        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            taken = db.execute(
                select(Inventory.id).where(Inventory.number == number)
            ).first()
            if taken is None:
                raise DependencyFailure(
                    "Could not save inventory", dependency="database"
                ) from e
            logger.warning("Inventory number %s taken, retrying (%d/%d)", number, attempt, NUMBER_RETRIES)
            continue
        db.refresh(inventory)
        return inventory

    raise DependencyFailure(
        f"Could not allocate an inventory number after {NUMBER_RETRIES} attempts",
        dependency="database",
    )

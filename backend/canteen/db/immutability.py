"""ORM-level immutability enforcement for inventory counts.

The services already write through guarded UPDATE statements; these
listeners catch any other code path that modifies mapped objects and flushes
them. Rules:

    Entity          | Rule
    ----------------|------------------------------------------------------
    Inventory       | warehouse_id never changes
                    | nothing changes once status was APPROVED
                    | only a DRAFT inventory may be deleted
    InventoryItem   | expected_quantity, price, product_id, inventory_id frozen
                    | inserts and updates only while parent is DRAFT/IN_PROGRESS
                    | deletes only while parent is DRAFT

Listeners are registered once, when ``canteen.models`` is imported.
"""

import logging

from sqlalchemy import event, inspect, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import get_history

from canteen.core.exceptions import InvalidState

logger = logging.getLogger(__name__)

FROZEN_ITEM_FIELDS = ("expected_quantity", "price", "product_id", "inventory_id")
AUDIT_FIELDS = ("updated_at",)

_registered = False


def _stored_status(connection, inventory_id):
    """Status the row has in the database, ignoring unflushed changes."""
    from canteen.models.inventory import Inventory

    return connection.execute(
        select(Inventory.status).where(Inventory.id == inventory_id)
    ).scalar_one_or_none()


def _changed_fields(target):
    insp = inspect(target)
    return [
        attr.key for attr in insp.attrs
        if attr.key not in AUDIT_FIELDS and attr.history.has_changes()
    ]


def _check_inventory_update(mapper, connection, target):
    from canteen.models.inventory import Inventory, InventoryStatus

    stored = connection.execute(
        select(Inventory.number, Inventory.status, Inventory.warehouse_id)
        .where(Inventory.id == target.id)
    ).one_or_none()
    if stored is None:
        return

    new_warehouse = get_history(target, "warehouse_id").added
    if new_warehouse and new_warehouse[0] != stored.warehouse_id:
        raise InvalidState(
            f"Inventory {stored.number}: warehouse cannot be changed after creation",
            current_status=stored.status.value,
            field="warehouse_id",
        )

    if stored.status == InventoryStatus.APPROVED:
        changed = _changed_fields(target)
        if changed:
            logger.warning(
                "Blocked modification of approved inventory %s (fields: %s)",
                target.id, changed,
            )
            raise InvalidState(
                f"Inventory {stored.number} is approved and can no longer be modified",
                current_status=InventoryStatus.APPROVED.value,
                field=changed[0],
            )


def _check_item_insert(mapper, connection, target):
    from canteen.models.inventory import EDITABLE_STATUSES

    status = _stored_status(connection, target.inventory_id)
    if status is not None and status not in EDITABLE_STATUSES:
        raise InvalidState(
            f"Cannot add lines to an inventory in status {status.value}",
            current_status=status.value,
        )


def _check_item_update(mapper, connection, target):
    from canteen.models.inventory import EDITABLE_STATUSES

    for field in FROZEN_ITEM_FIELDS:
        if get_history(target, field).deleted:
            raise InvalidState(
                f"Item {target.id}: {field} is a snapshot and cannot be changed",
                field=field,
                item_id=target.id,
            )

    status = _stored_status(connection, target.inventory_id)
    if status is not None and status not in EDITABLE_STATUSES:
        raise InvalidState(
            f"Item {target.id}: counts are locked in status {status.value}",
            current_status=status.value,
            item_id=target.id,
        )


def _check_item_delete(mapper, connection, target):
    from canteen.models.inventory import InventoryStatus

    status = _stored_status(connection, target.inventory_id)
    if status is not None and status != InventoryStatus.DRAFT:
        raise InvalidState(
            f"Item {target.id}: lines can only be removed from a draft inventory",
            current_status=status.value,
            item_id=target.id,
        )


def _check_inventory_deletion_before_flush(session, flush_context, instances):
    """Reject deleting an inventory that has left DRAFT.

    Runs in before_flush so the check happens before cascaded item deletes
    are planned.
    """
    from canteen.models.inventory import Inventory, InventoryStatus

    for obj in list(session.deleted):
        if not isinstance(obj, Inventory):
            continue
        status = _stored_status(session.connection(), obj.id)
        if status is not None and status != InventoryStatus.DRAFT:
            raise InvalidState(
                f"Inventory {obj.number} can only be deleted while in DRAFT",
                current_status=status.value,
            )


def register_immutability_listeners() -> None:
    """Attach the listeners. Safe to call more than once."""
    global _registered
    if _registered:
        return

    from canteen.models.inventory import Inventory, InventoryItem

    event.listen(Inventory, "before_update", _check_inventory_update)
    event.listen(InventoryItem, "before_insert", _check_item_insert)
    event.listen(InventoryItem, "before_update", _check_item_update)
    event.listen(InventoryItem, "before_delete", _check_item_delete)
    event.listen(Session, "before_flush", _check_inventory_deletion_before_flush)
    _registered = True
    logger.debug("Inventory immutability listeners registered")

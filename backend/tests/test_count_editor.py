"""Tests for recording counts, bulk saves and sheet line editing."""

from decimal import Decimal

import pytest
from sqlalchemy import select

from canteen.core.exceptions import InvalidState, NotFound, ValidationError, VersionConflict
from canteen.models.inventory import InventoryItem, InventoryStatus
from canteen.services.inventory import CountEditor, CountEntry
from canteen.services.inventory.count_editor import validate_quantity

from conftest import STOREKEEPER_ID, add_balance


@pytest.fixture
def counting(inventory_factory, products):
    """IN_PROGRESS inventory with milk, carrots and salt lines, nothing counted."""
    return inventory_factory(
        [
            (products["milk"], "10", "2.00", None),
            (products["carrots"], "25.5", "0.80", None),
            (products["salt"], "3", "0.40", None),
        ],
        status=InventoryStatus.IN_PROGRESS,
    )


class TestValidateQuantity:
    @pytest.mark.parametrize("value", ["0", "12", "0.125", 7, Decimal("999999999.999"), "1.500"])
    def test_accepted(self, value):
        assert validate_quantity(value) == Decimal(str(value))

    @pytest.mark.parametrize("value", ["-1", "-0.001", "abc", "NaN", "Infinity", "0.0001", "1000000000"])
    def test_rejected(self, value):
        with pytest.raises(ValidationError) as exc_info:
            validate_quantity(value, item_id=5)
        assert exc_info.value.item_id == 5
        assert exc_info.value.field == "actual_quantity"


class TestSetActual:
    def test_records_count(self, db_session, counting):
        item_id = counting.items[0].id

        item = CountEditor(db_session).set_actual(item_id, "12", actor_id=STOREKEEPER_ID, notes="Back shelf")

        assert item.actual_quantity == Decimal("12")
        assert item.notes == "Back shelf"
        assert item.counted_by_id == STOREKEEPER_ID
        assert item.counted_at is not None
        assert item.version == 2

    def test_zero_means_counted_and_nothing_found(self, db_session, counting):
        item = CountEditor(db_session).set_actual(counting.items[0].id, 0)

        assert item.actual_quantity == Decimal("0")
        assert item.is_counted

    def test_allowed_in_draft(self, db_session, inventory_factory, products):
        inventory = inventory_factory([(products["milk"], "10", "2.00", None)])

        item = CountEditor(db_session).set_actual(inventory.items[0].id, "9.5")

        assert item.actual_quantity == Decimal("9.5")

    def test_last_writer_wins(self, db_session, counting):
        editor = CountEditor(db_session)
        item_id = counting.items[0].id

        editor.set_actual(item_id, "11", actor_id=1)
        item = editor.set_actual(item_id, "13", actor_id=2)

        assert item.actual_quantity == Decimal("13")
        assert item.counted_by_id == 2
        assert item.version == 3

    def test_notes_untouched_unless_passed(self, db_session, counting):
        editor = CountEditor(db_session)
        item_id = counting.items[0].id

        editor.set_actual(item_id, "11", notes="Opened pack")
        assert editor.set_actual(item_id, "12").notes == "Opened pack"
        assert editor.set_actual(item_id, "12", notes=None).notes is None

    def test_expected_version_match(self, db_session, counting):
        item_id = counting.items[0].id

        item = CountEditor(db_session).set_actual(item_id, "11", expected_version=1)

        assert item.version == 2

    def test_stale_version_conflicts(self, db_session, counting):
        editor = CountEditor(db_session)
        item_id = counting.items[0].id
        editor.set_actual(item_id, "11")

        with pytest.raises(VersionConflict) as exc_info:
            editor.set_actual(item_id, "99", expected_version=1)

        assert exc_info.value.expected == 1
        assert exc_info.value.current == 2
        db_session.expire_all()
        assert db_session.get(InventoryItem, item_id).actual_quantity == Decimal("11")

    @pytest.mark.parametrize("status", [InventoryStatus.COMPLETED, InventoryStatus.APPROVED])
    def test_locked_after_completion(self, db_session, inventory_factory, products, status):
        inventory = inventory_factory([(products["milk"], "10", "2.00", "10")], status=status)
        item_id = inventory.items[0].id

        with pytest.raises(InvalidState) as exc_info:
            CountEditor(db_session).set_actual(item_id, "5")

        assert exc_info.value.item_id == item_id
        db_session.expire_all()
        assert db_session.get(InventoryItem, item_id).actual_quantity == Decimal("10")

    def test_negative_rejected_before_write(self, db_session, counting):
        item_id = counting.items[0].id

        with pytest.raises(ValidationError):
            CountEditor(db_session).set_actual(item_id, "-3")

        db_session.expire_all()
        assert db_session.get(InventoryItem, item_id).version == 1

    def test_missing_item(self, db_session):
        with pytest.raises(NotFound):
            CountEditor(db_session).set_actual(777, "1")


class TestBulkSetActual:
    def test_all_lines_saved(self, db_session, counting):
        ids = [i.id for i in counting.items]
        entries = [CountEntry(ids[0], Decimal("12")), CountEntry(ids[1], Decimal("20"))]

        result = CountEditor(db_session).bulk_set_actual(counting.id, entries, actor_id=STOREKEEPER_ID)

        assert result.all_ok
        assert result.succeeded == 2
        assert [r.version for r in result.results] == [2, 2]
        db_session.expire_all()
        assert db_session.get(InventoryItem, ids[0]).actual_quantity == Decimal("12")
        assert db_session.get(InventoryItem, ids[1]).actual_quantity == Decimal("20")
        assert db_session.get(InventoryItem, ids[2]).actual_quantity is None

    def test_invalid_entry_rejects_whole_batch(self, db_session, counting):
        ids = [i.id for i in counting.items]
        entries = [
            CountEntry(ids[0], Decimal("12")),
            CountEntry(ids[1], Decimal("-1")),
            CountEntry(ids[1], Decimal("5")),
            CountEntry(9999, Decimal("1")),
        ]

        with pytest.raises(ValidationError) as exc_info:
            CountEditor(db_session).bulk_set_actual(counting.id, entries)

        details = exc_info.value.details
        assert [d["index"] for d in details] == [1, 2, 3]
        assert details[0]["field"] == "actual_quantity"
        assert details[0]["item_id"] == ids[1]
        db_session.expire_all()
        assert db_session.get(InventoryItem, ids[0]).actual_quantity is None

    def test_item_from_other_inventory_rejected(self, db_session, counting, inventory_factory, products):
        other = inventory_factory([(products["milk"], "1", "1.00", None)], status=InventoryStatus.IN_PROGRESS)

        with pytest.raises(ValidationError) as exc_info:
            CountEditor(db_session).bulk_set_actual(counting.id, [CountEntry(other.items[0].id, Decimal("1"))])

        assert exc_info.value.details[0]["item_id"] == other.items[0].id

    def test_empty_batch(self, db_session, counting):
        with pytest.raises(ValidationError):
            CountEditor(db_session).bulk_set_actual(counting.id, [])

    def test_version_conflict_reported_per_line(self, db_session, counting):
        editor = CountEditor(db_session)
        ids = [i.id for i in counting.items]
        editor.set_actual(ids[1], "20")

        result = editor.bulk_set_actual(counting.id, [
            CountEntry(ids[0], Decimal("12"), expected_version=1),
            CountEntry(ids[1], Decimal("21"), expected_version=1),
            CountEntry(ids[2], Decimal("3")),
        ])

        assert not result.all_ok
        assert (result.succeeded, result.failed) == (2, 1)
        failed = result.results[1]
        assert failed.item_id == ids[1]
        assert failed.code == "version_conflict"
        assert failed.to_dict() == {
            "item_id": ids[1], "ok": False, "error": failed.error, "code": "version_conflict",
        }
        db_session.expire_all()
        assert db_session.get(InventoryItem, ids[0]).actual_quantity == Decimal("12")
        assert db_session.get(InventoryItem, ids[1]).actual_quantity == Decimal("20")
        assert db_session.get(InventoryItem, ids[2]).actual_quantity == Decimal("3")

    def test_locked_inventory(self, db_session, inventory_factory, products):
        inventory = inventory_factory([(products["milk"], "10", "2.00", None)], status=InventoryStatus.COMPLETED)

        with pytest.raises(InvalidState):
            CountEditor(db_session).bulk_set_actual(
                inventory.id, [CountEntry(inventory.items[0].id, Decimal("1"))]
            )


class TestAddItem:
    def test_snapshot_from_current_balance(self, db_session, stocked_warehouse, inventory_factory, products):
        inventory = inventory_factory([(products["milk"], "10", "2.00", None)])

        item = CountEditor(db_session).add_item(inventory.id, products["carrots"].id, actor_id=STOREKEEPER_ID)

        assert item.expected_quantity == Decimal("25.5")
        assert item.price == Decimal("0.80")
        assert item.actual_quantity is None
        assert item.counted_by_id is None

    def test_never_stocked_product_has_zero_expectation(self, db_session, inventory_factory, products):
        inventory = inventory_factory([], status=InventoryStatus.IN_PROGRESS)

        item = CountEditor(db_session).add_item(
            inventory.id, products["butter"].id, actor_id=STOREKEEPER_ID, actual_quantity="2"
        )

        assert item.expected_quantity == Decimal("0")
        assert item.price == Decimal("0")
        assert item.actual_quantity == Decimal("2")
        assert item.counted_by_id == STOREKEEPER_ID

    def test_duplicate_product(self, db_session, warehouse, inventory_factory, products):
        add_balance(db_session, warehouse, products["milk"], "10", "2.00")
        inventory = inventory_factory([(products["milk"], "10", "2.00", None)])

        with pytest.raises(ValidationError) as exc_info:
            CountEditor(db_session).add_item(inventory.id, products["milk"].id)
        assert exc_info.value.item_id == inventory.items[0].id

    def test_unknown_product(self, db_session, inventory_factory):
        inventory = inventory_factory([])

        with pytest.raises(NotFound):
            CountEditor(db_session).add_item(inventory.id, 31337)

    def test_not_after_completion(self, db_session, inventory_factory, products):
        inventory = inventory_factory([], status=InventoryStatus.COMPLETED)

        with pytest.raises(InvalidState):
            CountEditor(db_session).add_item(inventory.id, products["salt"].id)


class TestRemoveItem:
    def test_remove_from_draft(self, db_session, inventory_factory, products):
        inventory = inventory_factory([(products["milk"], "10", "2.00", None), (products["salt"], "3", "0.40", None)])
        item_id = inventory.items[0].id

        CountEditor(db_session).remove_item(inventory.id, item_id)

        found = db_session.execute(select(InventoryItem).where(InventoryItem.id == item_id)).scalar_one_or_none()
        assert found is None
        assert db_session.query(InventoryItem).count() == 1

    def test_not_once_counting_started(self, db_session, counting):
        with pytest.raises(InvalidState):
            CountEditor(db_session).remove_item(counting.id, counting.items[0].id)

    def test_item_of_another_inventory(self, db_session, inventory_factory, products):
        first = inventory_factory([(products["milk"], "10", "2.00", None)])
        second = inventory_factory([])

        with pytest.raises(NotFound):
            CountEditor(db_session).remove_item(second.id, first.items[0].id)

"""Tests for count sheet generation and inventory creation from balances."""

from datetime import date
from decimal import Decimal

import pytest

from canteen.core.exceptions import NotFound
from canteen.models.inventory import Inventory, InventoryStatus
from canteen.models.stock import StockBalance
from canteen.services.inventory import SheetGenerator
from canteen.services.stock_balance_store import SqlStockBalanceStore, UNCATEGORIZED

from conftest import STOREKEEPER_ID, add_balance


class TestGenerateSheet:
    """Sheet preview from current balances."""

    def test_zero_balances_excluded_by_default(self, db_session, warehouse, products):
        add_balance(db_session, warehouse, products["milk"], "10", "2.00")
        add_balance(db_session, warehouse, products["butter"], "0", "8.50")

        lines = SheetGenerator(db_session).generate(warehouse.id)

        assert len(lines) == 1
        assert lines[0].product_id == products["milk"].id
        assert lines[0].expected_quantity == Decimal("10")
        assert lines[0].price == Decimal("2.00")
        assert lines[0].total_value == Decimal("20.00")

    def test_zero_balances_included_on_request(self, db_session, stocked_warehouse, products):
        lines = SheetGenerator(db_session).generate(stocked_warehouse.id, include_zero_balances=True)

        assert {line.product_id for line in lines} == {p.id for p in products.values()}

    def test_sorted_by_category_then_product(self, db_session, stocked_warehouse):
        lines = SheetGenerator(db_session).generate(stocked_warehouse.id, include_zero_balances=True)

        assert [(line.category_name, line.product_name) for line in lines] == [
            ("Dairy", "Butter"),
            ("Dairy", "Milk 3.2%"),
            ("Vegetables", "Carrots"),
            (UNCATEGORIZED, "Salt"),
        ]

    def test_category_filter(self, db_session, stocked_warehouse, categories, products):
        lines = SheetGenerator(db_session).generate(
            stocked_warehouse.id, category_ids=[categories["vegetables"].id]
        )

        assert [line.product_id for line in lines] == [products["carrots"].id]

    def test_category_and_product_filters_are_a_union(
        self, db_session, stocked_warehouse, categories, products
    ):
        lines = SheetGenerator(db_session).generate(
            stocked_warehouse.id,
            category_ids=[categories["vegetables"].id],
            product_ids=[products["salt"].id],
        )

        assert {line.product_id for line in lines} == {products["carrots"].id, products["salt"].id}

    def test_no_matching_balances_returns_empty_sheet(self, db_session, warehouse, products):
        assert SheetGenerator(db_session).generate(warehouse.id) == []

    def test_other_warehouse_balances_ignored(self, db_session, stocked_warehouse, other_warehouse, products):
        add_balance(db_session, other_warehouse, products["milk"], "99", "1.00")

        lines = SheetGenerator(db_session).generate(other_warehouse.id)

        assert len(lines) == 1
        assert lines[0].expected_quantity == Decimal("99")

    def test_unknown_warehouse(self, db_session):
        with pytest.raises(NotFound) as exc_info:
            SheetGenerator(db_session).generate(9999)
        assert exc_info.value.field == "warehouse_id"

    def test_lock_flag_passed_to_store(self, db_session, stocked_warehouse):
        calls = []

        class RecordingStore(SqlStockBalanceStore):
            def list_balances(self, warehouse_id, **kwargs):
                calls.append(kwargs["lock"])
                return super().list_balances(warehouse_id, **kwargs)

        SheetGenerator(db_session, RecordingStore(db_session), lock_balances=True).generate(stocked_warehouse.id)
        SheetGenerator(db_session, RecordingStore(db_session), lock_balances=False).generate(stocked_warehouse.id)

        assert calls == [True, False]


class TestCreateFromBalances:
    """Inventory seeded from the sheet."""

    def test_creates_draft_with_frozen_snapshot(self, db_session, stocked_warehouse, products):
        inventory = SheetGenerator(db_session).create_from_balances(
            stocked_warehouse.id, date(2026, 10, 18), actor_id=STOREKEEPER_ID, notes="Monthly count"
        )

        assert inventory.status == InventoryStatus.DRAFT
        assert inventory.created_by_id == STOREKEEPER_ID
        assert inventory.notes == "Monthly count"
        assert len(inventory.items) == 3  # butter has no stock
        milk = next(i for i in inventory.items if i.product_id == products["milk"].id)
        assert milk.expected_quantity == Decimal("10")
        assert milk.price == Decimal("2.00")
        assert milk.actual_quantity is None
        assert milk.version == 1

    def test_number_format_and_sequence(self, db_session, stocked_warehouse):
        generator = SheetGenerator(db_session)
        first = generator.create_from_balances(stocked_warehouse.id, date(2026, 10, 18))
        second = generator.create_from_balances(stocked_warehouse.id, date(2026, 10, 18))

        year = date.today().year
        assert first.number == f"INV-{year}-0001"
        assert second.number == f"INV-{year}-0002"

    def test_later_balance_changes_do_not_touch_items(self, db_session, stocked_warehouse, products):
        inventory = SheetGenerator(db_session).create_from_balances(stocked_warehouse.id, date(2026, 10, 18))

        balance = SqlStockBalanceStore(db_session)
        row = db_session.query(StockBalance).filter_by(
            warehouse_id=stocked_warehouse.id, product_id=products["milk"].id
        ).one()
        row.quantity = Decimal("500")
        db_session.commit()

        db_session.refresh(inventory)
        milk = next(i for i in inventory.items if i.product_id == products["milk"].id)
        assert milk.expected_quantity == Decimal("10")
        assert balance.get_balance(stocked_warehouse.id, products["milk"].id).quantity == Decimal("500")

    def test_empty_sheet_creates_empty_inventory(self, db_session, warehouse):
        inventory = SheetGenerator(db_session).create_from_balances(warehouse.id, date(2026, 10, 18))

        assert inventory.items == []
        assert db_session.query(Inventory).count() == 1

    def test_unknown_warehouse_creates_nothing(self, db_session):
        with pytest.raises(NotFound):
            SheetGenerator(db_session).create_from_balances(9999, date(2026, 10, 18))
        db_session.rollback()
        assert db_session.query(Inventory).count() == 0

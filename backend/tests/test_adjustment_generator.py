"""Tests for adjustment document generation and posting on approval."""

from datetime import date
from decimal import Decimal

import pytest

from canteen.core.exceptions import DependencyFailure, InvalidState, PartialFailure
from canteen.models.document import Document, DocumentStatus, DocumentType
from canteen.models.inventory import Inventory, InventoryAdjustment, InventoryStatus
from canteen.models.stock import StockMovement
from canteen.services.document_gateway import DocumentLine, SqlDocumentGateway
from canteen.services.inventory import AdjustmentGenerator, InventoryLifecycle
from canteen.services.inventory.adjustment_generator import ALREADY_ADJUSTED, NO_VARIANCE
from canteen.services.numbering import next_document_number
from canteen.services.stock_balance_store import SqlStockBalanceStore

from conftest import MANAGER_ID, STOREKEEPER_ID


class FlakyGateway(SqlDocumentGateway):
    """Fails to create documents of the given types."""

    def __init__(self, db, failing_types):
        super().__init__(db)
        self.failing_types = set(failing_types)
        self.calls = []

    def create_document(self, doc_type, lines, **kwargs):
        self.calls.append(doc_type)
        if doc_type in self.failing_types:
            raise DependencyFailure("Document service unavailable", dependency="document_subsystem")
        return super().create_document(doc_type, lines, **kwargs)


@pytest.fixture
def counted(stocked_warehouse, inventory_factory, products):
    """Completed inventory: milk +2 (surplus 4.00), carrots -0.5 (shortage 0.40), salt exact."""
    return inventory_factory(
        [
            (products["milk"], "10", "2.00", "12"),
            (products["carrots"], "25.5", "0.80", "25"),
            (products["salt"], "3", "0.40", "3"),
        ],
        status=InventoryStatus.COMPLETED,
    )


class TestCreateAdjustments:
    def test_no_variance_creates_nothing(self, db_session, inventory_factory, products):
        inventory = inventory_factory(
            [(products["milk"], "10", "2.00", "10"), (products["salt"], "3", "0.40", "3")],
            status=InventoryStatus.COMPLETED,
        )

        result = AdjustmentGenerator(db_session).create_adjustments(inventory.id, actor_id=STOREKEEPER_ID)

        assert result.created == []
        assert result.reason == NO_VARIANCE
        assert db_session.query(Document).count() == 0

    def test_receipt_and_writeoff(self, db_session, counted, products, warehouse):
        result = AdjustmentGenerator(db_session).create_adjustments(counted.id, actor_id=STOREKEEPER_ID)

        assert result.reason is None
        assert len(result.created) == 2
        by_type = {doc.type: doc for doc in result.created}

        receipt = by_type[DocumentType.RECEIPT]
        assert receipt.status == DocumentStatus.DRAFT
        assert receipt.warehouse_to_id == warehouse.id
        assert receipt.warehouse_from_id is None
        assert receipt.total_amount == Decimal("4.00")
        assert receipt.line_count == 1
        assert counted.number in receipt.notes

        writeoff = by_type[DocumentType.WRITEOFF]
        assert writeoff.warehouse_from_id == warehouse.id
        assert writeoff.total_amount == Decimal("0.40")

        writeoff_doc = db_session.get(Document, writeoff.id)
        assert [(i.product_id, i.quantity, i.price) for i in writeoff_doc.items] == [
            (products["carrots"].id, Decimal("0.5"), Decimal("0.80"))
        ]

        db_session.expire_all()
        assert db_session.get(Inventory, counted.id).adjustments_created_at is not None

    def test_repeat_call_returns_existing_documents(self, db_session, counted):
        generator = AdjustmentGenerator(db_session)
        first = generator.create_adjustments(counted.id)

        second = generator.create_adjustments(counted.id)

        assert second.created == []
        assert second.already_created
        assert second.reason == ALREADY_ADJUSTED
        assert {d.id for d in second.documents} == {d.id for d in first.created}
        assert db_session.query(Document).count() == 2

    def test_surplus_only(self, db_session, inventory_factory, products):
        inventory = inventory_factory(
            [(products["milk"], "10", "2.00", "11")], status=InventoryStatus.COMPLETED
        )

        result = AdjustmentGenerator(db_session).create_adjustments(inventory.id)

        assert [doc.type for doc in result.created] == [DocumentType.RECEIPT]

    @pytest.mark.parametrize("status", [
        InventoryStatus.DRAFT, InventoryStatus.IN_PROGRESS, InventoryStatus.APPROVED,
    ])
    def test_requires_completed(self, db_session, inventory_factory, products, status):
        inventory = inventory_factory([(products["milk"], "10", "2.00", "11")], status=status)

        with pytest.raises(InvalidState):
            AdjustmentGenerator(db_session).create_adjustments(inventory.id)
        assert db_session.query(Document).count() == 0

    def test_partial_failure_then_retry(self, db_session, counted):
        flaky = FlakyGateway(db_session, {DocumentType.WRITEOFF})

        with pytest.raises(PartialFailure) as exc_info:
            AdjustmentGenerator(db_session, document_gateway=flaky).create_adjustments(counted.id)

        outcomes = {d["kind"]: d for d in exc_info.value.details}
        assert outcomes["SURPLUS"]["ok"] is True
        assert outcomes["SHORTAGE"]["ok"] is False
        assert outcomes["SHORTAGE"]["error"] == "Document service unavailable"
        assert db_session.query(InventoryAdjustment).count() == 1
        db_session.expire_all()
        assert db_session.get(Inventory, counted.id).adjustments_created_at is None

        healthy = FlakyGateway(db_session, set())
        result = AdjustmentGenerator(db_session, document_gateway=healthy).create_adjustments(counted.id)

        assert healthy.calls == [DocumentType.WRITEOFF]
        assert [doc.type for doc in result.created] == [DocumentType.WRITEOFF]
        assert {doc.type for doc in result.documents} == {DocumentType.RECEIPT, DocumentType.WRITEOFF}
        assert db_session.query(Document).count() == 2

    def test_every_document_failing(self, db_session, counted):
        flaky = FlakyGateway(db_session, {DocumentType.RECEIPT, DocumentType.WRITEOFF})

        with pytest.raises(DependencyFailure) as exc_info:
            AdjustmentGenerator(db_session, document_gateway=flaky).create_adjustments(counted.id)

        assert exc_info.value.dependency == "document_subsystem"
        assert len(exc_info.value.details) == 2
        assert isinstance(exc_info.value.__cause__, DependencyFailure)
        assert exc_info.value.__cause__.message == "Document service unavailable"
        assert db_session.query(Document).count() == 0
        assert db_session.query(InventoryAdjustment).count() == 0

    def test_list_adjustments(self, db_session, counted):
        generator = AdjustmentGenerator(db_session)
        assert generator.list_adjustments(counted.id) == []

        generator.create_adjustments(counted.id)

        assert len(generator.list_adjustments(counted.id)) == 2


class TestApprovePostsAdjustments:
    def test_approval_moves_stock(self, db_session, counted, warehouse, products):
        AdjustmentGenerator(db_session).create_adjustments(counted.id, actor_id=STOREKEEPER_ID)

        approved = InventoryLifecycle(db_session).approve(counted.id, actor_id=MANAGER_ID)

        assert approved.status == InventoryStatus.APPROVED
        assert {d.status for d in db_session.query(Document).all()} == {DocumentStatus.APPROVED}
        store = SqlStockBalanceStore(db_session)
        milk = store.get_balance(warehouse.id, products["milk"].id)
        assert milk.quantity == Decimal("12")
        assert milk.avg_price == Decimal("2.00")
        assert store.get_balance(warehouse.id, products["carrots"].id).quantity == Decimal("25")
        assert store.get_balance(warehouse.id, products["salt"].id).quantity == Decimal("3")
        assert db_session.query(StockMovement).count() == 2

    def test_already_approved_document_is_not_posted_twice(self, db_session, counted, warehouse, products):
        result = AdjustmentGenerator(db_session).create_adjustments(counted.id)
        receipt = next(d for d in result.created if d.type == DocumentType.RECEIPT)
        SqlDocumentGateway(db_session).approve_document(receipt.id, actor_id=MANAGER_ID)
        db_session.commit()

        InventoryLifecycle(db_session).approve(counted.id, actor_id=MANAGER_ID)

        milk = SqlStockBalanceStore(db_session).get_balance(warehouse.id, products["milk"].id)
        assert milk.quantity == Decimal("12")
        assert db_session.query(StockMovement).count() == 2

    def test_posting_can_be_switched_off(self, db_session, counted, warehouse, products):
        AdjustmentGenerator(db_session).create_adjustments(counted.id)

        InventoryLifecycle(db_session, post_adjustments=False).approve(counted.id)

        assert {d.status for d in db_session.query(Document).all()} == {DocumentStatus.DRAFT}
        milk = SqlStockBalanceStore(db_session).get_balance(warehouse.id, products["milk"].id)
        assert milk.quantity == Decimal("10")

    def test_approval_refused_until_missing_adjustment_exists(self, db_session, counted):
        flaky = FlakyGateway(db_session, {DocumentType.WRITEOFF})
        with pytest.raises(PartialFailure):
            AdjustmentGenerator(db_session, document_gateway=flaky).create_adjustments(counted.id)

        with pytest.raises(InvalidState) as exc_info:
            InventoryLifecycle(db_session).approve(counted.id, actor_id=MANAGER_ID)

        assert exc_info.value.details == [{"kind": "SHORTAGE"}]
        assert "SHORTAGE" in exc_info.value.message
        db_session.expire_all()
        assert db_session.get(Inventory, counted.id).status == InventoryStatus.COMPLETED
        assert {d.status for d in db_session.query(Document).all()} == {DocumentStatus.DRAFT}
        assert db_session.query(StockMovement).count() == 0

        AdjustmentGenerator(db_session).create_adjustments(counted.id)
        approved = InventoryLifecycle(db_session).approve(counted.id, actor_id=MANAGER_ID)

        assert approved.status == InventoryStatus.APPROVED
        assert db_session.query(StockMovement).count() == 2

    def test_failed_posting_leaves_inventory_completed(self, db_session, counted):
        AdjustmentGenerator(db_session).create_adjustments(counted.id)

        class BrokenGateway(SqlDocumentGateway):
            def approve_document(self, document_id, actor_id=None):
                raise DependencyFailure("Document service unavailable", dependency="document_subsystem")

        with pytest.raises(DependencyFailure):
            InventoryLifecycle(db_session, document_gateway=BrokenGateway(db_session)).approve(counted.id)

        db_session.expire_all()
        assert db_session.get(Inventory, counted.id).status == InventoryStatus.COMPLETED


class TestDocumentNumbers:
    @pytest.fixture
    def receipt_line(self, products):
        return DocumentLine(product_id=products["milk"].id, quantity=Decimal("1"), price=Decimal("2.00"))

    def test_taken_number_is_regenerated(self, db_session, warehouse, receipt_line, monkeypatch):
        gateway = SqlDocumentGateway(db_session)
        first = gateway.create_document(DocumentType.RECEIPT, [receipt_line], warehouse_to_id=warehouse.id)
        db_session.commit()

        stale = [first.number]

        def stale_then_fresh(db, doc_type, on=None):
            return stale.pop() if stale else next_document_number(db, doc_type, on)

        monkeypatch.setattr("canteen.services.document_gateway.next_document_number", stale_then_fresh)

        second = gateway.create_document(DocumentType.RECEIPT, [receipt_line], warehouse_to_id=warehouse.id)
        db_session.commit()

        assert second.number != first.number
        assert db_session.query(Document).count() == 2

    def test_gives_up_after_retries(self, db_session, warehouse, receipt_line, monkeypatch):
        gateway = SqlDocumentGateway(db_session)
        first = gateway.create_document(DocumentType.RECEIPT, [receipt_line], warehouse_to_id=warehouse.id)
        db_session.commit()
        monkeypatch.setattr(
            "canteen.services.document_gateway.next_document_number", lambda db, doc_type, on=None: first.number
        )

        with pytest.raises(DependencyFailure) as exc_info:
            gateway.create_document(DocumentType.RECEIPT, [receipt_line], warehouse_to_id=warehouse.id)

        assert exc_info.value.dependency == "document_subsystem"
        db_session.rollback()
        assert db_session.query(Document).count() == 1

    def test_sequence_passes_four_digits(self, db_session, warehouse, receipt_line):
        on = date(2026, 10, 18)
        gateway = SqlDocumentGateway(db_session)
        db_session.add(Document(
            number="RC-2026109999", type=DocumentType.RECEIPT, status=DocumentStatus.DRAFT,
            date=on, warehouse_to_id=warehouse.id, total_amount=Decimal("0"),
        ))
        db_session.commit()

        ref = gateway.create_document(DocumentType.RECEIPT, [receipt_line], warehouse_to_id=warehouse.id, doc_date=on)

        assert ref.number == "RC-20261010000"

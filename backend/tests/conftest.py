"""Pytest configuration and fixtures."""

import os

# Must be set before canteen.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-long-enough-for-hs256")

import pytest
from datetime import date
from decimal import Decimal
from typing import Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from canteen.core.rbac import UserRole
from canteen.core.security import create_access_token
from canteen.db.base import Base
from canteen.db.session import configure_sqlite, get_db
from canteen.main import app
# Import all models to ensure they're registered with Base.metadata
from canteen.models import *
from canteen.models.inventory import Inventory, InventoryItem, InventoryStatus
from canteen.models.product import Category, Product
from canteen.models.stock import StockBalance
from canteen.models.warehouse import Warehouse

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

MANAGER_ID = 7
STOREKEEPER_ID = 11


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    configure_sqlite(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiting during tests to avoid flaky failures
    from canteen.core.rate_limit import limiter as global_limiter
    global_limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    global_limiter.enabled = True
    app.dependency_overrides.clear()


def _headers(user_id: int, role: UserRole) -> dict:
    token = create_access_token(
        data={"sub": str(user_id), "email": f"user{user_id}@canteen.test", "role": role.value}
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers() -> dict:
    """Headers of a storekeeper (counts, sheets, adjustments)."""
    return _headers(STOREKEEPER_ID, UserRole.STOREKEEPER)


@pytest.fixture
def manager_headers() -> dict:
    """Headers of a manager (may approve)."""
    return _headers(MANAGER_ID, UserRole.MANAGER)


@pytest.fixture
def warehouse(db_session: Session) -> Warehouse:
    """Create the main store warehouse."""
    wh = Warehouse(name="Main store", address="Kitchen block, ground floor", active=True)
    db_session.add(wh)
    db_session.commit()
    db_session.refresh(wh)
    return wh


@pytest.fixture
def other_warehouse(db_session: Session) -> Warehouse:
    wh = Warehouse(name="Bar fridge", active=True)
    db_session.add(wh)
    db_session.commit()
    db_session.refresh(wh)
    return wh


@pytest.fixture
def categories(db_session: Session) -> dict:
    """Create Dairy and Vegetables categories."""
    dairy = Category(name="Dairy")
    vegetables = Category(name="Vegetables")
    db_session.add_all([dairy, vegetables])
    db_session.commit()
    return {"dairy": dairy, "vegetables": vegetables}


@pytest.fixture
def products(db_session: Session, categories: dict) -> dict:
    """Create a small nomenclature.

    milk, butter -> Dairy; carrots -> Vegetables; salt -> no category.
    """
    items = {
        "milk": Product(name="Milk 3.2%", unit="l", category_id=categories["dairy"].id),
        "butter": Product(name="Butter", unit="kg", category_id=categories["dairy"].id),
        "carrots": Product(name="Carrots", unit="kg", category_id=categories["vegetables"].id),
        "salt": Product(name="Salt", unit="kg"),
    }
    db_session.add_all(items.values())
    db_session.commit()
    return items


def add_balance(db_session: Session, warehouse: Warehouse, product: Product, qty, price) -> StockBalance:
    balance = StockBalance(
        warehouse_id=warehouse.id,
        product_id=product.id,
        quantity=Decimal(str(qty)),
        avg_price=Decimal(str(price)),
    )
    db_session.add(balance)
    db_session.commit()
    return balance


@pytest.fixture
def stocked_warehouse(db_session: Session, warehouse: Warehouse, products: dict) -> Warehouse:
    """Warehouse with balances for every product; butter is out of stock."""
    add_balance(db_session, warehouse, products["milk"], "10", "2.00")
    add_balance(db_session, warehouse, products["butter"], "0", "8.50")
    add_balance(db_session, warehouse, products["carrots"], "25.5", "0.80")
    add_balance(db_session, warehouse, products["salt"], "3", "0.40")
    return warehouse


def make_inventory(
    db_session: Session,
    warehouse: Warehouse,
    lines,
    status: InventoryStatus = InventoryStatus.DRAFT,
    number: str = "INV-2026-0001",
) -> Inventory:
    """Build an inventory directly.

    ``lines`` is a list of ``(product, expected, price, actual)`` tuples;
    ``actual`` may be None for an uncounted line.
    """
    inventory = Inventory(
        number=number,
        warehouse_id=warehouse.id,
        date=date(2026, 10, 18),
        status=InventoryStatus.DRAFT,
        created_by_id=STOREKEEPER_ID,
    )
    for product, expected, price, actual in lines:
        inventory.items.append(InventoryItem(
            product_id=product.id,
            expected_quantity=Decimal(str(expected)),
            price=Decimal(str(price)),
            actual_quantity=None if actual is None else Decimal(str(actual)),
        ))
    db_session.add(inventory)
    db_session.commit()

    if status != InventoryStatus.DRAFT:
        inventory.status = status
        db_session.commit()
    db_session.refresh(inventory)
    return inventory


@pytest.fixture
def inventory_factory(db_session: Session, warehouse: Warehouse):
    """Factory fixture around ``make_inventory`` for the main warehouse."""
    counter = {"n": 0}

    def factory(lines, status: InventoryStatus = InventoryStatus.DRAFT, number: str = None) -> Inventory:
        counter["n"] += 1
        return make_inventory(
            db_session, warehouse, lines, status=status,
            number=number or f"INV-2026-{counter['n']:04d}",
        )

    return factory

"""
Pytest fixtures for the warehouse costing test suite.

Provides:
- A session-scoped engine and schema, with per-test isolation by rolling
  back an outer transaction
- Service, selector and clock fixtures
- Product and lot factories
- Captured structured logs

Environment Variables:
- COSTING_TEST_DATABASE_URL: database URL for the suite.  Defaults to an
  in-memory SQLite database; point it at PostgreSQL to exercise real row
  locks.
"""

import json
import logging
import os
from datetime import date
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session, sessionmaker

from costing_config import CostingConfig
from costing_kernel.db.engine import (
    create_engine_from_url,
    create_tables,
    drop_tables,
    init_engine_from_url,
    reset_engine,
)
from costing_kernel.domain.clock import DeterministicClock
from costing_kernel.domain.events import EventPublisher
from costing_kernel.domain.values import StorageLocation
from costing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from costing_kernel.models.product import ProductModel
from costing_kernel.selectors.inventory_selector import InventorySelector
from costing_services.lot_ledger import LotLedgerService
from costing_services.receipt_service import ReceiptService
from costing_services.warehouse_fee_service import WarehouseFeeService

DEFAULT_TEST_DATABASE_URL = "sqlite://"


def get_database_url() -> str:
    return os.environ.get("COSTING_TEST_DATABASE_URL", DEFAULT_TEST_DATABASE_URL)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture costing_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, fee_service):
            fee_service.distribute("2024-03")
            logs = captured_logs()
            assert any(r["message"] == "warehouse_fee_distributed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("costing_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Session-scoped DB infrastructure (engine + tables once per suite)
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the whole test session."""
    eng = init_engine_from_url(get_database_url(), echo=False)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    create_tables(db_engine)
    yield
    drop_tables(db_engine)


@pytest.fixture
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins an outer transaction on a dedicated connection.
    ``session.commit()`` inside a test only releases a savepoint; at
    teardown the outer transaction is rolled back, undoing everything the
    test wrote.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


@pytest.fixture
def file_session_factory(tmp_path) -> Generator[sessionmaker, None, None]:
    """Sessions over a file-backed SQLite database that really commit.

    Each session is an independent connection, so tests can interleave
    transactions the way two workers would.
    """
    engine = create_engine_from_url(f"sqlite:///{tmp_path / 'costing.db'}")
    create_tables(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    yield factory
    engine.dispose()


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def costing_config() -> CostingConfig:
    """The bundled defaults: KRW, whole-won fees, 6-place unit costs."""
    return CostingConfig()


@pytest.fixture
def publisher() -> EventPublisher:
    return EventPublisher()


# Service fixtures


@pytest.fixture
def ledger(session, deterministic_clock, costing_config, publisher) -> LotLedgerService:
    return LotLedgerService(
        session,
        clock=deterministic_clock,
        config=costing_config,
        publisher=publisher,
    )


@pytest.fixture
def fee_service(session, deterministic_clock, costing_config, publisher) -> WarehouseFeeService:
    return WarehouseFeeService(
        session,
        clock=deterministic_clock,
        config=costing_config,
        publisher=publisher,
    )


@pytest.fixture
def receipt_service(session, ledger, costing_config) -> ReceiptService:
    return ReceiptService(session, ledger, config=costing_config)


@pytest.fixture
def selector(session) -> InventorySelector:
    return InventorySelector(session)


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_product(session):
    """Create a product row and return it."""

    def _make(
        code: str | None = None,
        name: str | None = None,
        default_purchase_price: Decimal | None = None,
        unit: str = "EA",
    ) -> ProductModel:
        code = code or f"P-{uuid4().hex[:8]}"
        product = ProductModel(
            code=code,
            name=name or f"Product {code}",
            unit=unit,
            default_purchase_price=default_purchase_price,
        )
        session.add(product)
        session.flush()
        return product

    return _make


@pytest.fixture
def product(make_product) -> ProductModel:
    return make_product(code="SKU-001", name="Ceramic Mug")


@pytest.fixture
def make_lot(ledger):
    """Create a lot through the ledger with the goods amount as the only cost."""

    def _make(
        product_id,
        quantity: str | Decimal,
        unit_cost: str | Decimal,
        received_date: date = date(2024, 1, 15),
        storage_location: StorageLocation = StorageLocation.WAREHOUSE,
        lot_code: str | None = None,
        source_transaction_id: str | None = None,
    ):
        quantity = Decimal(quantity)
        return ledger.create_lot(
            product_id=product_id,
            received_date=received_date,
            quantity_received=quantity,
            goods_amount=quantity * Decimal(unit_cost),
            storage_location=storage_location,
            lot_code=lot_code,
            source_transaction_id=source_transaction_id,
        )

    return _make

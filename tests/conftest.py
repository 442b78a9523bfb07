"""
Pytest fixtures for the fulfillment kernel test suite.

Provides:
- A database engine + schema created once per test session
- Per-test sessions isolated by rollback
- Real-commit session factories for facade and concurrency tests
- Product / user / order builders and service fixtures

Environment Variables:
- DATABASE_URL: connection URL.  If not set, a temporary SQLite file is
  used.  Tests marked ``postgres`` (true multi-connection concurrency)
  only run when DATABASE_URL points at PostgreSQL.
"""

import json
import logging
import os
import threading
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from fulfillment_kernel.config import (
    AuditConfig,
    FulfillmentConfig,
    IdempotencyConfig,
    LedgerConfig,
)
from fulfillment_kernel.db.base import Base
from fulfillment_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from fulfillment_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from fulfillment_kernel.domain.clock import DeterministicClock
from fulfillment_kernel.domain.movement import MovementRequest
from fulfillment_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from fulfillment_kernel.models.product import Product
from fulfillment_kernel.models.user import User
from fulfillment_kernel.selectors.movement_selector import MovementSelector
from fulfillment_kernel.selectors.order_selector import OrderSelector
from fulfillment_kernel.services.fulfillment_service import FulfillmentService
from fulfillment_kernel.services.idempotency_guard import IdempotencyGuard
from fulfillment_kernel.services.inventory_ledger import InventoryLedger
from fulfillment_kernel.services.order_lifecycle import OrderLifecycleController
from fulfillment_kernel.services.stock_adjustment import StockAdjustmentService

# Staff member performing opening-stock adjustments in fixtures
TEST_ACTOR_ID = uuid4()

DEFAULT_SNAPSHOT = {
    "customer_email": "ayesha@example.com",
    "customer_name": "Ayesha Khan",
    "customer_phone": "+92 300 1234567",
    "shipping_country": "Pakistan",
    "shipping_address_line1": "House 12, Street 4",
    "shipping_city": "Lahore",
    "shipping_postal_code": "54000",
}


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
    Capture fulfillment_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.record_movement(...)
            assert any(r["message"] == "movement_recorded" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("fulfillment_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Markers and database selection
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


def _database_url_from_env() -> str | None:
    return os.environ.get("DATABASE_URL")


def _is_postgres_url(url: str | None) -> bool:
    return bool(url) and url.startswith("postgresql")


def pytest_collection_modifyitems(config, items):
    """Skip ``postgres`` tests unless DATABASE_URL is a PostgreSQL URL."""
    if _is_postgres_url(_database_url_from_env()):
        return
    skip_pg = pytest.mark.skip(reason="needs DATABASE_URL pointing at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)


# =============================================================================
# Session-scoped DB infrastructure (engine + tables ONCE per suite)
# =============================================================================


@pytest.fixture(scope="session")
def db_engine(tmp_path_factory):
    """Single engine for the entire test session."""
    url = _database_url_from_env()
    if url is None:
        url = f"sqlite:///{tmp_path_factory.mktemp('db') / 'fulfillment_test.db'}"
    eng = init_engine_from_url(
        url, echo=False,
        pool_size=30, max_overflow=20, pool_timeout=10,
    )
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session; append-only listeners stay active."""
    drop_tables()
    create_tables()
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables()


def _clear_all_tables(engine):
    """Remove all rows after real-commit tests.

    PostgreSQL: TRUNCATE (bypasses the row-level append-only triggers).
    SQLite: plain DELETE; statement-level deletes never reach ORM listeners.
    """
    tables = list(reversed(Base.metadata.sorted_tables))
    with engine.connect() as conn:
        if engine.dialect.name == "postgresql":
            names = ", ".join(t.name for t in tables)
            conn.execute(text(f"TRUNCATE {names} CASCADE"))
        else:
            for table in tables:
                conn.execute(table.delete())
        conn.commit()


# =============================================================================
# Per-test session with automatic rollback
# =============================================================================


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Session joined to an outer transaction that is rolled back at teardown.

    Savepoints opened by the services (idempotency claims) nest inside the
    outer transaction, so nothing a test writes survives it.
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


# =============================================================================
# Real-commit fixtures (facade and concurrency tests)
# =============================================================================


@pytest.fixture(scope="function")
def committed_session_factory(db_engine, db_tables):
    """Tracked session factory whose sessions really commit.

    On teardown every tracked session is closed and all rows are removed.
    """
    factory = get_session_factory()
    created_sessions = []
    lock = threading.Lock()

    def tracked_factory():
        with lock:
            s = factory()
            created_sessions.append(s)
            return s

    yield tracked_factory

    for s in created_sessions:
        if s.is_active:
            s.rollback()
        s.close()
    _clear_all_tables(db_engine)


@pytest.fixture
def fulfillment_service(committed_session_factory, deterministic_clock):
    config = FulfillmentConfig(
        idempotency=IdempotencyConfig(duplicate_retry_attempts=2, duplicate_retry_delay_seconds=0),
    )
    return FulfillmentService(committed_session_factory, clock=deterministic_clock, config=config)


@pytest.fixture
def seed_product(committed_session_factory, deterministic_clock):
    """Create and commit a product with opening stock.  Returns its id."""

    def _seed(stock: int = 10, price_cents: int = 1500, currency: str = "PKR") -> UUID:
        sess = committed_session_factory()
        try:
            product = _new_product(sess, price_cents, currency)
            if stock:
                InventoryLedger(sess, deterministic_clock).apply(
                    MovementRequest.adjustment(product.id, stock, "Opening stock", TEST_ACTOR_ID)
                )
            sess.commit()
            return product.id
        finally:
            sess.close()

    return _seed


# =============================================================================
# Basic fixtures
# =============================================================================


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def snapshot() -> dict:
    return dict(DEFAULT_SNAPSHOT)


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def ledger(session, deterministic_clock) -> InventoryLedger:
    return InventoryLedger(session, deterministic_clock, LedgerConfig())


@pytest.fixture
def sleeps() -> list[float]:
    """Delays requested by the idempotency guard (no real sleeping)."""
    return []


@pytest.fixture
def guard(session, deterministic_clock, sleeps) -> IdempotencyGuard:
    return IdempotencyGuard(
        session,
        deterministic_clock,
        IdempotencyConfig(duplicate_retry_attempts=3, duplicate_retry_delay_seconds=0.05),
        sleep=sleeps.append,
    )


@pytest.fixture
def controller(session, deterministic_clock, ledger, guard) -> OrderLifecycleController:
    return OrderLifecycleController(session, deterministic_clock, ledger=ledger, guard=guard)


@pytest.fixture
def adjustment_service(session, deterministic_clock, ledger) -> StockAdjustmentService:
    return StockAdjustmentService(session, deterministic_clock, ledger=ledger)


@pytest.fixture
def movement_selector(session) -> MovementSelector:
    return MovementSelector(session, AuditConfig())


@pytest.fixture
def order_selector(session) -> OrderSelector:
    return OrderSelector(session, AuditConfig())


# =============================================================================
# Data builders
# =============================================================================


def _new_product(sess: Session, price_cents: int, currency: str) -> Product:
    suffix = uuid4().hex[:10]
    product = Product(
        sku=f"SKU-{suffix}",
        name=f"Test product {suffix}",
        price_cents=price_cents,
        currency=currency,
    )
    sess.add(product)
    sess.flush()
    return product


@pytest.fixture
def make_product(session, ledger, test_actor_id):
    """
    Create a product; opening stock is recorded as an ADJUSTMENT movement
    so the cached stock always matches the ledger.
    """

    def _make(stock: int = 10, price_cents: int = 1500, currency: str = "PKR") -> Product:
        product = _new_product(session, price_cents, currency)
        if stock:
            ledger.apply(
                MovementRequest.adjustment(product.id, stock, "Opening stock", test_actor_id)
            )
        return product

    return _make


@pytest.fixture
def make_user(session):
    def _make(
        display_name: str = "Bilal Ahmed",
        role_names: list[str] | None = None,
    ) -> User:
        user = User(
            display_name=display_name,
            email=f"{uuid4().hex[:8]}@shop.example",
            role_names=role_names if role_names is not None else ["warehouse"],
        )
        session.add(user)
        session.flush()
        return user

    return _make


@pytest.fixture
def place_order(controller, snapshot):
    """Create an order through the controller.  Returns the order id."""

    def _place(lines: list[tuple[Product, int]], key: str | None = None) -> UUID:
        response = controller.create_order(
            key or f"checkout-{uuid4()}",
            [{"product_id": product.id, "quantity": qty} for product, qty in lines],
            snapshot,
        )
        return UUID(response["order_id"])

    return _place

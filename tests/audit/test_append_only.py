"""
Append-only enforcement for the inventory ledger and order history.

Layer 1 (ORM listeners) runs on every backend.  Layer 2 (PostgreSQL
triggers) also rejects raw SQL and is exercised by the ``postgres`` tests.

Verifies:
- InventoryMovement and OrderStatusHistory rows cannot be updated or deleted
- OrderItem rows and the order's customer snapshot cannot be changed
- Product stock cannot be written except through the ledger
- Mutable fields (order status, assignee, product name) stay writable
"""

import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError

from fulfillment_kernel.db.engine import get_engine
from fulfillment_kernel.db.immutability import (
    listeners_registered,
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from fulfillment_kernel.db.triggers import triggers_installed
from fulfillment_kernel.exceptions import ImmutabilityViolationError
from fulfillment_kernel.models.inventory_movement import InventoryMovement
from fulfillment_kernel.models.order import Order, OrderItem, OrderStatusHistory


def _first_movement(session, product_id) -> InventoryMovement:
    return session.execute(
        select(InventoryMovement)
        .where(InventoryMovement.product_id == product_id)
        .order_by(InventoryMovement.sequence)
    ).scalars().first()


class TestListenerRegistration:
    def test_registered_for_suite(self, db_tables):
        assert listeners_registered()

    def test_register_is_idempotent(self, db_tables):
        register_immutability_listeners()
        register_immutability_listeners()
        assert listeners_registered()

    def test_unregister_and_restore(self, db_tables):
        unregister_immutability_listeners()
        try:
            assert not listeners_registered()
        finally:
            register_immutability_listeners()
        assert listeners_registered()


class TestMovementImmutability:
    def test_update_blocked(self, session, make_product):
        product = make_product(stock=5)
        movement = _first_movement(session, product.id)

        movement.reference = "Rewritten history"
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "InventoryMovement"
        assert exc_info.value.code == "IMMUTABILITY_VIOLATION"

    def test_delete_blocked(self, session, make_product):
        product = make_product(stock=5)

        session.delete(_first_movement(session, product.id))
        with pytest.raises(ImmutabilityViolationError, match="cannot be deleted"):
            session.flush()

    def test_violation_logged(self, session, make_product, captured_logs):
        product = make_product(stock=5)
        _first_movement(session, product.id).quantity_delta = 50

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked[0]["entity_type"] == "InventoryMovement"
        assert blocked[0]["operation"] == "UPDATE"


class TestOrderImmutability:
    def test_history_update_blocked(self, session, make_product, place_order):
        order_id = place_order([(make_product(stock=5), 1)])
        entry = session.execute(
            select(OrderStatusHistory).where(OrderStatusHistory.order_id == order_id)
        ).scalar_one()

        entry.position = 9
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_history_delete_blocked(self, session, make_product, place_order):
        order_id = place_order([(make_product(stock=5), 1)])
        entry = session.execute(
            select(OrderStatusHistory).where(OrderStatusHistory.order_id == order_id)
        ).scalar_one()

        session.delete(entry)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_item_update_blocked(self, session, make_product, place_order):
        order_id = place_order([(make_product(stock=5), 2)])
        item = session.execute(select(OrderItem).where(OrderItem.order_id == order_id)).scalar_one()

        item.unit_cents = 1
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    @pytest.mark.parametrize(
        "field, value",
        [
            ("customer_email", "someone-else@example.com"),
            ("shipping_city", "Karachi"),
            ("total_cents", 1),
            ("currency", "USD"),
        ],
    )
    def test_snapshot_frozen(self, session, make_product, place_order, field, value):
        order_id = place_order([(make_product(stock=5), 1)])
        order = session.get(Order, order_id)

        setattr(order, field, value)
        with pytest.raises(ImmutabilityViolationError, match=field):
            session.flush()

    def test_assignee_stays_writable(self, session, make_product, make_user, place_order):
        order_id = place_order([(make_product(stock=5), 1)])
        order = session.get(Order, order_id)

        order.assigned_to_user_id = make_user().id
        session.flush()


class TestProductStockOwnership:
    def test_direct_stock_write_blocked(self, session, make_product):
        product = make_product(stock=5)

        product.stock_quantity = 500
        with pytest.raises(ImmutabilityViolationError, match="inventory ledger"):
            session.flush()

    def test_version_write_blocked(self, session, make_product):
        product = make_product(stock=5)

        product.ledger_version = 0
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_catalogue_fields_writable(self, session, make_product, ledger):
        product = make_product(stock=5)

        product.name = "Embroidered kurta"
        product.price_cents = 4999
        session.flush()

        assert ledger.current_stock(product.id) == 5


@pytest.mark.postgres
class TestDatabaseTriggers:
    """Raw SQL bypasses the ORM; the triggers still refuse it."""

    def test_triggers_installed(self, db_tables):
        assert triggers_installed(get_engine())

    def test_raw_movement_update_blocked(self, session, make_product):
        product = make_product(stock=5)
        session.flush()

        with pytest.raises(DBAPIError, match="append-only"):
            session.execute(
                text("UPDATE inventory_movements SET quantity_delta = 99 WHERE product_id = :pid"),
                {"pid": str(product.id)},
            )
        session.rollback()

    def test_raw_movement_delete_blocked(self, session, make_product):
        product = make_product(stock=5)
        session.flush()

        with pytest.raises(DBAPIError, match="append-only"):
            session.execute(
                text("DELETE FROM inventory_movements WHERE product_id = :pid"),
                {"pid": str(product.id)},
            )
        session.rollback()

    def test_raw_history_update_blocked(self, session, make_product, place_order):
        order_id = place_order([(make_product(stock=5), 1)])

        with pytest.raises(DBAPIError, match="append-only"):
            session.execute(
                text("UPDATE order_status_history SET status = 'DELIVERED' WHERE order_id = :oid"),
                {"oid": str(order_id)},
            )
        session.rollback()

    def test_raw_item_update_blocked(self, session, make_product, place_order):
        order_id = place_order([(make_product(stock=5), 1)])

        with pytest.raises(DBAPIError, match="immutable"):
            session.execute(
                text("UPDATE order_items SET quantity = 50 WHERE order_id = :oid"),
                {"oid": str(order_id)},
            )
        session.rollback()

"""
ORM-level append-only enforcement (layer 1 of 2).

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity               | Rule                                   | Layer 2 (PostgreSQL)
---------------------|----------------------------------------|---------------------
InventoryMovement    | no UPDATE, no DELETE                   | 01_inventory_movement.sql
OrderStatusHistory   | no UPDATE, no DELETE                   | 02_order_status_history.sql
OrderItem            | no UPDATE                              | 03_order_item.sql
Order                | snapshot columns frozen after INSERT   | -
Product              | stock_quantity / ledger_version never  | -
                     | written through attribute assignment   |

SQLAlchemy fires ``before_update`` / ``before_delete`` during ``flush()``,
before any SQL reaches the database.  A violation raises
``ImmutabilityViolationError`` and the flush aborts.

Product stock is only ever changed by InventoryLedger's conditional UPDATE
statement.  Statement-level updates do not go through the unit of work, so
they never reach these listeners; attribute-level writes (``product.
stock_quantity = 7``) always do.

Usage::

    from fulfillment_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

Tests that deliberately tamper with rows can call
``unregister_immutability_listeners()`` and register again afterwards.
"""

from sqlalchemy import event, inspect

from fulfillment_kernel.exceptions import ImmutabilityViolationError
from fulfillment_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

LEDGER_OWNED_PRODUCT_FIELDS = frozenset({"stock_quantity", "ledger_version"})


def _changed_fields(target, names) -> list[str]:
    state = inspect(target)
    return sorted(
        name for name in names if state.attrs[name].history.has_changes()
    )


def _blocked(entity_type: str, target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=target.id,
        reason=reason,
    )


# =============================================================================
# Append-only rows
# =============================================================================


def _check_movement_update(mapper, connection, target):
    _blocked(
        "InventoryMovement",
        target,
        "UPDATE",
        "Inventory movements cannot be modified; record a compensating movement",
    )


def _check_movement_delete(mapper, connection, target):
    _blocked(
        "InventoryMovement",
        target,
        "DELETE",
        "Inventory movements cannot be deleted",
    )


def _check_history_update(mapper, connection, target):
    _blocked(
        "OrderStatusHistory",
        target,
        "UPDATE",
        "Status history entries cannot be modified",
    )


def _check_history_delete(mapper, connection, target):
    _blocked(
        "OrderStatusHistory",
        target,
        "DELETE",
        "Status history entries cannot be deleted",
    )


def _check_order_item_update(mapper, connection, target):
    _blocked(
        "OrderItem",
        target,
        "UPDATE",
        "Order items are a checkout snapshot and cannot be modified",
    )


# =============================================================================
# Partially mutable rows
# =============================================================================


def _check_order_snapshot(mapper, connection, target):
    from fulfillment_kernel.models.order import SNAPSHOT_COLUMNS

    frozen = (*SNAPSHOT_COLUMNS, "total_cents", "currency", "payment_method")
    changed = _changed_fields(target, frozen)
    if changed:
        _blocked(
            "Order",
            target,
            "UPDATE",
            f"Order snapshot fields cannot change after creation: {changed}",
        )


def _check_product_stock_write(mapper, connection, target):
    changed = _changed_fields(target, LEDGER_OWNED_PRODUCT_FIELDS)
    if changed:
        _blocked(
            "Product",
            target,
            "UPDATE",
            f"{changed} may only change through the inventory ledger",
        )


_LISTENERS = (
    ("InventoryMovement", "before_update", _check_movement_update),
    ("InventoryMovement", "before_delete", _check_movement_delete),
    ("OrderStatusHistory", "before_update", _check_history_update),
    ("OrderStatusHistory", "before_delete", _check_history_delete),
    ("OrderItem", "before_update", _check_order_item_update),
    ("Order", "before_update", _check_order_snapshot),
    ("Product", "before_update", _check_product_stock_write),
)


def _model(name: str):
    import fulfillment_kernel.models as models

    return getattr(models, name)


def register_immutability_listeners() -> None:
    """
    Register all append-only listeners.  Safe to call more than once.

    Call after the models are importable and before any writes.
    """
    for model_name, event_name, listener_fn in _LISTENERS:
        model = _model(model_name)
        if not event.contains(model, event_name, listener_fn):
            event.listen(model, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove the listeners.

    WARNING: only for tests that need to bypass layer 1 on purpose.
    """
    for model_name, event_name, listener_fn in _LISTENERS:
        model = _model(model_name)
        if event.contains(model, event_name, listener_fn):
            event.remove(model, event_name, listener_fn)


def listeners_registered() -> bool:
    return all(
        event.contains(_model(model_name), event_name, listener_fn)
        for model_name, event_name, listener_fn in _LISTENERS
    )

"""
Order status state machine (``fulfillment_kernel.domain.order_status``).

Responsibility
--------------
Single source of truth for which order status changes are allowed.  The
Order Lifecycle Controller consults ``is_valid_transition`` before every
status write and the test suite checks persisted histories against the
same table.

Architecture position
---------------------
**Kernel domain layer** -- pure values and functions.  ZERO I/O.

State machine::

    PENDING    -> CONFIRMED | PROCESSING | SHIPPED | CANCELLED
    CONFIRMED  -> PROCESSING | SHIPPED | CANCELLED
    PROCESSING -> SHIPPED | CANCELLED
    SHIPPED    -> DELIVERED | CANCELLED
    DELIVERED: terminal
    CANCELLED: terminal

A self-transition (``from == to``) is always valid and is a no-op.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum


class OrderStatus(str, Enum):
    """Lifecycle status of an order."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({
        OrderStatus.CONFIRMED,
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.CONFIRMED: frozenset({
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.PROCESSING: frozenset({
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.SHIPPED: frozenset({
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    }),
    # Terminal states
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

INITIAL_STATUS = OrderStatus.PENDING

TERMINAL_STATUSES: frozenset[OrderStatus] = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)


def coerce_status(value: OrderStatus | str) -> OrderStatus:
    """Accept an enum member or its (case-insensitive) string value."""
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(str(value).upper())
    except ValueError:
        raise ValueError(f"Unknown order status: {value!r}") from None


def is_terminal(status: OrderStatus | str) -> bool:
    return coerce_status(status) in TERMINAL_STATUSES


def is_valid_transition(
    from_status: OrderStatus | str,
    to_status: OrderStatus | str,
) -> bool:
    """True iff ``to_status`` may follow ``from_status`` (self-transition included)."""
    source = coerce_status(from_status)
    target = coerce_status(to_status)
    if source == target:
        return True
    return target in ALLOWED_TRANSITIONS[source]


def validate_history(statuses: Iterable[OrderStatus | str]) -> bool:
    """
    True iff a recorded status history is a legal walk of the machine.

    The history must start at PENDING, every consecutive pair must be a
    distinct valid transition, and nothing may follow a terminal status.
    """
    walk = [coerce_status(s) for s in statuses]
    if not walk or walk[0] != INITIAL_STATUS:
        return False
    for previous, current in zip(walk, walk[1:]):
        if previous == current or previous in TERMINAL_STATUSES:
            return False
        if not is_valid_transition(previous, current):
            return False
    return True

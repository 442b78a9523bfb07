"""Pure domain layer: value objects, state machine and clock.  No I/O."""

from fulfillment_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from fulfillment_kernel.domain.movement import MovementRequest, MovementType
from fulfillment_kernel.domain.order_status import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    OrderStatus,
    is_terminal,
    is_valid_transition,
)

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "MovementRequest",
    "MovementType",
    "OrderStatus",
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATUSES",
    "is_terminal",
    "is_valid_transition",
]

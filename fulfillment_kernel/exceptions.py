"""
Typed exception hierarchy for the fulfillment kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (checkout front door, admin UI, notification workers) must react to
specific outcomes: "out of stock" is a terminal business answer, a duplicate
checkout is a transient condition to poll, an invalid status change is a
mistake to surface.  Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a stable CODE class attribute (machine-readable)
  3. Exceptions carry structured DATA as attributes (not just a message)

Example:
    try:
        service.adjust_stock(product_id, -3, "Damaged", actor_id)
    except InsufficientStockError as e:
        api_response(status=409, body=e.to_dict())

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    FulfillmentKernelError (base)
    |
    +-- ValidationError
    +-- InvalidTransitionError
    +-- InsufficientStockError
    +-- DuplicateRequestError
    |
    +-- NotFoundError
    |   +-- ProductNotFoundError
    |   +-- OrderNotFoundError
    |   +-- UserNotFoundError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                        | When Raised                            | Retry?
----------------------------|----------------------------------------|--------
VALIDATION_ERROR            | Zero delta, blank reference, bad items | never
INVALID_TRANSITION          | Order status change not in the table   | never
INSUFFICIENT_STOCK          | Movement would drive stock below zero  | never
DUPLICATE_REQUEST           | Idempotency key still being processed  | poll
PRODUCT_NOT_FOUND           | Unknown product id                     | never
ORDER_NOT_FOUND             | Unknown order id                       | never
USER_NOT_FOUND              | Unknown staff/user id                  | never
OPTIMISTIC_LOCK_CONFLICT    | Stock CAS retries exhausted            | yes
IMMUTABILITY_VIOLATION      | Edit/delete of an append-only row      | never
"""

from __future__ import annotations

from typing import Any
from uuid import UUID


class FulfillmentKernelError(Exception):
    """
    Base exception for all fulfillment kernel errors.

    All subclasses define a ``code`` class attribute and store their
    context as public attributes so ``to_dict()`` can render them.
    """

    code: str = "FULFILLMENT_KERNEL_ERROR"

    def details(self) -> dict[str, Any]:
        """Structured context carried by this error."""
        out: dict[str, Any] = {}
        for key, value in vars(self).items():
            if key.startswith("_"):
                continue
            if isinstance(value, UUID):
                value = str(value)
            elif isinstance(value, (list, tuple)):
                value = [str(v) if isinstance(v, UUID) else v for v in value]
            out[key] = value
        return out

    def to_dict(self) -> dict[str, Any]:
        """API-safe representation: code, message and structured details."""
        return {"code": self.code, "message": str(self), **self.details()}


class ValidationError(FulfillmentKernelError):
    """Malformed input rejected before any write."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidTransitionError(FulfillmentKernelError):
    """Requested order status is not reachable from the current one."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, order_id: UUID, from_status: str, to_status: str):
        self.order_id = order_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid status transition from {from_status} to {to_status} "
            f"for order {order_id}"
        )


class InsufficientStockError(FulfillmentKernelError):
    """A movement would drive the product's stock below zero."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: UUID, available: int, requested_delta: int):
        self.product_id = product_id
        self.available = available
        self.requested_delta = requested_delta
        super().__init__(
            f"Insufficient stock for product {product_id}. "
            f"Available: {available}, requested change: {requested_delta}."
        )


class DuplicateRequestError(FulfillmentKernelError):
    """
    The idempotency key is being processed by another caller.

    Transient: the caller should re-read (poll) rather than re-submit with
    a fresh key.
    """

    code: str = "DUPLICATE_REQUEST"

    def __init__(self, idempotency_key: str, attempts: int = 0):
        self.idempotency_key = idempotency_key
        self.attempts = attempts
        super().__init__(
            f"Request with idempotency key {idempotency_key!r} is still in flight"
        )


# Lookup failures


class NotFoundError(FulfillmentKernelError):
    """Base exception for unknown entities."""

    code: str = "NOT_FOUND"


class ProductNotFoundError(NotFoundError):
    """One or more product ids do not exist."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_ids: UUID | list[UUID]):
        if not isinstance(product_ids, list):
            product_ids = [product_ids]
        self.product_ids = product_ids
        joined = ", ".join(str(p) for p in product_ids)
        super().__init__(f"Products not found: {joined}")


class OrderNotFoundError(NotFoundError):
    """Order with given id was not found."""

    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id: UUID):
        self.order_id = order_id
        super().__init__(f"Order with id {order_id} not found")


class UserNotFoundError(NotFoundError):
    """User with given id was not found."""

    code: str = "USER_NOT_FOUND"

    def __init__(self, user_id: UUID):
        self.user_id = user_id
        super().__init__(f"No user found with id {user_id}")


# Concurrency


class ConcurrencyError(FulfillmentKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Stock compare-and-swap kept losing to concurrent writers."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, product_id: UUID, attempts: int):
        self.product_id = product_id
        self.attempts = attempts
        super().__init__(
            f"Concurrent modification of product {product_id} "
            f"(gave up after {attempts} attempts)"
        )


class ImmutabilityViolationError(FulfillmentKernelError):
    """Attempt to edit or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: Any, reason: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id) if entity_id is not None else None
        self.reason = reason
        super().__init__(f"{entity_type} {entity_id} is immutable: {reason}")

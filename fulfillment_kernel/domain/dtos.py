"""
Data transfer objects crossing the kernel boundary.

Frozen dataclasses only: services return these instead of ORM instances so
callers never hold a live, session-bound row.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from collections.abc import Mapping
from typing import Any
from uuid import UUID

from fulfillment_kernel.domain.movement import MovementType
from fulfillment_kernel.domain.order_status import OrderStatus
from fulfillment_kernel.exceptions import ValidationError


def _jsonable(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (OrderStatus, MovementType)):
        return value.value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def coerce_uuid(value: Any, field: str) -> UUID | None:
    """Accept a UUID or its string form; None passes through."""
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be a valid UUID", field=field) from None


# =============================================================================
# Order input
# =============================================================================


def _line_product_id(value: Any) -> UUID:
    try:
        return value if isinstance(value, UUID) else UUID(str(value))
    except ValueError:
        raise ValidationError(f"product_id must be a valid UUID: {value!r}", field="items") from None


@dataclass(frozen=True)
class OrderLineRequest:
    """One requested line of a checkout: product and positive quantity."""

    product_id: UUID
    quantity: int

    @classmethod
    def from_value(cls, value: OrderLineRequest | dict[str, Any]) -> OrderLineRequest:
        if isinstance(value, OrderLineRequest):
            line = cls(product_id=_line_product_id(value.product_id), quantity=value.quantity)
        else:
            try:
                product_id = value["product_id"]
                quantity = value["quantity"]
            except (KeyError, TypeError):
                raise ValidationError(
                    "Each item needs product_id and quantity", field="items"
                ) from None
            line = cls(product_id=_line_product_id(product_id), quantity=quantity)

        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity < 1:
            raise ValidationError(
                f"quantity must be a positive integer (got {line.quantity!r})",
                field="items",
            )
        return line


@dataclass(frozen=True)
class CustomerSnapshot:
    """
    Customer and shipping details captured at order creation.

    Copied onto the order row once and never re-read from the customer's
    profile afterwards.
    """

    customer_email: str
    customer_phone: str | None = None
    customer_name: str | None = None
    shipping_country: str | None = None
    shipping_address_line1: str | None = None
    shipping_address_line2: str | None = None
    shipping_city: str | None = None
    shipping_postal_code: str | None = None

    @classmethod
    def from_value(cls, value: CustomerSnapshot | dict[str, Any]) -> CustomerSnapshot:
        if isinstance(value, CustomerSnapshot):
            data = asdict(value)
        elif not isinstance(value, Mapping):
            raise ValidationError(
                "snapshot must be a mapping of customer and shipping fields", field="snapshot"
            )
        else:
            allowed = {f.name for f in fields(cls)}
            unknown = set(value) - allowed
            if unknown:
                raise ValidationError(
                    f"Unknown snapshot fields: {sorted(unknown)}", field="snapshot"
                )
            data = dict(value)

        for key, val in data.items():
            if val is not None and not isinstance(val, str):
                raise ValidationError(f"{key} must be text (got {val!r})", field=key)
        cleaned = {
            key: (val.strip() or None) if isinstance(val, str) else val
            for key, val in data.items()
        }
        email = cleaned.get("customer_email")
        if not isinstance(email, str) or "@" not in email:
            raise ValidationError(
                "customer_email must be a valid email address", field="customer_email"
            )
        return cls(**cleaned)


# =============================================================================
# Order output
# =============================================================================


@dataclass(frozen=True)
class OrderItemView:
    product_id: UUID
    quantity: int
    unit_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.unit_cents * self.quantity


@dataclass(frozen=True)
class StatusHistoryEntry:
    position: int
    status: OrderStatus
    created_at: datetime


@dataclass(frozen=True)
class OrderView:
    """Read model of an order with its items and status history."""

    id: UUID
    status: OrderStatus
    total_cents: int
    currency: str
    payment_method: str
    snapshot: CustomerSnapshot
    customer_user_id: UUID | None
    assigned_to_user_id: UUID | None
    items: tuple[OrderItemView, ...]
    status_history: tuple[StatusHistoryEntry, ...]
    created_at: datetime
    updated_at: datetime

    @property
    def status_changed_at(self) -> datetime:
        """Timestamp of the latest history entry (falls back to updated_at)."""
        if self.status_history:
            return self.status_history[-1].created_at
        return self.updated_at

    def to_dict(self) -> dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class StatusChange:
    """Published to status listeners after a transition commits."""

    order_id: UUID
    previous_status: OrderStatus
    new_status: OrderStatus
    changed_at: datetime


@dataclass(frozen=True)
class OrderFilters:
    status: OrderStatus | None = None
    customer_email: str | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    assigned_to_user_id: UUID | None = None


@dataclass(frozen=True)
class OrderPage:
    items: tuple[OrderView, ...]
    total: int
    page: int
    limit: int


# =============================================================================
# Inventory output
# =============================================================================


@dataclass(frozen=True)
class MovementView:
    """One ledger row joined with the performing actor's display identity."""

    id: UUID
    product_id: UUID
    order_id: UUID | None
    type: MovementType
    quantity_delta: int
    reference: str | None
    performed_by_user_id: UUID | None
    performed_by_name: str | None
    performed_by_email: str | None
    performed_by_role_names: tuple[str, ...]
    stock_before: int
    stock_after: int
    sequence: int
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class MovementFilters:
    types: tuple[MovementType, ...] = ()
    order_id: UUID | None = None
    performed_by_user_id: UUID | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None


@dataclass(frozen=True)
class MovementPage:
    items: tuple[MovementView, ...]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return max(1, -(-self.total // self.limit))


@dataclass(frozen=True)
class StockAdjustmentResult:
    product_id: UUID
    stock_quantity: int
    movement_id: UUID


@dataclass(frozen=True)
class LedgerCheck:
    """Outcome of recomputing a product's stock from its movements."""

    product_id: UUID
    cached_stock: int
    ledger_stock: int
    movement_count: int
    chain_breaks: tuple[int, ...] = field(default_factory=tuple)

    @property
    def is_consistent(self) -> bool:
        return self.cached_stock == self.ledger_stock and not self.chain_breaks

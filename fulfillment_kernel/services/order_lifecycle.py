"""
OrderLifecycleController -- order creation and status transitions.

Responsibility:
    Creates orders through the IdempotencyGuard (deducting stock once per
    line via the InventoryLedger), moves orders through the status state
    machine with an append-only history, and restores stock when an order
    is cancelled.

Architecture position:
    Kernel > Services -- imperative shell.
    Consults ``domain.order_status.is_valid_transition`` (pure) before every
    status write.  Called by FulfillmentService, which owns the transaction.

Invariants enforced:
    - Every persisted status change is allowed by the transition table and
      recorded as a new history row at the next position.
    - A multi-line checkout is all-or-nothing: products are validated
      first, then SALE movements are applied in ascending product-id order;
      any failure propagates and the caller rolls back.
    - Cancellation issues exactly one RESTORE per order item, and never a
      second set for the same order.

Failure modes:
    - ValidationError: empty items, bad quantities, mixed currencies,
      bad snapshot, unknown status name.
    - ProductNotFoundError / OrderNotFoundError / UserNotFoundError.
    - InsufficientStockError from the ledger.
    - InvalidTransitionError: target not reachable from current status.
    - DuplicateRequestError from the guard.

Audit relevance:
    ``order_created``, ``order_status_changed``, ``order_stock_restored``
    and ``order_staff_assigned`` are logged with the order id.
"""

from collections.abc import Iterable, Mapping
from dataclasses import asdict
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from fulfillment_kernel.config import IdempotencyConfig, LedgerConfig
from fulfillment_kernel.domain.clock import Clock
from fulfillment_kernel.domain.dtos import (
    CustomerSnapshot,
    OrderLineRequest,
    OrderView,
    StatusChange,
)
from fulfillment_kernel.domain.movement import MovementRequest, MovementType
from fulfillment_kernel.domain.order_status import (
    INITIAL_STATUS,
    OrderStatus,
    coerce_status,
    is_terminal,
    is_valid_transition,
)
from fulfillment_kernel.exceptions import (
    InvalidTransitionError,
    OrderNotFoundError,
    ProductNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from fulfillment_kernel.logging_config import LogContext, get_logger
from fulfillment_kernel.models.inventory_movement import InventoryMovement
from fulfillment_kernel.models.order import Order, OrderItem, OrderStatusHistory
from fulfillment_kernel.models.product import Product
from fulfillment_kernel.models.user import User
from fulfillment_kernel.selectors.order_selector import OrderSelector, order_to_view
from fulfillment_kernel.services.base import BaseService
from fulfillment_kernel.services.idempotency_guard import IdempotencyGuard
from fulfillment_kernel.services.inventory_ledger import InventoryLedger

logger = get_logger("services.order_lifecycle")

DEFAULT_PAYMENT_METHOD = "COD"


class OrderLifecycleController(BaseService[Order]):
    """
    Order state machine driver.

    Status changes made through this instance are appended to
    ``self.changes`` so the transaction owner can publish them after
    commit.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        ledger: InventoryLedger | None = None,
        guard: IdempotencyGuard | None = None,
        ledger_config: LedgerConfig | None = None,
        idempotency_config: IdempotencyConfig | None = None,
    ):
        super().__init__(session, clock)
        self.ledger = ledger or InventoryLedger(session, self.clock, ledger_config)
        self.guard = guard or IdempotencyGuard(session, self.clock, idempotency_config)
        self.orders = OrderSelector(session)
        self.changes: list[StatusChange] = []

    # =========================================================================
    # Creation
    # =========================================================================

    def create_order(
        self,
        idempotency_key: str,
        items: Iterable[OrderLineRequest | Mapping[str, Any]],
        snapshot: CustomerSnapshot | Mapping[str, Any],
        payment_method: str = DEFAULT_PAYMENT_METHOD,
        customer_user_id: UUID | None = None,
    ) -> dict[str, Any]:
        """
        Create a PENDING order and deduct its stock, at most once per key.

        Returns:
            ``{"order_id", "status", "total_cents", "currency"}`` -- on a
            replay, exactly the response of the first execution.
        """
        if isinstance(items, (str, bytes)) or items is None:
            raise ValidationError("items must be a list of order lines", field="items")
        lines = [OrderLineRequest.from_value(item) for item in items]
        if not lines:
            raise ValidationError("An order needs at least one item", field="items")
        customer = CustomerSnapshot.from_value(snapshot)
        if not isinstance(payment_method, str) or not payment_method.strip():
            raise ValidationError("payment_method is required", field="payment_method")

        return self.guard.execute_idempotent(
            idempotency_key,
            lambda: self._place_order(lines, customer, payment_method.strip(), customer_user_id),
        )

    def _place_order(
        self,
        lines: list[OrderLineRequest],
        customer: CustomerSnapshot,
        payment_method: str,
        customer_user_id: UUID | None,
    ) -> dict[str, Any]:
        product_ids = sorted({line.product_id for line in lines})
        products = {
            product.id: product
            for product in self.session.execute(
                select(Product).where(Product.id.in_(product_ids))
            ).scalars()
        }
        missing = [pid for pid in product_ids if pid not in products]
        if missing:
            raise ProductNotFoundError(missing)

        currencies = {products[pid].currency for pid in product_ids}
        if len(currencies) != 1:
            raise ValidationError(
                f"All items must share one currency (got {sorted(currencies)})",
                field="items",
            )
        currency = currencies.pop()

        now = self.clock.now()
        order = Order(
            id=uuid4(),
            status=INITIAL_STATUS,
            total_cents=sum(products[line.product_id].price_cents * line.quantity for line in lines),
            currency=currency,
            payment_method=payment_method,
            customer_user_id=customer_user_id,
            created_at=now,
            updated_at=now,
            **asdict(customer),
        )
        for line in lines:
            order.items.append(
                OrderItem(
                    product_id=line.product_id,
                    quantity=line.quantity,
                    unit_cents=products[line.product_id].price_cents,
                )
            )
        order.status_history.append(
            OrderStatusHistory(position=0, status=INITIAL_STATUS, created_at=now)
        )
        self.session.add(order)
        self.session.flush()

        with LogContext.bind(order_id=order.id):
            # Ascending product id: concurrent multi-line orders lock rows in the same order
            for line in sorted(lines, key=lambda line: line.product_id):
                self.ledger.apply(MovementRequest.sale(line.product_id, line.quantity, order.id))

            logger.info(
                "order_created",
                extra={
                    "line_count": len(lines),
                    "total_cents": order.total_cents,
                    "currency": currency,
                },
            )

        return {
            "order_id": str(order.id),
            "status": order.status.value,
            "total_cents": order.total_cents,
            "currency": currency,
        }

    # =========================================================================
    # Transitions
    # =========================================================================

    def transition(self, order_id: UUID, requested_status: OrderStatus | str) -> OrderView:
        """
        Move an order to ``requested_status``.

        Requesting the current status is a no-op.  Cancelling a
        non-terminal order restores its stock.
        """
        try:
            target = coerce_status(requested_status)
        except ValueError as exc:
            raise ValidationError(str(exc), field="status") from None

        with LogContext.bind(order_id=order_id):
            order = self._lock_order(order_id)
            current = order.status

            if target == current:
                logger.debug("order_status_unchanged", extra={"status": current.value})
                return order_to_view(order)

            if not is_valid_transition(current, target):
                logger.warning(
                    "invalid_transition_rejected",
                    extra={"from_status": current.value, "to_status": target.value},
                )
                raise InvalidTransitionError(order.id, current.value, target.value)

            now = self.clock.now()
            next_position = self.session.execute(
                select(func.coalesce(func.max(OrderStatusHistory.position), -1) + 1)
                .where(OrderStatusHistory.order_id == order.id)
            ).scalar_one()
            order.status_history.append(
                OrderStatusHistory(position=next_position, status=target, created_at=now)
            )
            order.status = target
            order.updated_at = now
            self.session.flush()

            if target == OrderStatus.CANCELLED and not is_terminal(current):
                self._restore_stock(order)

            logger.info(
                "order_status_changed",
                extra={"from_status": current.value, "to_status": target.value},
            )
            self.changes.append(
                StatusChange(
                    order_id=order.id,
                    previous_status=current,
                    new_status=target,
                    changed_at=now,
                )
            )
            return order_to_view(order)

    def _restore_stock(self, order: Order) -> None:
        already_restored = self.session.execute(
            select(func.count())
            .select_from(InventoryMovement)
            .where(
                InventoryMovement.order_id == order.id,
                InventoryMovement.type == MovementType.RESTORE,
            )
        ).scalar_one()
        if already_restored:
            logger.warning(
                "order_stock_restore_skipped",
                extra={"existing_restore_movements": already_restored},
            )
            return

        for item in sorted(order.items, key=lambda item: item.product_id):
            self.ledger.apply(MovementRequest.restore(item.product_id, item.quantity, order.id))
        logger.info("order_stock_restored", extra={"line_count": len(order.items)})

    # =========================================================================
    # Staff assignment and reads
    # =========================================================================

    def assign_staff(self, order_id: UUID, user_id: UUID | None) -> OrderView:
        """Assign (or with ``None``, unassign) a staff member.  Status is untouched."""
        with LogContext.bind(order_id=order_id):
            order = self._lock_order(order_id)
            if user_id is not None and self.session.get(User, user_id) is None:
                raise UserNotFoundError(user_id)

            order.assigned_to_user_id = user_id
            order.updated_at = self.clock.now()
            self.session.flush()
            logger.info(
                "order_staff_assigned",
                extra={"assigned_to_user_id": str(user_id) if user_id else None},
            )
            return order_to_view(order)

    def get_order(self, order_id: UUID) -> OrderView:
        return self.orders.get_order(order_id)

    def _lock_order(self, order_id: UUID) -> Order:
        order = self.session.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update(key_share=True)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

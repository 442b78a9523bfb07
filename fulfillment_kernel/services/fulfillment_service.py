"""
FulfillmentService -- transaction-owning facade over the kernel services.

Responsibility:
    The entry point callers use: each public method opens one transaction
    (``session_scope``), runs the relevant service, commits, and only then
    notifies status listeners.  A failure rolls the whole call back and
    re-raises.

Architecture position:
    Kernel > Services -- the outermost shell.  The only place in the
    kernel that commits.

Usage:
    config = load_config()
    service = FulfillmentService.from_config(config)
    response = service.create_order(
        "checkout-7f3a",
        [{"product_id": pid, "quantity": 2}],
        {"customer_email": "ayesha@example.com"},
    )
    service.transition_order_status(response["order_id"], "CONFIRMED")
"""

from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from fulfillment_kernel.config import FulfillmentConfig
from fulfillment_kernel.db.engine import (
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from fulfillment_kernel.db.immutability import register_immutability_listeners
from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.dtos import (
    CustomerSnapshot,
    MovementFilters,
    MovementPage,
    OrderFilters,
    OrderLineRequest,
    OrderPage,
    OrderView,
    StatusChange,
    StockAdjustmentResult,
    coerce_uuid,
)
from fulfillment_kernel.domain.order_status import OrderStatus
from fulfillment_kernel.logging_config import LogContext, configure_logging, get_logger
from fulfillment_kernel.selectors.movement_selector import MovementSelector
from fulfillment_kernel.selectors.order_selector import OrderSelector
from fulfillment_kernel.services.idempotency_guard import IdempotencyGuard
from fulfillment_kernel.services.inventory_ledger import InventoryLedger
from fulfillment_kernel.services.order_lifecycle import (
    DEFAULT_PAYMENT_METHOD,
    OrderLifecycleController,
)
from fulfillment_kernel.services.stock_adjustment import StockAdjustmentService

logger = get_logger("services.fulfillment")

StatusListener = Callable[[StatusChange], None]


class FulfillmentService:
    """One transaction per call; status listeners run after commit."""

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        config: FulfillmentConfig | None = None,
    ):
        self._session_factory = session_factory or get_session_factory()
        self.clock = clock or SystemClock()
        self.config = config or FulfillmentConfig()
        self._listeners: list[StatusListener] = []

    @classmethod
    def from_config(
        cls,
        config: FulfillmentConfig,
        clock: Clock | None = None,
    ) -> "FulfillmentService":
        """Initialise logging, the engine and the append-only listeners."""
        configure_logging(level=config.log_level)
        db = config.database
        init_engine_from_url(
            db.url,
            echo=db.echo,
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            pool_timeout=db.pool_timeout,
        )
        register_immutability_listeners()
        return cls(get_session_factory(), clock=clock, config=config)

    def add_status_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create_order(
        self,
        idempotency_key: str,
        items: Iterable[OrderLineRequest | Mapping[str, Any]],
        snapshot: CustomerSnapshot | Mapping[str, Any],
        payment_method: str = DEFAULT_PAYMENT_METHOD,
        customer_user_id: UUID | None = None,
    ) -> dict[str, Any]:
        with self._scope() as session:
            return self._controller(session).create_order(
                idempotency_key,
                items,
                snapshot,
                payment_method=payment_method,
                customer_user_id=customer_user_id,
            )

    def transition_order_status(
        self,
        order_id: UUID,
        new_status: OrderStatus | str,
    ) -> OrderView:
        order_id = coerce_uuid(order_id, "order_id")
        with self._scope() as session:
            controller = self._controller(session)
            view = controller.transition(order_id, new_status)
            changes = list(controller.changes)
        self._publish(changes)
        return view

    def assign_staff(self, order_id: UUID, user_id: UUID | None) -> OrderView:
        with self._scope() as session:
            return self._controller(session).assign_staff(
                coerce_uuid(order_id, "order_id"),
                coerce_uuid(user_id, "user_id"),
            )

    def adjust_stock(
        self,
        product_id: UUID,
        quantity_delta: int,
        reference: str,
        actor_user_id: UUID,
    ) -> StockAdjustmentResult:
        with self._scope() as session:
            service = StockAdjustmentService(
                session, self.clock, ledger=self._ledger(session)
            )
            return service.adjust_stock(product_id, quantity_delta, reference, actor_user_id)

    def purge_expired_keys(self, now: datetime | None = None) -> int:
        with self._scope() as session:
            guard = IdempotencyGuard(session, self.clock, self.config.idempotency)
            return guard.purge_expired(now)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_order(self, order_id: UUID) -> OrderView:
        with self._scope() as session:
            selector = OrderSelector(session, self.config.audit)
            return selector.get_order(coerce_uuid(order_id, "order_id"))

    def list_orders(
        self,
        page: int | None = 1,
        limit: int | None = None,
        filters: OrderFilters | None = None,
    ) -> OrderPage:
        with self._scope() as session:
            return OrderSelector(session, self.config.audit).list_orders(page, limit, filters)

    def list_movements(
        self,
        product_id: UUID,
        page: int | None = 1,
        limit: int | None = None,
        filters: MovementFilters | None = None,
    ) -> MovementPage:
        with self._scope() as session:
            return MovementSelector(session, self.config.audit).list_movements(
                coerce_uuid(product_id, "product_id"), page, limit, filters
            )

    # -------------------------------------------------------------------------

    def _scope(self):
        return session_scope(self._session_factory)

    def _ledger(self, session: Session) -> InventoryLedger:
        return InventoryLedger(session, self.clock, self.config.ledger)

    def _controller(self, session: Session) -> OrderLifecycleController:
        return OrderLifecycleController(
            session,
            self.clock,
            ledger=self._ledger(session),
            guard=IdempotencyGuard(session, self.clock, self.config.idempotency),
        )

    def _publish(self, changes: list[StatusChange]) -> None:
        for change in changes:
            for listener in self._listeners:
                with LogContext.bind(order_id=change.order_id):
                    try:
                        listener(change)
                    except Exception:
                        # Transition already committed.
                        logger.exception(
                            "status_listener_failed",
                            extra={
                                "listener": getattr(listener, "__name__", repr(listener)),
                                "new_status": change.new_status.value,
                            },
                        )

"""
InventoryLedger -- the only writer of product stock.

Responsibility:
    Applies one signed stock change to one product and appends the
    matching InventoryMovement row, inside the caller's transaction.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by OrderLifecycleController (SALE on checkout, RESTORE on
    cancellation) and StockAdjustmentService (ADJUSTMENT).

Invariants enforced:
    - Stock never goes negative: the movement is rejected before any write
      when stock_before + delta < 0.
    - No bare read-then-write: the product row is read with
      ``SELECT ... FOR NO KEY UPDATE`` and written with a conditional UPDATE keyed
      on ``ledger_version``.  If the version moved underneath us (SQLite,
      or a writer that skipped the lock) the UPDATE matches zero rows and
      the read is retried, bounded by ``LedgerConfig.max_cas_retries``.
    - stock_quantity == stock_after of the newest movement: the cached
      stock and the movement row are written in the same transaction, and
      the movement's ``sequence`` is the product's new ledger_version.

Failure modes:
    - ValidationError: request breaks a per-variant rule (no writes).
    - ProductNotFoundError: unknown product id (no writes).
    - InsufficientStockError: movement would go below zero (no writes).
    - OptimisticLockError: CAS retries exhausted.

Audit relevance:
    Every accepted movement is logged as ``movement_recorded`` with
    product, type, delta and before/after stock; every rejection for
    stock is logged as ``insufficient_stock``.
"""

from uuid import UUID

from sqlalchemy import Select, select, update
from sqlalchemy.orm import Session

from fulfillment_kernel.config import LedgerConfig
from fulfillment_kernel.domain.clock import Clock
from fulfillment_kernel.domain.movement import MovementRequest, MovementType
from fulfillment_kernel.exceptions import (
    InsufficientStockError,
    OptimisticLockError,
    ProductNotFoundError,
)
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.inventory_movement import InventoryMovement
from fulfillment_kernel.models.product import Product
from fulfillment_kernel.services.base import BaseService

logger = get_logger("services.inventory_ledger")


def lock_stock_row(product_id: UUID) -> Select:
    """
    Read stock and version under a row lock.

    ``FOR NO KEY UPDATE`` rather than ``FOR UPDATE``: an order_items insert
    in another checkout holds ``FOR KEY SHARE`` on the same product through
    its foreign key, and only the weaker lock is compatible with it.
    """
    return (
        select(Product.stock_quantity, Product.ledger_version)
        .where(Product.id == product_id)
        .with_for_update(key_share=True)
    )


class InventoryLedger(BaseService[InventoryMovement]):
    """
    Records inventory movements and keeps the cached stock in step.

    Non-goals:
        - Does NOT commit; the caller owns the transaction.
        - Does NOT lock more than one product row per call.  Callers that
          touch several products order the calls by product id.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: LedgerConfig | None = None,
    ):
        super().__init__(session, clock)
        self.config = config or LedgerConfig()

    def record_movement(
        self,
        product_id: UUID,
        type: MovementType | str,
        quantity_delta: int,
        reference: str | None = None,
        order_id: UUID | None = None,
        performed_by_user_id: UUID | None = None,
    ) -> InventoryMovement:
        """
        Validate and apply one stock movement.

        Returns:
            The persisted (flushed) InventoryMovement.
        """
        request = MovementRequest(
            product_id=product_id,
            type=type,
            quantity_delta=quantity_delta,
            reference=reference,
            order_id=order_id,
            performed_by_user_id=performed_by_user_id,
        )
        return self.apply(request)

    def apply(self, request: MovementRequest) -> InventoryMovement:
        """Apply an already-built MovementRequest (validated here)."""
        request = request.validate()
        product_id = request.product_id

        for attempt in range(1, self.config.max_cas_retries + 1):
            row = self.session.execute(lock_stock_row(product_id)).one_or_none()
            if row is None:
                raise ProductNotFoundError(product_id)

            stock_before, seen_version = row
            stock_after = stock_before + request.quantity_delta
            if stock_after < 0:
                logger.warning(
                    "insufficient_stock",
                    extra={
                        "product_id": str(product_id),
                        "movement_type": request.type.value,
                        "available": stock_before,
                        "requested_delta": request.quantity_delta,
                    },
                )
                raise InsufficientStockError(
                    product_id=product_id,
                    available=stock_before,
                    requested_delta=request.quantity_delta,
                )

            new_version = seen_version + 1
            result = self.session.execute(
                update(Product)
                .where(
                    Product.id == product_id,
                    Product.ledger_version == seen_version,
                )
                .values(stock_quantity=stock_after, ledger_version=new_version)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.info(
                    "ledger_version_conflict",
                    extra={
                        "product_id": str(product_id),
                        "seen_version": seen_version,
                        "attempt": attempt,
                    },
                )
                continue

            self._expire_cached_product(product_id)

            movement = InventoryMovement(
                product_id=product_id,
                order_id=request.order_id,
                type=request.type,
                quantity_delta=request.quantity_delta,
                reference=request.reference,
                performed_by_user_id=request.performed_by_user_id,
                stock_before=stock_before,
                stock_after=stock_after,
                sequence=new_version,
                created_at=self.clock.now(),
            )
            self.session.add(movement)
            self.session.flush()

            logger.info(
                "movement_recorded",
                extra={
                    "movement_id": str(movement.id),
                    "product_id": str(product_id),
                    "movement_type": request.type.value,
                    "quantity_delta": request.quantity_delta,
                    "stock_before": stock_before,
                    "stock_after": stock_after,
                    "sequence": new_version,
                },
            )
            return movement

        logger.error(
            "ledger_retries_exhausted",
            extra={
                "product_id": str(product_id),
                "attempts": self.config.max_cas_retries,
            },
        )
        raise OptimisticLockError(product_id, self.config.max_cas_retries)

    def current_stock(self, product_id: UUID) -> int:
        """Read the cached stock without locking."""
        stock = self.session.execute(
            select(Product.stock_quantity).where(Product.id == product_id)
        ).scalar_one_or_none()
        if stock is None:
            raise ProductNotFoundError(product_id)
        return stock

    def _expire_cached_product(self, product_id: UUID) -> None:
        # The UPDATE bypassed the unit of work; stale in-memory copies must reload.
        key = Session.identity_key(Product, product_id)
        cached = self.session.identity_map.get(key)
        if cached is not None:
            self.session.expire(cached, ["stock_quantity", "ledger_version"])

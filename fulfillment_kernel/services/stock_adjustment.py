"""
StockAdjustmentService -- staff corrections to product stock.

Every correction is an ADJUSTMENT movement through the InventoryLedger, so
it carries a reason and the acting staff member and is subject to the same
non-negativity check as sales.  There is no other way to "set" stock.
"""

from uuid import UUID

from sqlalchemy.orm import Session

from fulfillment_kernel.config import LedgerConfig
from fulfillment_kernel.domain.clock import Clock
from fulfillment_kernel.domain.dtos import StockAdjustmentResult, coerce_uuid
from fulfillment_kernel.domain.movement import MovementRequest
from fulfillment_kernel.logging_config import LogContext, get_logger
from fulfillment_kernel.models.inventory_movement import InventoryMovement
from fulfillment_kernel.services.base import BaseService
from fulfillment_kernel.services.inventory_ledger import InventoryLedger

logger = get_logger("services.stock_adjustment")


class StockAdjustmentService(BaseService[InventoryMovement]):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        ledger: InventoryLedger | None = None,
        config: LedgerConfig | None = None,
    ):
        super().__init__(session, clock)
        self.ledger = ledger or InventoryLedger(session, self.clock, config)

    def adjust_stock(
        self,
        product_id: UUID,
        quantity_delta: int,
        reference: str,
        actor_user_id: UUID,
    ) -> StockAdjustmentResult:
        """
        Apply a signed correction, e.g. +10 "Restock" or -3 "Damaged".

        Raises:
            ValidationError: zero delta, blank or over-long reference, or
                missing actor.
            InsufficientStockError: the correction would go below zero.
        """
        product_id = coerce_uuid(product_id, "product_id")
        actor_user_id = coerce_uuid(actor_user_id, "actor_user_id")

        with LogContext.bind(product_id=product_id, actor_id=actor_user_id):
            request = MovementRequest.adjustment(
                product_id=product_id,
                quantity_delta=quantity_delta,
                reference=reference,
                performed_by_user_id=actor_user_id,
            )
            movement = self.ledger.apply(request)

            logger.info(
                "stock_adjusted",
                extra={
                    "quantity_delta": movement.quantity_delta,
                    "stock_before": movement.stock_before,
                    "stock_after": movement.stock_after,
                },
            )
            return StockAdjustmentResult(
                product_id=product_id,
                stock_quantity=movement.stock_after,
                movement_id=movement.id,
            )

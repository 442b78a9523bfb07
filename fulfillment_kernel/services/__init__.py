"""Kernel services: write paths and the transaction-owning facade."""

from fulfillment_kernel.services.fulfillment_service import FulfillmentService
from fulfillment_kernel.services.idempotency_guard import IdempotencyGuard
from fulfillment_kernel.services.inventory_ledger import InventoryLedger
from fulfillment_kernel.services.order_lifecycle import OrderLifecycleController
from fulfillment_kernel.services.stock_adjustment import StockAdjustmentService

__all__ = [
    "FulfillmentService",
    "IdempotencyGuard",
    "InventoryLedger",
    "OrderLifecycleController",
    "StockAdjustmentService",
]

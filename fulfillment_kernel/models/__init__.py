"""ORM models for the fulfillment kernel."""

from fulfillment_kernel.models.idempotency_key import IdempotencyKey
from fulfillment_kernel.models.inventory_movement import InventoryMovement
from fulfillment_kernel.models.order import Order, OrderItem, OrderStatusHistory
from fulfillment_kernel.models.product import Product
from fulfillment_kernel.models.user import User

__all__ = [
    "IdempotencyKey",
    "InventoryMovement",
    "Order",
    "OrderItem",
    "OrderStatusHistory",
    "Product",
    "User",
]

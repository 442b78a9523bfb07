"""Read-only query selectors."""

from fulfillment_kernel.selectors.movement_selector import MovementSelector
from fulfillment_kernel.selectors.order_selector import OrderSelector

__all__ = ["MovementSelector", "OrderSelector"]

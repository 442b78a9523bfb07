"""
OrderSelector -- read-only order queries returning OrderView DTOs.
"""

from uuid import UUID

from sqlalchemy import func, select

from fulfillment_kernel.domain.dtos import (
    CustomerSnapshot,
    OrderFilters,
    OrderItemView,
    OrderPage,
    OrderView,
    StatusHistoryEntry,
)
from fulfillment_kernel.exceptions import OrderNotFoundError
from fulfillment_kernel.models.order import SNAPSHOT_COLUMNS, Order
from fulfillment_kernel.selectors.base import BaseSelector, clamp_page


def order_to_view(order: Order) -> OrderView:
    """Convert an Order (with items and history loaded) to its DTO."""
    return OrderView(
        id=order.id,
        status=order.status,
        total_cents=order.total_cents,
        currency=order.currency,
        payment_method=order.payment_method,
        snapshot=CustomerSnapshot(
            **{column: getattr(order, column) for column in SNAPSHOT_COLUMNS}
        ),
        customer_user_id=order.customer_user_id,
        assigned_to_user_id=order.assigned_to_user_id,
        items=tuple(
            OrderItemView(
                product_id=item.product_id,
                quantity=item.quantity,
                unit_cents=item.unit_cents,
            )
            for item in order.items
        ),
        status_history=tuple(
            StatusHistoryEntry(
                position=entry.position,
                status=entry.status,
                created_at=entry.created_at,
            )
            for entry in order.status_history
        ),
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


class OrderSelector(BaseSelector[Order]):
    def get_order(self, order_id: UUID) -> OrderView:
        order = self.session.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order_to_view(order)

    def list_orders(
        self,
        page: int | None = 1,
        limit: int | None = None,
        filters: OrderFilters | None = None,
    ) -> OrderPage:
        """Newest orders first, optionally filtered."""
        page, limit = clamp_page(page, limit, self.config)
        conditions = self._conditions(filters or OrderFilters())

        total = self.session.execute(
            select(func.count()).select_from(Order).where(*conditions)
        ).scalar_one()

        orders = self.session.execute(
            select(Order)
            .where(*conditions)
            .order_by(Order.created_at.desc(), Order.id)
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()

        return OrderPage(
            items=tuple(order_to_view(order) for order in orders),
            total=total,
            page=page,
            limit=limit,
        )

    @staticmethod
    def _conditions(filters: OrderFilters) -> list:
        conditions = []
        if filters.status is not None:
            conditions.append(Order.status == filters.status)
        if filters.customer_email:
            conditions.append(
                func.lower(Order.customer_email) == filters.customer_email.strip().lower()
            )
        if filters.created_from is not None:
            conditions.append(Order.created_at >= filters.created_from)
        if filters.created_to is not None:
            conditions.append(Order.created_at <= filters.created_to)
        if filters.assigned_to_user_id is not None:
            conditions.append(Order.assigned_to_user_id == filters.assigned_to_user_id)
        return conditions

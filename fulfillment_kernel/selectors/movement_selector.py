"""
Module: fulfillment_kernel.selectors.movement_selector
Responsibility: Read-only audit view over the inventory ledger -- paginated
    movement history per product with the performing actor's display
    identity, plus ledger consistency checks.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Read-only.
    - Page is clamped to >= 1 and limit to 1..AuditConfig.max_page_size.
    - Newest first: created_at DESC, then sequence DESC so movements with
      identical timestamps keep ledger order.
    - Movements without an actor, or whose actor is unknown to the users
      table, are still returned (LEFT OUTER JOIN) with null display fields.

Failure modes:
    - ProductNotFoundError for an unknown product id.
"""

from uuid import UUID

from sqlalchemy import func, select

from fulfillment_kernel.domain.dtos import LedgerCheck, MovementFilters, MovementPage, MovementView
from fulfillment_kernel.exceptions import ProductNotFoundError
from fulfillment_kernel.models.inventory_movement import InventoryMovement
from fulfillment_kernel.models.product import Product
from fulfillment_kernel.models.user import User
from fulfillment_kernel.selectors.base import BaseSelector, clamp_page


def _to_view(movement: InventoryMovement, name, email, role_names) -> MovementView:
    return MovementView(
        id=movement.id,
        product_id=movement.product_id,
        order_id=movement.order_id,
        type=movement.type,
        quantity_delta=movement.quantity_delta,
        reference=movement.reference,
        performed_by_user_id=movement.performed_by_user_id,
        performed_by_name=name,
        performed_by_email=email,
        performed_by_role_names=tuple(role_names or ()),
        stock_before=movement.stock_before,
        stock_after=movement.stock_after,
        sequence=movement.sequence,
        created_at=movement.created_at,
    )


class MovementSelector(BaseSelector[InventoryMovement]):
    """Inventory audit queries."""

    def list_movements(
        self,
        product_id: UUID,
        page: int | None = 1,
        limit: int | None = None,
        filters: MovementFilters | None = None,
    ) -> MovementPage:
        """
        One page of a product's movement history, newest first.

        Args:
            product_id: Product whose ledger is listed.
            page: 1-based page number (clamped to >= 1).
            limit: Page size (clamped to 1..max_page_size, default 20).
            filters: Optional type / order / actor / date-range filters.

        Returns:
            MovementPage with the page items and the filtered total.
        """
        self._require_product(product_id)
        page, limit = clamp_page(page, limit, self.config)
        conditions = self._conditions(product_id, filters or MovementFilters())

        total = self.session.execute(
            select(func.count()).select_from(InventoryMovement).where(*conditions)
        ).scalar_one()

        rows = self.session.execute(
            select(InventoryMovement, User.display_name, User.email, User.role_names)
            .outerjoin(User, User.id == InventoryMovement.performed_by_user_id)
            .where(*conditions)
            .order_by(InventoryMovement.created_at.desc(), InventoryMovement.sequence.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()

        return MovementPage(
            items=tuple(_to_view(*row) for row in rows),
            total=total,
            page=page,
            limit=limit,
        )

    def movements_for_order(self, order_id: UUID) -> tuple[MovementView, ...]:
        """Every SALE/RESTORE movement caused by an order, oldest first."""
        rows = self.session.execute(
            select(InventoryMovement, User.display_name, User.email, User.role_names)
            .outerjoin(User, User.id == InventoryMovement.performed_by_user_id)
            .where(InventoryMovement.order_id == order_id)
            .order_by(
                InventoryMovement.created_at,
                InventoryMovement.product_id,
                InventoryMovement.sequence,
            )
        ).all()
        return tuple(_to_view(*row) for row in rows)

    def verify_product_ledger(self, product_id: UUID) -> LedgerCheck:
        """
        Recompute a product's stock from its movements.

        A chain break is any movement whose stock_before differs from the
        previous movement's stock_after, or whose sequence skips a value.
        """
        cached_stock = self._require_product(product_id)
        movements = self.session.execute(
            select(
                InventoryMovement.sequence,
                InventoryMovement.quantity_delta,
                InventoryMovement.stock_before,
                InventoryMovement.stock_after,
            )
            .where(InventoryMovement.product_id == product_id)
            .order_by(InventoryMovement.sequence)
        ).all()

        ledger_stock = 0
        breaks = []
        for expected_sequence, (sequence, delta, stock_before, stock_after) in enumerate(
            movements, start=1
        ):
            if sequence != expected_sequence or stock_before != ledger_stock:
                breaks.append(sequence)
            ledger_stock = stock_before + delta
            if stock_after != ledger_stock:
                breaks.append(sequence)

        return LedgerCheck(
            product_id=product_id,
            cached_stock=cached_stock,
            ledger_stock=sum(delta for _, delta, _, _ in movements),
            movement_count=len(movements),
            chain_breaks=tuple(sorted(set(breaks))),
        )

    def _require_product(self, product_id: UUID) -> int:
        stock = self.session.execute(
            select(Product.stock_quantity).where(Product.id == product_id)
        ).scalar_one_or_none()
        if stock is None:
            raise ProductNotFoundError(product_id)
        return stock

    @staticmethod
    def _conditions(product_id: UUID, filters: MovementFilters) -> list:
        conditions = [InventoryMovement.product_id == product_id]
        if filters.types:
            conditions.append(InventoryMovement.type.in_(filters.types))
        if filters.order_id is not None:
            conditions.append(InventoryMovement.order_id == filters.order_id)
        if filters.performed_by_user_id is not None:
            conditions.append(
                InventoryMovement.performed_by_user_id == filters.performed_by_user_id
            )
        if filters.created_from is not None:
            conditions.append(InventoryMovement.created_at >= filters.created_from)
        if filters.created_to is not None:
            conditions.append(InventoryMovement.created_at <= filters.created_to)
        return conditions

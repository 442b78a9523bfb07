"""
Module: fulfillment_kernel.models.inventory_movement
Responsibility: ORM persistence for the inventory ledger -- one row per
    signed stock change, with cause, optional actor and the before/after
    stock figures.
Architecture position: Kernel > Models.  May import from db/ and domain/
    value types only.

Invariants enforced:
    - quantity_delta != 0 (CHECK).
    - stock_after = stock_before + quantity_delta (CHECK).
    - stock_after >= 0 (CHECK).
    - (product_id, sequence) is unique: the per-product sequence equals the
      product's ledger_version after the movement, so two writers that
      both believed they appended movement N collide here.
    - Rows are never updated or deleted (ORM listener + PostgreSQL trigger).

Audit relevance:
    This table is the audit trail.  Product.stock_quantity is derivable
    from it at any time (MovementSelector.verify_product_ledger).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, Enum as SAEnum, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import Base, UUIDString
from fulfillment_kernel.domain.movement import MAX_REFERENCE_LENGTH, MovementType


class InventoryMovement(Base):
    __tablename__ = "inventory_movements"

    __table_args__ = (
        CheckConstraint("quantity_delta <> 0", name="ck_movement_delta_non_zero"),
        CheckConstraint("stock_after >= 0", name="ck_movement_stock_after_non_negative"),
        CheckConstraint("stock_before >= 0", name="ck_movement_stock_before_non_negative"),
        CheckConstraint(
            "stock_after = stock_before + quantity_delta",
            name="ck_movement_arithmetic",
        ),
        UniqueConstraint("product_id", "sequence", name="uq_movement_product_sequence"),
        Index("idx_movement_product_created", "product_id", "created_at"),
        Index("idx_movement_order", "order_id"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Present for SALE/RESTORE, absent for manual ADJUSTMENT
    order_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=True,
    )

    type: Mapped[MovementType] = mapped_column(
        SAEnum(
            MovementType,
            name="inventory_movement_type",
            native_enum=False,
            length=16,
            validate_strings=True,
        ),
        nullable=False,
    )

    quantity_delta: Mapped[int] = mapped_column(nullable=False)

    reference: Mapped[str | None] = mapped_column(
        String(MAX_REFERENCE_LENGTH),
        nullable=True,
    )

    # Opaque identity id; no FK because identity is owned elsewhere
    performed_by_user_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    stock_before: Mapped[int] = mapped_column(nullable=False)

    stock_after: Mapped[int] = mapped_column(nullable=False)

    sequence: Mapped[int] = mapped_column(nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<InventoryMovement {self.type.value} {self.quantity_delta:+d} "
            f"product={self.product_id} {self.stock_before}->{self.stock_after}>"
        )

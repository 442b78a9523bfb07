"""
Module: fulfillment_kernel.models.order
Responsibility: ORM persistence for orders, their line items and their
    append-only status history.
Architecture position: Kernel > Models.  May import from db/ and domain/
    value types only.

Invariants enforced:
    - OrderItem rows are immutable once created (quantity and unit_cents are
      a snapshot of checkout time; never re-read from the catalog).
    - OrderStatusHistory rows are append-only; (order_id, position) is
      unique so concurrent writers cannot interleave two entries at the
      same position.
    - Customer/shipping snapshot columns never change after INSERT
      (db/immutability.py).

Failure modes:
    - IntegrityError on a duplicate history position (lost race on the
      order row lock) or a non-positive quantity.
    - ImmutabilityViolationError on UPDATE/DELETE of items or history.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, Enum as SAEnum, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment_kernel.db.base import Base, UUIDString
from fulfillment_kernel.domain.order_status import OrderStatus

OrderStatusColumn = SAEnum(
    OrderStatus,
    name="order_status",
    native_enum=False,
    length=16,
    validate_strings=True,
)

SNAPSHOT_COLUMNS = (
    "customer_email",
    "customer_phone",
    "customer_name",
    "shipping_country",
    "shipping_address_line1",
    "shipping_address_line2",
    "shipping_city",
    "shipping_postal_code",
)


class Order(Base):
    """
    A customer order.

    Mutated after creation only by status transitions (``status``,
    ``updated_at``, new history rows) and staff assignment.
    """

    __tablename__ = "orders"

    __table_args__ = (
        CheckConstraint("total_cents >= 0", name="ck_order_total_non_negative"),
        Index("idx_order_status", "status"),
        Index("idx_order_created_at", "created_at"),
        Index("idx_order_customer_email", "customer_email"),
    )

    status: Mapped[OrderStatus] = mapped_column(
        OrderStatusColumn,
        nullable=False,
        default=OrderStatus.PENDING,
    )

    total_cents: Mapped[int] = mapped_column(nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)

    # Snapshot captured at creation
    customer_email: Mapped[str] = mapped_column(String(320), nullable=False)
    customer_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    shipping_country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    shipping_address_line1: Mapped[str | None] = mapped_column(String(255), nullable=True)
    shipping_address_line2: Mapped[str | None] = mapped_column(String(255), nullable=True)
    shipping_city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    shipping_postal_code: Mapped[str | None] = mapped_column(String(20), nullable=True)

    customer_user_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    assigned_to_user_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order",
        lazy="selectin",
        order_by="OrderItem.product_id",
    )

    status_history: Mapped[list["OrderStatusHistory"]] = relationship(
        back_populates="order",
        lazy="selectin",
        order_by="OrderStatusHistory.position",
    )

    def __repr__(self) -> str:
        return f"<Order {self.id} status={self.status.value}>"


class OrderItem(Base):
    __tablename__ = "order_items"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_item_quantity_positive"),
        CheckConstraint("unit_cents >= 0", name="ck_order_item_unit_cents"),
        Index("idx_order_item_order", "order_id"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=False,
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(nullable=False)

    # Price snapshot at order time
    unit_cents: Mapped[int] = mapped_column(nullable=False)

    order: Mapped[Order] = relationship(back_populates="items")


class OrderStatusHistory(Base):
    __tablename__ = "order_status_history"

    __table_args__ = (
        UniqueConstraint("order_id", "position", name="uq_order_status_position"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=False,
    )

    # 0 for the initial PENDING entry, then +1 per transition
    position: Mapped[int] = mapped_column(nullable=False)

    status: Mapped[OrderStatus] = mapped_column(OrderStatusColumn, nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    order: Mapped[Order] = relationship(back_populates="status_history")

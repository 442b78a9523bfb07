"""
Module: fulfillment_kernel.models.product
Responsibility: ORM persistence for the catalog row this kernel shares with
    the catalog service.  The kernel reads existence, price and currency and
    owns exactly two columns: ``stock_quantity`` and ``ledger_version``.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - stock_quantity >= 0 (CHECK constraint).
    - stock_quantity is a denormalised cache of the latest movement's
      stock_after.  It is written only by InventoryLedger's conditional
      UPDATE; db/immutability.py rejects attribute-level writes.
    - ledger_version counts movements ever appended; the ledger's
      compare-and-swap is keyed on it.
"""

from datetime import datetime

from sqlalchemy import CheckConstraint, String, func
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import Base


class Product(Base):
    __tablename__ = "products"

    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_product_stock_non_negative"),
        CheckConstraint("ledger_version >= 0", name="ck_product_ledger_version"),
        CheckConstraint("price_cents >= 0", name="ck_product_price_non_negative"),
    )

    sku: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Catalog price in minor units; copied onto order items at checkout
    price_cents: Mapped[int] = mapped_column(nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="PKR")

    stock_quantity: Mapped[int] = mapped_column(nullable=False, default=0)

    ledger_version: Mapped[int] = mapped_column(nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Product {self.sku} stock={self.stock_quantity}>"

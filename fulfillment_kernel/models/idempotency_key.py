"""
Module: fulfillment_kernel.models.idempotency_key
Responsibility: Store-backed idempotency cache for checkout submissions.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - ``key`` is UNIQUE: the constraint is the synchronisation primitive that
      lets exactly one concurrent submission execute.
    - ``response_snapshot`` is NULL while the operation is in flight and is
      the exact response replayed afterwards.
    - A row whose ``expires_at`` has passed may be reclaimed for a new
      logical request.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import Base, UUIDString

MAX_KEY_LENGTH = 255


class IdempotencyKey(Base):
    __tablename__ = "idempotency_keys"

    __table_args__ = (
        UniqueConstraint("key", name="uq_idempotency_key"),
        Index("idx_idempotency_expires_at", "expires_at"),
    )

    key: Mapped[str] = mapped_column(String(MAX_KEY_LENGTH), nullable=False)

    order_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id", ondelete="SET NULL"),
        nullable=True,
    )

    response_snapshot: Mapped[dict | None] = mapped_column(
        JSON(none_as_null=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    expires_at: Mapped[datetime] = mapped_column(nullable=False)

    @property
    def is_complete(self) -> bool:
        return self.response_snapshot is not None

    def is_live(self, now: datetime) -> bool:
        return now < self.expires_at

    def __repr__(self) -> str:
        state = "complete" if self.is_complete else "in-flight"
        return f"<IdempotencyKey {self.key!r} {state}>"

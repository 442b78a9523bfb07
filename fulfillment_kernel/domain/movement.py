"""
Inventory movement requests (``fulfillment_kernel.domain.movement``).

Responsibility
--------------
A movement is one signed change to a product's stock with a cause.  The
cause is a tagged variant (SALE, RESTORE, ADJUSTMENT) and each variant has
its own rules.  ``MovementRequest.validate()`` is the single place those
rules live; the Inventory Ledger validates every request through it before
touching the database, so the non-negativity check downstream runs exactly
once per write path.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Per-variant rules
-----------------
=============  ===========  ==========  =========================
type           delta sign   order_id    reference / actor
=============  ===========  ==========  =========================
SALE           negative     required    optional / must be absent
RESTORE        positive     required    optional / must be absent
ADJUSTMENT     non-zero     optional    both required
=============  ===========  ==========  =========================
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from uuid import UUID

from fulfillment_kernel.exceptions import ValidationError

MAX_REFERENCE_LENGTH = 500


class MovementType(str, Enum):
    """Cause of a stock movement."""

    SALE = "SALE"
    RESTORE = "RESTORE"
    ADJUSTMENT = "ADJUSTMENT"


@dataclass(frozen=True)
class MovementRequest:
    """A requested stock change, not yet applied."""

    product_id: UUID
    type: MovementType
    quantity_delta: int
    reference: str | None = None
    order_id: UUID | None = None
    performed_by_user_id: UUID | None = None

    @classmethod
    def sale(cls, product_id: UUID, quantity: int, order_id: UUID) -> MovementRequest:
        """Stock leaving for an order line (``quantity`` is the positive line quantity)."""
        return cls(
            product_id=product_id,
            type=MovementType.SALE,
            quantity_delta=-quantity,
            reference=f"Order {order_id}",
            order_id=order_id,
        )

    @classmethod
    def restore(cls, product_id: UUID, quantity: int, order_id: UUID) -> MovementRequest:
        """Compensating movement that returns a cancelled order line's stock."""
        return cls(
            product_id=product_id,
            type=MovementType.RESTORE,
            quantity_delta=quantity,
            reference=f"Order {order_id} cancelled",
            order_id=order_id,
        )

    @classmethod
    def adjustment(
        cls,
        product_id: UUID,
        quantity_delta: int,
        reference: str,
        performed_by_user_id: UUID,
    ) -> MovementRequest:
        return cls(
            product_id=product_id,
            type=MovementType.ADJUSTMENT,
            quantity_delta=quantity_delta,
            reference=reference,
            performed_by_user_id=performed_by_user_id,
        )

    def validate(self) -> MovementRequest:
        """
        Check the per-variant rules and return a normalised copy.

        Normalisation trims the reference (blank becomes None).

        Raises:
            ValidationError: on any rule violation.
        """
        try:
            movement_type = MovementType(self.type)
        except ValueError:
            raise ValidationError(
                f"Unknown movement type: {self.type!r}", field="type"
            ) from None

        if self.product_id is None:
            raise ValidationError("product_id is required", field="product_id")

        delta = self.quantity_delta
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise ValidationError(
                "quantity_delta must be an integer", field="quantity_delta"
            )
        if delta == 0:
            raise ValidationError(
                "quantity_delta must not be zero", field="quantity_delta"
            )

        reference = self.reference.strip() if self.reference is not None else None
        if reference is not None and len(reference) > MAX_REFERENCE_LENGTH:
            raise ValidationError(
                f"reference must be at most {MAX_REFERENCE_LENGTH} characters",
                field="reference",
            )

        if movement_type == MovementType.ADJUSTMENT:
            if not reference:
                raise ValidationError(
                    "reference is required for stock adjustments", field="reference"
                )
            if self.performed_by_user_id is None:
                raise ValidationError(
                    "performed_by_user_id is required for stock adjustments",
                    field="performed_by_user_id",
                )
        else:
            if self.order_id is None:
                raise ValidationError(
                    f"order_id is required for {movement_type.value} movements",
                    field="order_id",
                )
            if self.performed_by_user_id is not None:
                raise ValidationError(
                    f"{movement_type.value} movements are system-generated "
                    "and carry no performed_by_user_id",
                    field="performed_by_user_id",
                )
            if movement_type == MovementType.SALE and delta > 0:
                raise ValidationError(
                    "SALE movements must have a negative quantity_delta",
                    field="quantity_delta",
                )
            if movement_type == MovementType.RESTORE and delta < 0:
                raise ValidationError(
                    "RESTORE movements must have a positive quantity_delta",
                    field="quantity_delta",
                )

        return replace(self, type=movement_type, reference=reference or None)

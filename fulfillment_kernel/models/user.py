"""
Module: fulfillment_kernel.models.user
Responsibility: Read-only projection of the identity service's users.  The
    kernel treats user ids as opaque; this table only supplies display
    attributes for the inventory audit view and validates staff assignment.
"""

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import Base


class User(Base):
    __tablename__ = "users"

    display_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)

    # e.g. ["admin", "warehouse"]
    role_names: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    def __repr__(self) -> str:
        return f"<User {self.email}>"

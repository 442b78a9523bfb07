"""
BaseService -- common constructor for kernel write services.

Services receive a SQLAlchemy ``Session`` from the caller and persist with
``session.flush()``.  They never call ``commit()`` or ``rollback()`` on the
session: the caller (``FulfillmentService`` or a test harness) owns the
transaction, so a multi-step checkout is all-or-nothing.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from fulfillment_kernel.db.base import Base
from fulfillment_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel services.

    Guarantees:
        - ``self.session`` is the caller's session.
        - ``self.clock`` is never None (defaults to ``SystemClock``).
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

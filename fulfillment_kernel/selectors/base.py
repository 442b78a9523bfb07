"""
Module: fulfillment_kernel.selectors.base
Responsibility: Base class for read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/, models/
    and domain/ DTOs.  MUST NOT import from services/.

Invariants enforced:
    - Read-only: selectors never add, delete, flush or commit.
    - Selectors return frozen DTOs, not ORM instances.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from fulfillment_kernel.config import AuditConfig
from fulfillment_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


def clamp_page(page: int | None, limit: int | None, config: AuditConfig) -> tuple[int, int]:
    """Clamp ``page`` to >= 1 and ``limit`` to 1..max_page_size."""
    page = 1 if page is None else max(1, int(page))
    limit = config.default_page_size if limit is None else int(limit)
    return page, min(config.max_page_size, max(1, limit))


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Selectors accept a Session from the caller and perform read-only
    queries against it.
    """

    def __init__(self, session: Session, config: AuditConfig | None = None):
        self.session = session
        self.config = config or AuditConfig()

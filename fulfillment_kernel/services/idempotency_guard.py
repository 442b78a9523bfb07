"""
IdempotencyGuard -- at-most-once execution of keyed operations.

Responsibility:
    Wraps a side-effecting operation (checkout) so that any number of
    submissions sharing an idempotency key execute it at most once, and
    every later submission receives the first submission's response.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by OrderLifecycleController.create_order.

Invariants enforced:
    - The UNIQUE constraint on ``idempotency_keys.key`` decides the single
      winner among concurrent first submissions.  The placeholder INSERT
      runs inside a SAVEPOINT so a losing INSERT does not poison the
      caller's transaction.
    - Placeholder, operation effects and cached response live in the same
      transaction: if the operation raises, the SAVEPOINT is rolled back
      and neither the key nor any partial effect remains.
    - An expired key is reclaimed by a conditional UPDATE guarded on
      ``expires_at <= now``; exactly one reclaimer wins.

Failure modes:
    - ValidationError: blank key or a non-dict operation result.
    - DuplicateRequestError: another caller holds the key and did not
      publish a response within the bounded re-read window.  Transient.
    - Any exception raised by the operation propagates unchanged.

Audit relevance:
    ``idempotency_key_claimed``, ``idempotent_replay`` and
    ``duplicate_request_in_flight`` are logged with the key bound into the
    log context.
"""

import time
from collections.abc import Callable
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fulfillment_kernel.config import IdempotencyConfig
from fulfillment_kernel.domain.clock import Clock
from fulfillment_kernel.exceptions import DuplicateRequestError, ValidationError
from fulfillment_kernel.logging_config import LogContext, get_logger
from fulfillment_kernel.models.idempotency_key import MAX_KEY_LENGTH, IdempotencyKey
from fulfillment_kernel.services.base import BaseService

logger = get_logger("services.idempotency_guard")

Operation = Callable[[], dict[str, Any]]


class IdempotencyGuard(BaseService[IdempotencyKey]):
    """
    Store-backed idempotency guard.

    Usage:
        guard = IdempotencyGuard(session, clock)
        response = guard.execute_idempotent(key, lambda: place_order(...))
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: IdempotencyConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(session, clock)
        self.config = config or IdempotencyConfig()
        self._sleep = sleep

    def execute_idempotent(self, key: str, operation: Operation) -> dict[str, Any]:
        """
        Run ``operation`` once per key and return its (cached) response.

        The response returned on replay is the stored snapshot, unchanged.
        """
        key = self._normalize_key(key)
        with LogContext.bind(idempotency_key=key):
            now = self.clock.now()
            existing = self._lookup(key)

            if existing is not None and existing.is_live(now):
                if existing.is_complete:
                    logger.info(
                        "idempotent_replay",
                        extra={"order_id": str(existing.order_id) if existing.order_id else None},
                    )
                    return existing.response_snapshot
                return self._await_response(key)

            savepoint = self.session.begin_nested()
            try:
                if existing is None:
                    record = IdempotencyKey(
                        key=key,
                        created_at=now,
                        expires_at=now + self.config.ttl,
                    )
                    self.session.add(record)
                    self.session.flush()
                else:
                    record = self._reclaim(key, now)
            except IntegrityError:
                savepoint.rollback()
                logger.info("idempotency_key_race_lost")
                return self._await_response(key)

            if record is None:
                savepoint.rollback()
                return self._await_response(key)

            logger.debug("idempotency_key_claimed", extra={"reclaimed": existing is not None})

            try:
                result = operation()
                self._store_response(record, result)
            except Exception:
                savepoint.rollback()
                raise
            savepoint.commit()
            return result

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete keys whose expiry has passed.  Returns the number removed."""
        now = now or self.clock.now()
        result = self.session.execute(
            delete(IdempotencyKey)
            .where(IdempotencyKey.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        purged = result.rowcount or 0
        logger.info("idempotency_keys_purged", extra={"purged": purged, "cutoff": now})
        return purged

    # ------------------------------------------------------------------

    @staticmethod
    def _normalize_key(key: str) -> str:
        if not isinstance(key, str) or not key.strip():
            raise ValidationError("idempotency key must be a non-empty string", field="idempotency_key")
        key = key.strip()
        if len(key) > MAX_KEY_LENGTH:
            raise ValidationError(
                f"idempotency key must be at most {MAX_KEY_LENGTH} characters",
                field="idempotency_key",
            )
        return key

    def _lookup(self, key: str) -> IdempotencyKey | None:
        return self.session.execute(
            select(IdempotencyKey)
            .where(IdempotencyKey.key == key)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _reclaim(self, key: str, now: datetime) -> IdempotencyKey | None:
        """Take over an expired key.  None if another caller got there first."""
        result = self.session.execute(
            update(IdempotencyKey)
            .where(IdempotencyKey.key == key, IdempotencyKey.expires_at <= now)
            .values(
                response_snapshot=None,
                order_id=None,
                created_at=now,
                expires_at=now + self.config.ttl,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        logger.info("idempotency_key_reclaimed")
        return self._lookup(key)

    def _store_response(self, record: IdempotencyKey, result: dict[str, Any]) -> None:
        if not isinstance(result, dict):
            raise ValidationError(
                "idempotent operations must return a dict response",
                field="response",
            )
        now = self.clock.now()
        order_id = result.get("order_id")
        record.response_snapshot = result
        record.order_id = UUID(str(order_id)) if order_id else None
        record.expires_at = now + self.config.ttl
        self.session.flush()

    def _await_response(self, key: str) -> dict[str, Any]:
        """Re-read a key held by another caller, a bounded number of times."""
        attempts = self.config.duplicate_retry_attempts
        for _ in range(attempts):
            self._sleep(self.config.duplicate_retry_delay_seconds)
            record = self._lookup(key)
            if record is not None and record.is_complete:
                logger.info("idempotent_replay", extra={"after_wait": True})
                return record.response_snapshot

        logger.warning("duplicate_request_in_flight", extra={"attempts": attempts})
        raise DuplicateRequestError(key, attempts=attempts)

#!/usr/bin/env python3
"""
Delete expired idempotency keys.

Expired keys are already reclaimable by a new checkout, so purging is only
housekeeping; it is safe to run at any time, e.g. from cron every hour.

Usage:
    python3 scripts/purge_idempotency_keys.py
    python3 scripts/purge_idempotency_keys.py --config config/fulfillment.yaml
    python3 scripts/purge_idempotency_keys.py --dry-run
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Delete expired idempotency keys")
    p.add_argument(
        "--config",
        default=None,
        help="YAML config file (default: $FULFILLMENT_CONFIG, else built-in defaults)",
    )
    p.add_argument(
        "--dry-run",
        action="store_true",
        help="Count expired keys without deleting them",
    )
    return p.parse_args()


def main() -> int:
    args = _parse_args()

    from sqlalchemy import func, select

    from fulfillment_kernel.config import load_config
    from fulfillment_kernel.db.engine import session_scope
    from fulfillment_kernel.models.idempotency_key import IdempotencyKey
    from fulfillment_kernel.services.fulfillment_service import FulfillmentService

    config = load_config(args.config)
    service = FulfillmentService.from_config(config)

    if args.dry_run:
        now = service.clock.now()
        with session_scope() as session:
            count = session.execute(
                select(func.count())
                .select_from(IdempotencyKey)
                .where(IdempotencyKey.expires_at <= now)
            ).scalar_one()
        print(f"Would purge {count} expired idempotency key(s).")
        return 0

    purged = service.purge_expired_keys()
    print(f"Purged {purged} expired idempotency key(s).")
    return 0


if __name__ == "__main__":
    sys.exit(main())

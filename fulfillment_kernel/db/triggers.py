"""
Module: fulfillment_kernel.db.triggers
Responsibility: Loading, installing, and verifying PostgreSQL append-only
    triggers.  Database-level complement to the ORM listeners in
    db/immutability.py.
Architecture position: Kernel > DB.  MUST NOT import from models/,
    services/, selectors/ or domain/.

Invariants enforced (PostgreSQL only):
    - inventory_movements: no UPDATE, no DELETE.
    - order_status_history: no UPDATE, no DELETE.
    - order_items: no UPDATE.

Failure modes:
    - PostgreSQL RAISE EXCEPTION on violation (surfaces as a SQLAlchemy
      DBAPIError subclass).
    - FileNotFoundError if SQL files are missing from the sql/ directory.
"""

from pathlib import Path

from sqlalchemy import text
from sqlalchemy.engine import Engine

SQL_DIR = Path(__file__).parent / "sql"

TRIGGER_FILES = [
    "01_inventory_movement.sql",
    "02_order_status_history.sql",
    "03_order_item.sql",
]

DROP_FILE = "99_drop_all.sql"

ALL_TRIGGER_NAMES = [
    "trg_inventory_movement_immutability_update",
    "trg_inventory_movement_immutability_delete",
    "trg_order_status_history_immutability_update",
    "trg_order_status_history_immutability_delete",
    "trg_order_item_immutability_update",
]


def _load_sql_file(filename: str) -> str:
    return (SQL_DIR / filename).read_text(encoding="utf-8")


def _load_all_trigger_sql() -> str:
    return "\n\n".join(_load_sql_file(name) for name in TRIGGER_FILES)


def install_immutability_triggers(engine: Engine) -> None:
    """
    Install the append-only triggers (idempotent: CREATE OR REPLACE and
    DROP TRIGGER IF EXISTS).

    Preconditions: Tables exist; engine is connected to PostgreSQL.
    """
    with engine.connect() as conn:
        conn.execute(text(_load_all_trigger_sql()))
        conn.commit()


def uninstall_immutability_triggers(engine: Engine) -> None:
    """Remove the triggers and their functions.  Tests and migrations only."""
    with engine.connect() as conn:
        conn.execute(text(_load_sql_file(DROP_FILE)))
        conn.commit()


def get_installed_triggers(engine: Engine) -> list[str]:
    """List the kernel triggers currently present in pg_trigger."""
    query = text(
        "SELECT tgname FROM pg_trigger WHERE tgname = ANY(:names) ORDER BY tgname"
    )
    with engine.connect() as conn:
        return list(conn.scalars(query, {"names": ALL_TRIGGER_NAMES}))


def triggers_installed(engine: Engine) -> bool:
    return set(get_installed_triggers(engine)) == set(ALL_TRIGGER_NAMES)

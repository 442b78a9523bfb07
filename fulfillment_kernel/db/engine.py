"""
Engine and session management for the fulfillment kernel.

One engine per process, created by ``init_engine_from_url``. Services never
open or commit transactions themselves; the facade wraps each operation in
``session_scope`` and the test suite wraps each test in a rolled-back outer
transaction.

Backends:
    PostgreSQL   production. READ COMMITTED plus explicit row locks on
                 products and orders; the append-only triggers are installed
                 by ``create_tables``.
    SQLite       development and the default test run. pysqlite's implicit
                 transaction handling is switched off so SAVEPOINT (used by
                 the idempotency guard) behaves, and foreign keys are on.
"""

import atexit
from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from fulfillment_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _sqlite_options(pool_timeout: int) -> dict[str, Any]:
    return {"connect_args": {"check_same_thread": False, "timeout": pool_timeout}}


def _postgres_options(pool_size: int, max_overflow: int, pool_timeout: int) -> dict[str, Any]:
    return {
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_timeout": pool_timeout,
        "pool_pre_ping": True,
        "pool_recycle": 1800,
        "isolation_level": "READ COMMITTED",
    }


def _enable_sqlite_savepoints(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_timeout: int = 30,
) -> Engine:
    """
    Create the process-wide engine and session factory.

    Calling it again disposes nothing; the previous engine is simply
    replaced, so call ``reset_engine`` first when switching databases.
    ``pool_size`` and ``max_overflow`` apply to PostgreSQL only.
    """
    global _engine, _SessionFactory

    if database_url.startswith("sqlite"):
        _engine = create_engine(database_url, echo=echo, **_sqlite_options(pool_timeout))
        _enable_sqlite_savepoints(_engine)
    else:
        _engine = create_engine(
            database_url,
            echo=echo,
            **_postgres_options(pool_size, max_overflow, pool_timeout),
        )

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "pool_size": pool_size, "echo": echo},
    )
    return _engine


def _require_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("database engine is not initialized; call init_engine_from_url() first")
    return _engine


def get_engine() -> Engine:
    return _require_engine()


def get_session_factory() -> sessionmaker[Session]:
    """Factory for worker threads that each need their own session."""
    _require_engine()
    assert _SessionFactory is not None
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    Commit on clean exit, roll back and re-raise on error, always close.

        with session_scope() as session:
            InventoryLedger(session, clock).apply(request)
    """
    session = factory() if factory is not None else get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def _metadata():
    from fulfillment_kernel.db.base import Base
    import fulfillment_kernel.models  # noqa: F401  (registers every table)

    return Base.metadata


def create_tables(install_triggers: bool = True) -> None:
    """Create the schema; on PostgreSQL also install the append-only triggers."""
    engine = _require_engine()
    _metadata().create_all(engine)

    if install_triggers and is_postgres():
        from fulfillment_kernel.db.triggers import install_immutability_triggers

        install_immutability_triggers(engine)


def drop_tables() -> None:
    """Drop the whole schema, triggers first. Development and tests only."""
    engine = _require_engine()
    if is_postgres():
        from fulfillment_kernel.db.triggers import uninstall_immutability_triggers

        uninstall_immutability_triggers(engine)
    _metadata().drop_all(engine)


def reset_engine() -> None:
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


atexit.register(reset_engine)


def is_postgres() -> bool:
    return _engine is not None and _engine.dialect.name == "postgresql"

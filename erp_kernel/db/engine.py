"""
Engine and session management for the entity store.

PostgreSQL is the production backend and runs at READ COMMITTED; the
kernel serializes competing writers itself (``FOR UPDATE`` on sequence
counters, compare-and-swap UPDATEs on workflow transitions).

SQLite URLs are accepted for development and tests.  pysqlite normally
opens transactions on its own, which breaks SAVEPOINT; the listeners in
``_sqlite_listeners`` hand BEGIN back to SQLAlchemy so that per-line side
effects and nested test transactions behave as they do on PostgreSQL.

Sessions created here never autocommit.  Services flush; whoever opened
the session (usually ``session_scope()``) commits or rolls back.
"""

import atexit
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from erp_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_NOT_READY = "database not initialized; call init_engine_from_url() first"

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _sqlite_listeners(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")


def _engine_options(database_url: str, pool_timeout: int, **pool: Any) -> dict[str, Any]:
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False, "timeout": pool_timeout}}
    return {
        "isolation_level": "READ COMMITTED",
        "pool_pre_ping": True,
        "pool_timeout": pool_timeout,
        **pool,
    }


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create the process-wide engine and session factory.

    Args:
        database_url: ``postgresql://...`` or ``sqlite:///path``.
        pool_size, max_overflow, pool_recycle: PostgreSQL pool tuning;
            ignored for SQLite.
        pool_timeout: Seconds to wait for a pooled connection (PostgreSQL)
            or for the database lock (SQLite).
    """
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()

    _engine = create_engine(
        database_url,
        echo=echo,
        **_engine_options(
            database_url,
            pool_timeout,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_recycle=pool_recycle,
        ),
    )
    if _engine.dialect.name == "sqlite":
        _sqlite_listeners(_engine)
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info("engine_initialized", extra={"dialect": _engine.dialect.name})
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_READY)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory for callers that need one session per thread."""
    if _session_factory is None:
        raise RuntimeError(_NOT_READY)
    return _session_factory


def get_session() -> Session:
    return get_session_factory()()


def is_postgres() -> bool:
    return _engine is not None and _engine.dialect.name == "postgresql"


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    One unit of work: commit on normal exit, roll back and re-raise on error.

        with session_scope() as session:
            WorkflowEngine(session, routing).verify("loan", loan_id, actor, "ok")
    """
    session = get_session()
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def _metadata():
    from erp_kernel.db.base import Base
    import erp_kernel.models  # noqa: F401  registers every table

    return Base.metadata


def create_tables() -> None:
    metadata = _metadata()
    metadata.create_all(get_engine())
    logger.info("tables_created", extra={"table_count": len(metadata.tables)})


def drop_tables() -> None:
    """Drop every kernel table. Tests and local resets only."""
    _metadata().drop_all(get_engine())


def reset_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


atexit.register(reset_engine)

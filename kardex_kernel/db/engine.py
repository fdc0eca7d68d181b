"""
Module: kardex_kernel.db.engine
Responsibility: The process-wide engine and session factory, the commit
    scope used by callers of the services, and the snapshot scope used by
    reports.
Architecture position: Kernel > DB.  create_tables imports the models
    lazily; nothing else here reaches above db/.

PostgreSQL runs at READ COMMITTED; the services take row locks (SELECT ...
FOR UPDATE) on sequence counters and stock units where they need more.
SQLite is accepted for tests: pysqlite's implicit BEGIN is switched off so
SAVEPOINT works, and row locks fall back to SQLite's database write lock.
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from kardex_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

# Isolation for read_snapshot(), per dialect
_SNAPSHOT_ISOLATION = {"postgresql": "REPEATABLE READ"}


def _sqlite_emit_begin(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create the engine and session factory.  Calling again replaces both.

    Pool settings apply to PostgreSQL only.
    """
    global _engine, _SessionFactory

    if database_url.startswith("sqlite"):
        engine = create_engine(database_url, echo=echo)
        _sqlite_emit_begin(engine)
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )

    _engine = engine
    _SessionFactory = sessionmaker(bind=engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": engine.dialect.name, "pool_size": pool_size, "echo": echo},
    )
    return engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """One session per thread; the concurrency tests draw from this."""
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Session committed on normal exit, rolled back if the block raises.

        with session_scope() as session:
            RetroactiveRecalculator(session, ...).insert_and_recalculate(...)
    """
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


@contextmanager
def read_snapshot() -> Generator[Session, None, None]:
    """
    Read-only session pinned to one committed snapshot.

    A kardex report built inside the block never mixes rows from before and
    after a concurrent cascade.  Nothing is ever committed.
    """
    engine = get_engine()
    level = _SNAPSHOT_ISOLATION.get(engine.dialect.name, "SERIALIZABLE")
    connection = engine.connect().execution_options(isolation_level=level)
    session = Session(bind=connection, expire_on_commit=False)
    logger.debug("snapshot_opened", extra={"isolation_level": level})
    try:
        yield session
    finally:
        session.close()
        connection.rollback()
        connection.close()


def create_tables() -> None:
    from kardex_kernel.db.base import Base
    import kardex_kernel.models  # noqa: F401
    import kardex_kernel.services.sequence_service  # noqa: F401  (sequence counter table)

    engine = get_engine()
    Base.metadata.create_all(engine)
    logger.info("tables_created", extra={"table_count": len(Base.metadata.tables)})


def drop_tables() -> None:
    from kardex_kernel.db.base import Base

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget it.  For tests."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()

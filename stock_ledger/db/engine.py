"""
Module: stock_ledger.db.engine
Responsibility: SQLAlchemy engine construction, session factories and the
    transactional scope used by the SQL persistence gateway.
Architecture position: Ledger > DB.  May import from db/base.py; imports
    models only inside create_tables/drop_tables.

Unlike a process-wide engine singleton, every function here takes or returns
the engine explicitly: the storage backend is chosen by whoever builds the
gateway, never by a module-level switch.

Failure modes:
    - OperationalError when the database is unreachable.
    - Pool exhaustion if pool_size + max_overflow is exceeded (PostgreSQL).
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from stock_ledger.logging_config import get_logger

logger = get_logger("db.engine")


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Build an engine for ``database_url``.

    PostgreSQL gets a READ COMMITTED QueuePool.  SQLite (used for the local
    cache and tests) gets a connection that may be shared across threads;
    in-memory SQLite additionally uses a StaticPool so every session sees the
    same database.

    Args:
        database_url: SQLAlchemy URL (postgresql://..., sqlite:///path, sqlite://).
        echo: If True, log all SQL statements.
        pool_size: Connections kept in the pool (PostgreSQL only).
        max_overflow: Connections beyond pool_size (PostgreSQL only).
        pool_pre_ping: Test connections before use.
        pool_timeout: Seconds to wait for a pooled connection.
        pool_recycle: Seconds after which a connection is recycled.
    """
    if database_url.startswith("sqlite"):
        in_memory = database_url in ("sqlite://", "sqlite:///:memory:")
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
            poolclass=StaticPool if in_memory else None,
        )
        event.listen(engine, "connect", _sqlite_on_connect)
        event.listen(engine, "begin", _sqlite_on_begin)
        dialect = "sqlite"
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )
        dialect = engine.dialect.name

    logger.info(
        "engine_initialized",
        extra={"dialect": dialect, "echo": echo},
    )
    return engine


def _sqlite_on_connect(dbapi_connection, connection_record):
    # Let SQLAlchemy emit BEGIN itself so transactions really start at begin()
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _sqlite_on_begin(conn):
    # Take the write lock up front; avoids lock-upgrade deadlocks between writers
    conn.exec_driver_sql("BEGIN IMMEDIATE")


def get_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory bound to ``engine``; objects stay usable after commit."""
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Postconditions: On normal exit the session is committed and closed.
        On exception it is rolled back and closed, and the exception is
        re-raised to the caller.

    Usage:
        with session_scope(factory) as session:
            session.add(entity)
    """
    session = factory()
    logger.debug("transaction_started")
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


def create_tables(engine: Engine, install_listeners: bool = True) -> None:
    """
    Create all ledger tables and (optionally) register immutability listeners.

    Args:
        engine: Target engine.
        install_listeners: If True, register the ORM listeners that block
            UPDATE/DELETE of ledger rows.
    """
    from stock_ledger.db.base import Base
    import stock_ledger.models  # noqa: F401  (registers tables on Base.metadata)

    Base.metadata.create_all(engine)
    logger.info(
        "tables_created",
        extra={"tables": sorted(Base.metadata.tables.keys())},
    )

    if install_listeners:
        from stock_ledger.db.immutability import register_immutability_listeners

        register_immutability_listeners()


def drop_tables(engine: Engine) -> None:
    """Drop all ledger tables. Use with caution - primarily for testing."""
    from stock_ledger.db.base import Base
    import stock_ledger.models  # noqa: F401

    Base.metadata.drop_all(engine)

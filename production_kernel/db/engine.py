"""
Process-wide SQLAlchemy engine and session factory.

``init_engine_from_url`` is called once at startup (``bootstrap_engine``)
or per test.  Two dialects are supported:

PostgreSQL
    Pooled connections at READ COMMITTED.  Services lock the job, item,
    rework and return rows they mutate with ``SELECT ... FOR UPDATE``.

SQLite
    Used by the test suite and single-node setups.  pysqlite's implicit
    transaction handling is switched off and every transaction starts with
    ``BEGIN IMMEDIATE``, which takes the database write lock up front so
    two writers can never interleave.  Foreign keys are turned on per
    connection.

Nothing here imports services; models and triggers are imported lazily
inside ``create_tables`` and ``drop_tables``.
"""

import atexit
from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from production_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "database engine is not initialized; call init_engine_from_url() first"


def _sqlite_engine(database_url: str, echo: bool, busy_timeout_seconds: float) -> Engine:
    engine = create_engine(
        database_url,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": busy_timeout_seconds},
    )
    busy_ms = int(busy_timeout_seconds * 1000)

    @event.listens_for(engine, "connect")
    def _configure_connection(dbapi_connection, _record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute(f"PRAGMA busy_timeout={busy_ms}")
        finally:
            cursor.close()

    @event.listens_for(engine, "begin")
    def _begin_immediate(connection):
        connection.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def _pooled_engine(database_url: str, echo: bool, **pool: Any) -> Engine:
    return create_engine(
        database_url,
        echo=echo,
        poolclass=QueuePool,
        isolation_level="READ COMMITTED",
        **pool,
    )


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    busy_timeout_seconds: float = 30.0,
) -> Engine:
    """Create (or replace) the engine and session factory.

    Pool settings apply to PostgreSQL only; ``busy_timeout_seconds`` to
    SQLite only.  Also registers the ORM append-only listeners.
    """
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()

    if database_url.startswith("sqlite"):
        engine = _sqlite_engine(database_url, echo, busy_timeout_seconds)
    else:
        engine = _pooled_engine(
            database_url,
            echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
        )

    _engine = engine
    _SessionFactory = sessionmaker(bind=engine, expire_on_commit=False)

    from production_kernel.db.immutability import register_immutability_listeners

    register_immutability_listeners()
    configure_logging()
    logger.info("engine_initialized", extra={"dialect": engine.dialect.name, "echo": echo})
    return engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """One transaction: commit on clean exit, roll back and re-raise otherwise."""
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def _all_metadata():
    from production_kernel.db.base import Base
    from production_kernel.models import import_all_models

    import_all_models()
    return Base.metadata


def create_tables(install_triggers: bool = True) -> None:
    """Create every table, then the append-only triggers unless told not to."""
    engine = get_engine()
    _all_metadata().create_all(engine)
    if install_triggers:
        from production_kernel.db.triggers import install_append_only_triggers

        install_append_only_triggers(engine)


def drop_tables() -> None:
    from production_kernel.db.triggers import uninstall_append_only_triggers

    engine = get_engine()
    metadata = _all_metadata()
    uninstall_append_only_triggers(engine)
    metadata.drop_all(engine)


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory
    engine, _engine, _SessionFactory = _engine, None, None
    if engine is not None:
        engine.dispose()


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()

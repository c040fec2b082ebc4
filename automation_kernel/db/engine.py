"""
Module: automation_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities.  Single point of database connection
    configuration for the platform.
Architecture position: Kernel > DB.  May import from db/base.py only
    (create_tables imports the model packages so metadata is complete).

Failure modes:
    - RuntimeError if get_engine/get_session/get_session_factory called before
      init_engine_from_url().
"""

import atexit
import os
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from automation_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///:memory:"

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def database_url_from_env(env: dict[str, str] | None = None) -> str:
    """Resolve the database URL (AUTOMATION_DATABASE_URL, then DATABASE_URL)."""
    source = os.environ if env is None else env
    return (
        source.get("AUTOMATION_DATABASE_URL")
        or source.get("DATABASE_URL")
        or DEFAULT_DATABASE_URL
    )


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """Let SQLAlchemy, not pysqlite, emit BEGIN so SAVEPOINT nests correctly."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def _is_sqlite_memory(database_url: str) -> bool:
    path = database_url.split("://", 1)[-1].lstrip("/")
    return path in ("", ":memory:") or "mode=memory" in database_url


def create_engine_for_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Build an engine without touching module state.

    An in-memory SQLite URL gets a StaticPool so the database is shared
    across sessions.  A file-backed SQLite URL keeps the default pool, so
    every session holds its own connection and sees only committed data.
    Every other backend gets the QueuePool with pre-ping.
    """
    if database_url.startswith("sqlite"):
        options: dict = {"connect_args": {"check_same_thread": False}}
        if _is_sqlite_memory(database_url):
            options["poolclass"] = StaticPool
        engine = create_engine(database_url, echo=echo, **options)
        _enable_sqlite_savepoints(engine)
        return engine

    return create_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_recycle=pool_recycle,
    )


def init_engine_from_url(database_url: str, echo: bool = False, **pool_options) -> Engine:
    """
    Initialize the module-level engine and session factory.

    Postconditions: Module-level engine and session factory are initialized.
    """
    global _engine, _SessionFactory

    _engine = create_engine_for_url(database_url, echo=echo, **pool_options)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "echo": echo},
    )

    return _engine


def get_engine() -> Engine:
    """
    Get the current engine instance.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    """
    Get a new session instance.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory()


def get_session_factory() -> sessionmaker[Session]:
    """
    Get the session factory (one session per thread / scheduler tick).

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Postconditions: On normal exit, session is committed and closed.
        On exception, session is rolled back and closed and the exception
        is re-raised.
    """
    session = get_session()
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


def commit_checkpoint(session: Session) -> None:
    """
    Commit ``session`` so long-running work becomes visible to other
    connections.

    Does nothing while a SAVEPOINT is open: the savepoint's owner may still
    roll it back, so the commit is left to it.
    """
    if session.in_nested_transaction():
        return
    session.commit()


def create_tables(engine: Engine | None = None) -> None:
    """
    Create all tables defined by the platform's ORM models.

    Imports the model packages first so Base.metadata discovers every table.
    """
    from automation_kernel.db.base import Base
    import automation_rules.models  # noqa: F401
    import automation_batch.models  # noqa: F401

    Base.metadata.create_all(engine or get_engine())


def drop_tables(engine: Engine | None = None) -> None:
    """Drop all tables. Primarily for testing."""
    from automation_kernel.db.base import Base

    Base.metadata.drop_all(engine or get_engine())


def reset_engine() -> None:
    """Reset the engine and session factory (test cleanup)."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _SessionFactory = None


def _atexit_dispose():
    """Dispose the engine on process exit to release pooled connections."""
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)

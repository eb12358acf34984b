"""
Database engine and session lifecycle for the billing core.

PostgreSQL is the production backend: READ COMMITTED isolation plus an
explicit ``SELECT ... FOR UPDATE`` on the rental row serializes writers that
touch the same rental.  SQLite URLs are accepted for tests and local tooling;
an in-memory database is shared across threads through a single
StaticPool connection.

The process holds at most one configured engine.  Billing services never
commit; ``session_scope()`` is the only place a transaction is committed
or rolled back.
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from ledger_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

POSTGRES_POOL_DEFAULTS = {
    "pool_size": 20,
    "max_overflow": 10,
    "pool_pre_ping": True,
    "pool_timeout": 30,
    "pool_recycle": 1800,
}


def _is_sqlite_memory(database_url: str) -> bool:
    return ":memory:" in database_url or database_url.rstrip("/") == "sqlite:"


def build_engine(database_url: str, echo: bool = False, **pool_options) -> Engine:
    """
    Create an Engine for ``database_url`` without touching module state.

    ``pool_options`` override POSTGRES_POOL_DEFAULTS and are ignored for
    SQLite, where ``check_same_thread`` is disabled so billing worker threads
    can share the engine.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool if _is_sqlite_memory(database_url) else None,
        )

    return create_engine(
        database_url,
        echo=echo,
        poolclass=QueuePool,
        isolation_level="READ COMMITTED",
        **{**POSTGRES_POOL_DEFAULTS, **pool_options},
    )


def init_engine_from_url(database_url: str, echo: bool = False, **pool_options) -> Engine:
    """
    Configure the process-wide engine and session factory.

    Calling it again replaces (but does not dispose) the previous engine.
    """
    global _engine, _SessionFactory

    _engine = build_engine(database_url, echo=echo, **pool_options)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info("engine_initialized", extra={"dialect": _engine.dialect.name, "echo": echo})
    return _engine


def _not_initialized() -> RuntimeError:
    return RuntimeError("Engine not initialized. Call init_engine_from_url() first.")


def get_engine() -> Engine:
    """Raises RuntimeError before init_engine_from_url()."""
    if _engine is None:
        raise _not_initialized()
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """
    Factory handed to the Billing Orchestrator.

    Each per-rental unit of work opens and closes its own session from it.
    Raises RuntimeError before init_engine_from_url().
    """
    if _SessionFactory is None:
        raise _not_initialized()
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    Commit on normal exit, roll back on any exception, always close.

    Uses ``factory`` when given, else the process-wide session factory.
    The exception is re-raised to the caller.
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except BaseException:
        session.rollback()
        logger.debug("transaction_rolled_back")
        raise
    finally:
        session.close()


def create_tables(engine: Engine | None = None) -> None:
    """
    Create every table known to Base.metadata.

    ORM models must already be imported; billing_modules._orm_registry
    .create_all_tables() does that for the complete schema.
    """
    from ledger_kernel.db.base import Base

    Base.metadata.create_all(engine or get_engine())


def drop_tables(engine: Engine | None = None) -> None:
    """Drop every table known to Base.metadata. Tests only."""
    from ledger_kernel.db.base import Base

    Base.metadata.drop_all(engine or get_engine())


def reset_engine() -> None:
    """Dispose the process-wide engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is None:
        return
    try:
        _engine.dispose()
    except SQLAlchemyError:
        logger.warning("engine_dispose_failed", exc_info=True)


def is_postgres(engine: Engine | None = None) -> bool:
    """True when ``engine`` (or the process-wide engine) speaks PostgreSQL."""
    target = engine or _engine
    return target is not None and target.dialect.name == "postgresql"

"""Database engine and session management utilities."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from clinicq.models.base import Base
from clinicq.models import appointment as _appointment  # noqa: F401
from clinicq.models import clinic as _clinic  # noqa: F401
from clinicq.models import token_counter as _token_counter  # noqa: F401
from clinicq.utils.config import get_settings

LOGGER = logging.getLogger(__name__)

# SQLSTATE lock_not_available
PG_LOCK_NOT_AVAILABLE = "55P03"

# Execution option marking sessions that never write.
READ_ONLY_OPTION = "clinicq_read_only"


def build_engine(url: str, lock_timeout_seconds: float) -> Engine:
    """Create an engine whose lock waits are bounded by ``lock_timeout_seconds``."""

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            future=True,
            echo=False,
            connect_args={"timeout": lock_timeout_seconds, "check_same_thread": False},
        )
        _use_immediate_transactions(engine)
        return engine

    return create_engine(url, future=True, echo=False, pool_pre_ping=True)


def _use_immediate_transactions(engine: Engine) -> None:
    """Make every SQLite transaction take the write lock up front.

    Deferred transactions that read before writing can fail with an
    immediate "database is locked" instead of waiting on the busy timeout.
    Read-only sessions keep a deferred BEGIN so they do not queue behind
    writers.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # pragma: no cover - driver hook
        dbapi_connection.isolation_level = None
        dbapi_connection.execute("PRAGMA foreign_keys = ON")

    @event.listens_for(engine, "begin")
    def _on_begin(conn):  # pragma: no cover - driver hook
        if conn.get_execution_options().get(READ_ONLY_OPTION):
            conn.exec_driver_sql("BEGIN")
        else:
            conn.exec_driver_sql("BEGIN IMMEDIATE")


settings = get_settings()

# Lock wait bound of the current engine; ``configure`` may override it.
current_lock_timeout: float = settings.lock_timeout_seconds
engine = build_engine(settings.database_url, current_lock_timeout)
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)


def configure(url: str, lock_timeout_seconds: Optional[float] = None) -> Engine:
    """Point the module at another database, e.g. a per-test SQLite file."""

    global engine, current_lock_timeout

    timeout = lock_timeout_seconds or get_settings().lock_timeout_seconds
    old_engine = engine
    engine = build_engine(url, timeout)
    current_lock_timeout = timeout
    SessionLocal.configure(bind=engine)
    old_engine.dispose()
    return engine


def init_db() -> None:
    """Create all tables that do not exist yet."""

    Base.metadata.create_all(bind=engine)
    LOGGER.info("Database schema ready on %s", engine.url.render_as_string(hide_password=True))


@contextmanager
def get_session(read_only: bool = False) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations.

    ``read_only`` sessions skip the SQLite write lock, so status polls and
    listings never wait for a booking or transition to commit.
    """

    if read_only:
        session: Session = SessionLocal(bind=engine.execution_options(**{READ_ONLY_OPTION: True}))
    else:
        session = SessionLocal()
    try:
        _apply_lock_timeout(session)
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def lock_timeout_statement() -> str:
    timeout_ms = int(current_lock_timeout * 1000)
    return f"SET LOCAL lock_timeout = '{timeout_ms}ms'"


def _apply_lock_timeout(session: Session) -> None:
    bind = session.get_bind()
    if bind.dialect.name != "postgresql":
        return
    session.execute(text(lock_timeout_statement()))


def is_lock_timeout(exc: OperationalError) -> bool:
    """Return True when a driver error means a lock wait ran out."""

    orig = getattr(exc, "orig", None)
    if getattr(orig, "sqlstate", None) == PG_LOCK_NOT_AVAILABLE:
        return True
    if getattr(orig, "pgcode", None) == PG_LOCK_NOT_AVAILABLE:
        return True
    return "database is locked" in str(orig)

from collections.abc import Generator, Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from overtime.core.config import settings
from overtime.core.errors import ConflictError

# lock_not_available, raised when lock_timeout expires
LOCK_TIMEOUT_SQLSTATE = "55P03"


def enable_sqlite_savepoints(target: Engine) -> None:
    """Let pysqlite run real transactions so SAVEPOINTs nest correctly.

    pysqlite defers BEGIN until the first DML statement, which breaks
    ``Session.begin_nested()``. Disable that and emit BEGIN ourselves.
    """

    @event.listens_for(target, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(target, "begin")
    def _on_begin(conn: Any) -> None:
        # A connection shared through StaticPool may already be inside one
        if not conn.connection.dbapi_connection.in_transaction:
            conn.exec_driver_sql("BEGIN")


engine = create_engine(
    settings.APP_DATABASE_DSN,
    connect_args=({"check_same_thread": False} if "sqlite" in settings.APP_DATABASE_DSN else {}),
)
if engine.dialect.name == "sqlite":
    enable_sqlite_savepoints(engine)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base: Any = declarative_base()


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def is_lock_timeout(exc: OperationalError) -> bool:
    """True when the database gave up waiting for a row or table lock."""
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate == LOCK_TIMEOUT_SQLSTATE:
        return True
    return "database is locked" in str(orig)


def _apply_transaction_limits(db: Session) -> None:
    if db.get_bind().dialect.name != "postgresql":
        return
    # SET does not accept bind parameters
    if settings.TRANSACTION_TIMEOUT_MS > 0:
        db.execute(text(f"SET LOCAL statement_timeout = {int(settings.TRANSACTION_TIMEOUT_MS)}"))
    if settings.LOCK_TIMEOUT_MS > 0:
        db.execute(text(f"SET LOCAL lock_timeout = {int(settings.LOCK_TIMEOUT_MS)}"))


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """Run the block as a single transaction.

    Commits when the block exits normally and rolls back on any exception, so a
    failed operation never leaves partial writes behind. On PostgreSQL the
    transaction carries statement and lock timeouts from settings; running
    out of lock wait surfaces as a retryable ``ConflictError``.
    """
    _apply_transaction_limits(db)
    try:
        yield db
        db.commit()
    except OperationalError as exc:
        db.rollback()
        if is_lock_timeout(exc):
            raise ConflictError(
                "Timed out waiting for a locked row, retry the request",
                {"reason": "lock_timeout"},
                code="LOCK_TIMEOUT",
            ) from exc
        raise
    except Exception:
        db.rollback()
        raise

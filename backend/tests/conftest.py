"""Shared test fixtures for all test modules."""

import contextlib
import uuid
from datetime import datetime, timedelta

import jwt
import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import overtime.models  # noqa: F401  (registers every table on Base.metadata)
from overtime.core import database as db_module
from overtime.core.auth import Actor
from overtime.core.config import settings
from overtime.core.database import Base, enable_sqlite_savepoints, get_db
from overtime.models.shared import utc_now

# Create an in-memory SQLite engine with StaticPool so all connections
# share the same database state and there are no file-locking issues.
_test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
enable_sqlite_savepoints(_test_engine)
_TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_test_engine)

EMPLOYEE_ID = "emp-1001"
OTHER_EMPLOYEE_ID = "emp-1002"
SUPERVISOR_ID = "sup-2001"
DEPARTMENT_ID = uuid.UUID("00000000-0000-0000-0000-0000000000d1")


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test and truncate all data after.

    Patches the module-level engine and SessionLocal so all application code
    uses the in-memory test database. Clears data after each test.
    """
    # Patch module-level engine and session factory
    original_engine = db_module.engine
    original_session = db_module.SessionLocal
    db_module.engine = _test_engine
    db_module.SessionLocal = _TestSessionLocal

    Base.metadata.create_all(bind=_test_engine)

    yield
    with _test_engine.connect() as conn:
        conn.execute(text("PRAGMA foreign_keys = OFF"))
        for table in reversed(Base.metadata.sorted_tables):
            with contextlib.suppress(OperationalError):
                conn.execute(table.delete())
        conn.execute(text("PRAGMA foreign_keys = ON"))
        conn.commit()

    # Restore originals
    db_module.engine = original_engine
    db_module.SessionLocal = original_session


@pytest.fixture(autouse=True)
def attendance_not_required(monkeypatch):
    """Most tests have no time-clock data; attendance tests opt back in."""
    monkeypatch.setattr(settings, "DEFAULT_REQUIRE_VERIFIED_ATTENDANCE", False)


@pytest.fixture
def db_session():
    """Create a database session for direct testing."""
    gen = get_db()
    db = next(gen)
    try:
        yield db
    finally:
        for _ in gen:
            pass


@pytest.fixture
def employee() -> Actor:
    return Actor(actor_id=EMPLOYEE_ID, role="employee")


@pytest.fixture
def other_employee() -> Actor:
    return Actor(actor_id=OTHER_EMPLOYEE_ID, role="employee")


@pytest.fixture
def supervisor() -> Actor:
    return Actor(actor_id=SUPERVISOR_ID, role="supervisor")


@pytest.fixture
def manager() -> Actor:
    return Actor(actor_id="mgr-3001", role="manager")


@pytest.fixture
def hr() -> Actor:
    return Actor(actor_id="hr-4001", role="hr")


def make_window(
    days_ahead: int = 1, start_hour: int = 18, minutes: int = 60
) -> tuple[datetime, datetime]:
    """An overtime window starting ``days_ahead`` days from today at ``start_hour`` UTC."""
    start = (utc_now() + timedelta(days=days_ahead)).replace(
        hour=start_hour, minute=0, second=0, microsecond=0
    )
    return start, start + timedelta(minutes=minutes)


def make_token(actor: Actor, **claims: object) -> str:
    payload: dict[str, object] = {
        "sub": actor.actor_id,
        "role": actor.role,
        "type": "access",
        "exp": utc_now() + timedelta(hours=1),
    }
    if actor.department_id is not None:
        payload["department_id"] = str(actor.department_id)
    payload.update(claims)
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers(actor: Actor, **extra: str) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {make_token(actor)}"}
    headers.update(extra)
    return headers

"""Concurrent callers against a shared file-backed database.

Each worker thread opens its own session. SQLite transactions start with
``BEGIN IMMEDIATE`` so writers queue on the database lock the way PostgreSQL
writers queue on row locks.
"""

import random
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from overtime.core.auth import Actor
from overtime.core.config import settings
from overtime.core.database import Base
from overtime.core.errors import ConflictError
from overtime.models.idempotency_record import IdempotencyRecord
from overtime.models.overtime_request import OvertimeRequest, RequestStatus
from overtime.models.shared import ensure_utc, utc_now
from overtime.services.approval_state_machine import ApprovalStateMachine, Decision
from overtime.services.interval_store import OVERLAP_CODE
from overtime.services.policy_service import PolicyKey, PolicyService
from overtime.services.request_lifecycle import RequestLifecycleService
from tests.conftest import EMPLOYEE_ID, make_window

WORKERS = 8


@pytest.fixture
def session_factory(tmp_path, monkeypatch):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    db = factory()
    try:
        policy = PolicyService(db)
        policy.set(PolicyKey.MAX_DAILY_MINUTES, 100_000)
        policy.set(PolicyKey.MAX_WEEKLY_MINUTES, 100_000)
    finally:
        db.close()
    monkeypatch.setattr(settings, "IDEMPOTENCY_WAIT_SECONDS", 30.0)

    yield factory
    engine.dispose()


def _run_in_session(factory, fn):
    db = factory()
    try:
        return fn(db)
    finally:
        db.close()


def _overlaps(a: tuple[datetime, datetime], b: tuple[datetime, datetime]) -> bool:
    # Windows that touch at an endpoint count as overlapping
    return a[0] <= b[1] and b[0] <= a[1]


def _random_windows(seed: int, count: int) -> list[tuple[datetime, datetime]]:
    rng = random.Random(seed)
    base = (utc_now() + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    windows = []
    for _ in range(count):
        start = base + timedelta(minutes=rng.randrange(0, 12 * 60))
        windows.append((start, start + timedelta(minutes=rng.randrange(15, 121))))
    return windows


class TestConcurrentSubmissions:
    @pytest.mark.parametrize("seed", [7, 1234, 98765])
    def test_survivors_never_overlap(self, session_factory, employee, seed):
        windows = _random_windows(seed, count=40)

        def submit(window):
            def run(db):
                try:
                    RequestLifecycleService(db).submit(employee, window[0], window[1], None)
                except ConflictError as exc:
                    return exc.code
                return "created"

            return _run_in_session(session_factory, run)

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            outcomes = list(pool.map(submit, windows))

        assert set(outcomes) <= {"created", OVERLAP_CODE}

        def survivors(db):
            rows = (
                db.query(OvertimeRequest)
                .filter(OvertimeRequest.owner_id == EMPLOYEE_ID)
                .order_by(OvertimeRequest.start_at)
                .all()
            )
            return [(ensure_utc(r.start_at), ensure_utc(r.end_at)) for r in rows]

        kept = _run_in_session(session_factory, survivors)
        assert len(kept) == outcomes.count("created")
        for i, first in enumerate(kept):
            for second in kept[i + 1 :]:
                assert not _overlaps(first, second), (first, second)

        # Every rejected window collides with a window that was kept
        for window, outcome in zip(windows, outcomes, strict=True):
            if outcome == OVERLAP_CODE:
                assert any(_overlaps(window, k) for k in kept), window

    def test_same_key_creates_one_request(self, session_factory, employee):
        start, end = make_window()

        def submit(_):
            return _run_in_session(
                session_factory,
                lambda db: RequestLifecycleService(db).submit_idempotent(
                    employee, start, end, "release", "shared-key"
                ),
            )

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            outcomes = list(pool.map(submit, range(WORKERS)))

        assert sum(not o.duplicate for o in outcomes) == 1
        assert all(o.result == outcomes[0].result for o in outcomes)
        assert all(o.status_code == 201 for o in outcomes)

        def counts(db):
            return db.query(OvertimeRequest).count(), db.query(IdempotencyRecord).count()

        assert _run_in_session(session_factory, counts) == (1, 1)


class TestConcurrentDecisions:
    def test_one_decision_wins(self, session_factory, employee, supervisor):
        start, end = make_window()
        request_id = _run_in_session(
            session_factory,
            lambda db: RequestLifecycleService(db).submit(employee, start, end, None).id,
        )
        other_supervisor = Actor(actor_id="sup-2002", role="supervisor")

        def decide(args):
            actor, decision = args

            def run(db):
                try:
                    ApprovalStateMachine(db).decide(actor, request_id, 1, decision)
                except ConflictError as exc:
                    return exc.code
                return "decided"

            return _run_in_session(session_factory, run)

        with ThreadPoolExecutor(max_workers=2) as pool:
            outcomes = list(
                pool.map(
                    decide,
                    [(supervisor, Decision.APPROVED), (other_supervisor, Decision.REJECTED)],
                )
            )

        assert sorted(outcomes) == ["CONFLICT", "decided"]

        def status(db):
            request = db.get(OvertimeRequest, request_id)
            return request.status, request.row_version

        final_status, row_version = _run_in_session(session_factory, status)
        assert final_status in (RequestStatus.PENDING.value, RequestStatus.REJECTED.value)
        assert row_version == 2

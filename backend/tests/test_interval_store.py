"""Tests for the per-owner overlap guard."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from overtime.core.errors import ConflictError
from overtime.models.overtime_request import (
    OVERLAP_CONSTRAINT_NAME,
    OvertimeRequest,
    RequestStatus,
)
from overtime.services.interval_store import (
    OVERLAP_CODE,
    IntervalStore,
    is_overlap_violation,
)
from tests.conftest import EMPLOYEE_ID, OTHER_EMPLOYEE_ID, make_window


@pytest.fixture
def store(db_session: Session) -> IntervalStore:
    return IntervalStore(db_session)


def _insert(
    db_session: Session,
    start,
    end,
    owner_id: str = EMPLOYEE_ID,
    status: str = RequestStatus.SUBMITTED.value,
    is_active: bool = True,
) -> OvertimeRequest:
    request = OvertimeRequest(
        owner_id=owner_id,
        start_at=start,
        end_at=end,
        duration_minutes=int((end - start).total_seconds() // 60),
        status=status,
        is_active=is_active,
    )
    db_session.add(request)
    db_session.commit()
    return request


class TestReserve:
    def test_free_window(self, store):
        start, end = make_window()
        store.reserve(EMPLOYEE_ID, start, end)

    def test_overlap_conflicts(self, store, db_session):
        start, end = make_window(minutes=120)
        existing = _insert(db_session, start, end)

        with pytest.raises(ConflictError) as exc_info:
            store.reserve(EMPLOYEE_ID, start + timedelta(minutes=30), end + timedelta(minutes=30))

        assert exc_info.value.code == OVERLAP_CODE
        assert exc_info.value.details["overlapping_ids"] == [str(existing.id)]
        assert exc_info.value.details["overlapping_requests"][0]["status"] == "submitted"

    def test_contained_window_conflicts(self, store, db_session):
        start, end = make_window(minutes=180)
        _insert(db_session, start, end)

        with pytest.raises(ConflictError):
            store.reserve(EMPLOYEE_ID, start + timedelta(minutes=60), start + timedelta(minutes=90))

    def test_touching_endpoints_conflict(self, store, db_session):
        start, end = make_window(minutes=60)
        _insert(db_session, start, end)

        with pytest.raises(ConflictError):
            store.reserve(EMPLOYEE_ID, end, end + timedelta(minutes=60))

    def test_adjacent_with_gap_is_free(self, store, db_session):
        start, end = make_window(minutes=60)
        _insert(db_session, start, end)

        store.reserve(EMPLOYEE_ID, end + timedelta(minutes=1), end + timedelta(minutes=61))

    def test_other_owner_is_free(self, store, db_session):
        start, end = make_window()
        _insert(db_session, start, end, owner_id=OTHER_EMPLOYEE_ID)

        store.reserve(EMPLOYEE_ID, start, end)

    @pytest.mark.parametrize(
        "status",
        [RequestStatus.REJECTED.value, RequestStatus.CANCELED.value, RequestStatus.EXPIRED.value],
    )
    def test_released_statuses_free_the_window(self, store, db_session, status):
        start, end = make_window()
        _insert(db_session, start, end, status=status)

        store.reserve(EMPLOYEE_ID, start, end)

    @pytest.mark.parametrize(
        "status",
        [
            RequestStatus.DRAFT.value,
            RequestStatus.PENDING.value,
            RequestStatus.APPROVED.value,
        ],
    )
    def test_live_statuses_hold_the_window(self, store, db_session, status):
        start, end = make_window()
        _insert(db_session, start, end, status=status)

        with pytest.raises(ConflictError):
            store.reserve(EMPLOYEE_ID, start, end)

    def test_inactive_request_frees_the_window(self, store, db_session):
        start, end = make_window()
        _insert(db_session, start, end, status=RequestStatus.DRAFT.value, is_active=False)

        store.reserve(EMPLOYEE_ID, start, end)

    def test_exclude_id_skips_self(self, store, db_session):
        start, end = make_window()
        existing = _insert(db_session, start, end)

        store.reserve(EMPLOYEE_ID, start, end, exclude_id=existing.id)


class TestConstraintTranslation:
    def _integrity_error(self, message: str, constraint_name: str | None = None) -> IntegrityError:
        orig = Exception(message)
        if constraint_name is not None:
            orig.diag = MagicMock(constraint_name=constraint_name)  # type: ignore[attr-defined]
        return IntegrityError("INSERT INTO overtime_requests ...", {}, orig)

    def test_detects_constraint_by_diag(self):
        exc = self._integrity_error("conflicting key value", OVERLAP_CONSTRAINT_NAME)
        assert is_overlap_violation(exc) is True

    def test_detects_constraint_by_message(self):
        exc = self._integrity_error(
            f'conflicting key value violates exclusion constraint "{OVERLAP_CONSTRAINT_NAME}"'
        )
        assert is_overlap_violation(exc) is True

    def test_other_integrity_errors_pass_through(self):
        exc = self._integrity_error("UNIQUE constraint failed", "uq_something_else")
        assert is_overlap_violation(exc) is False

    def test_guard_translates_exclusion_violation(self, store):
        exc = self._integrity_error("exclusion", OVERLAP_CONSTRAINT_NAME)

        with pytest.raises(ConflictError) as exc_info, store.guard():
            raise exc

        assert exc_info.value.code == OVERLAP_CODE
        assert exc_info.value.details["constraint"] == OVERLAP_CONSTRAINT_NAME

    def test_guard_reraises_other_violations(self, store):
        exc = self._integrity_error("NOT NULL constraint failed")

        with pytest.raises(IntegrityError), store.guard():
            raise exc

    def test_claim_translates_flush_failure(self, db_session):
        store = IntervalStore(db_session)
        store.repo = MagicMock()
        store.repo.add.side_effect = self._integrity_error("exclusion", OVERLAP_CONSTRAINT_NAME)

        with pytest.raises(ConflictError):
            store.claim(OvertimeRequest(owner_id=EMPLOYEE_ID))

    def test_claim_inserts_request(self, store, db_session):
        start, end = make_window()
        request = OvertimeRequest(
            owner_id=EMPLOYEE_ID,
            start_at=start,
            end_at=end,
            duration_minutes=60,
            status=RequestStatus.SUBMITTED.value,
        )

        claimed = store.claim(request)
        db_session.commit()

        assert claimed.id is not None
        assert claimed.row_version == 1

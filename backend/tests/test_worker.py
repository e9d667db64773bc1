"""Tests for worker background tasks and cron job registration."""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from overtime.core import database as db_module
from overtime.core.auth import Actor
from overtime.models.overtime_request import OvertimeRequest, RequestStatus
from overtime.models.shared import utc_now
from overtime.services.maintenance_sweeper import SweepResult
from overtime.services.request_lifecycle import RequestLifecycleService
from overtime.worker import (
    WorkerSettings,
    escalate_stalled_approvals_task,
    expire_drafts_task,
    purge_idempotency_records_task,
)
from tests.conftest import make_window


def _cron_job(name: str):
    for job in WorkerSettings.cron_jobs:
        if job.coroutine.__name__ == name:
            return job
    return None


class TestExpireDraftsTask:
    @pytest.mark.asyncio
    async def test_returns_sweep_counts(self):
        mock_sweeper = MagicMock()
        mock_sweeper.expire_drafts.return_value = SweepResult(processed=2)

        with patch("overtime.worker.MaintenanceSweeper", return_value=mock_sweeper):
            result = await expire_drafts_task({})

        assert result == {"processed": 2, "skipped": 0, "failed": 0}
        mock_sweeper.expire_drafts.assert_called_once()

    @pytest.mark.asyncio
    async def test_creates_session_and_closes_it(self):
        mock_session = MagicMock()
        mock_sweeper = MagicMock()
        mock_sweeper.expire_drafts.return_value = SweepResult()

        with (
            patch("overtime.worker.SessionLocal", return_value=mock_session),
            patch("overtime.worker.MaintenanceSweeper", return_value=mock_sweeper) as mock_cls,
        ):
            await expire_drafts_task({})

        mock_cls.assert_called_once_with(mock_session)
        mock_session.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_closes_session_on_error(self):
        mock_session = MagicMock()
        mock_sweeper = MagicMock()
        mock_sweeper.expire_drafts.side_effect = RuntimeError("database unavailable")

        with (
            patch("overtime.worker.SessionLocal", return_value=mock_session),
            patch("overtime.worker.MaintenanceSweeper", return_value=mock_sweeper),
            pytest.raises(RuntimeError, match="database unavailable"),
        ):
            await expire_drafts_task({})

        mock_session.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_expires_stale_drafts_end_to_end(self):
        db = db_module.SessionLocal()
        try:
            owner = Actor(actor_id="emp-7", role="employee")
            start, end = make_window()
            draft = RequestLifecycleService(db).save_draft(owner, start, end, None)
            draft_id = draft.id
        finally:
            db.close()

        # Far enough ahead that the draft is past the default expiration
        later = utc_now() + timedelta(days=31)
        with (
            patch("overtime.worker.SessionLocal", db_module.SessionLocal),
            patch("overtime.services.maintenance_sweeper.utc_now", return_value=later),
        ):
            result = await expire_drafts_task({})

        assert result["processed"] == 1
        db = db_module.SessionLocal()
        try:
            assert db.get(OvertimeRequest, draft_id).status == RequestStatus.EXPIRED.value
        finally:
            db.close()


class TestEscalateStalledApprovalsTask:
    @pytest.mark.asyncio
    async def test_returns_sweep_counts(self):
        mock_sweeper = MagicMock()
        mock_sweeper.escalate_stalled_steps.return_value = SweepResult(processed=1, skipped=1)

        with patch("overtime.worker.MaintenanceSweeper", return_value=mock_sweeper):
            result = await escalate_stalled_approvals_task({})

        assert result == {"processed": 1, "skipped": 1, "failed": 0}
        mock_sweeper.escalate_stalled_steps.assert_called_once()

    @pytest.mark.asyncio
    async def test_nothing_to_escalate(self):
        with patch("overtime.worker.SessionLocal", db_module.SessionLocal):
            result = await escalate_stalled_approvals_task({})

        assert result == {"processed": 0, "skipped": 0, "failed": 0}


class TestPurgeIdempotencyRecordsTask:
    @pytest.mark.asyncio
    async def test_returns_sweep_counts(self):
        mock_sweeper = MagicMock()
        mock_sweeper.purge_idempotency_records.return_value = SweepResult(processed=4)

        with patch("overtime.worker.MaintenanceSweeper", return_value=mock_sweeper):
            result = await purge_idempotency_records_task({})

        assert result["processed"] == 4
        mock_sweeper.purge_idempotency_records.assert_called_once()


class TestWorkerSettings:
    def test_functions_registered(self):
        func_names = [f.__name__ for f in WorkerSettings.functions]
        assert func_names == [
            "expire_drafts_task",
            "escalate_stalled_approvals_task",
            "purge_idempotency_records_task",
        ]

    def test_escalation_cron_runs_every_5_minutes(self):
        job = _cron_job("escalate_stalled_approvals_task")
        assert job is not None
        assert job.minute == {0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55}

    def test_draft_cron_runs_hourly(self):
        job = _cron_job("expire_drafts_task")
        assert job is not None
        assert job.minute == {0}

    def test_purge_cron_runs_hourly_offset(self):
        job = _cron_job("purge_idempotency_records_task")
        assert job is not None
        assert job.minute == {30}

    def test_redis_settings_configured(self):
        from overtime.tasks import redis_settings

        assert WorkerSettings.redis_settings is redis_settings

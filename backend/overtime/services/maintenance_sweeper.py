"""Background maintenance: expire stale drafts, escalate stalled approvals, purge keys.

Each sweep takes one bounded batch with ``FOR UPDATE SKIP LOCKED`` so several
workers can run side by side without waiting on each other's rows. Every row
is processed in its own SAVEPOINT: a failing row is rolled back, logged and
counted, and the rest of the batch still commits.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from overtime.core.config import settings
from overtime.core.database import atomic
from overtime.core.errors import OvertimeError
from overtime.models.idempotency_record import IdempotencyRecord
from overtime.models.overtime_request import OvertimeRequest
from overtime.models.shared import ensure_utc, utc_now
from overtime.repositories.approval_step_repository import ApprovalStepRepository
from overtime.repositories.idempotency_repository import IdempotencyRepository
from overtime.repositories.overtime_request_repository import OvertimeRequestRepository
from overtime.services.approval_state_machine import ApprovalStateMachine, active_step
from overtime.services.policy_service import PolicyService

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    processed: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"processed": self.processed, "skipped": self.skipped, "failed": self.failed}


class MaintenanceSweeper:
    def __init__(self, db: Session, batch_size: int | None = None):
        self.db = db
        self.batch_size = batch_size or settings.SWEEPER_BATCH_SIZE
        self.request_repo = OvertimeRequestRepository(db)
        self.step_repo = ApprovalStepRepository(db)
        self.idempotency_repo = IdempotencyRepository(db)
        self.policy_service = PolicyService(db)
        self.state_machine = ApprovalStateMachine(db)

    def expire_drafts(self, now: datetime | None = None) -> SweepResult:
        """Expire drafts created more than ``draft_expiration_days`` ago."""
        now = now or utc_now()
        result = SweepResult()
        with atomic(self.db):
            policy = self.policy_service.load()
            cutoff = now - timedelta(days=policy.draft_expiration_days)
            for request in self.request_repo.lock_stale_drafts(cutoff, self.batch_size):
                self._run_isolated(
                    result,
                    "expire draft",
                    request.id,
                    lambda r=request: self.state_machine.expire_draft(r, now),
                )
        if result.processed or result.failed:
            logger.info("Draft expiry sweep: %s", result.to_dict())
        return result

    def escalate_stalled_steps(self, now: datetime | None = None) -> SweepResult:
        """Skip active steps past ``due_at``; the chain moves on or the request expires."""
        now = now or utc_now()
        result = SweepResult()
        with atomic(self.db):
            policy = self.policy_service.load()
            for request in self.request_repo.lock_with_overdue_step(now, self.batch_size):
                self._run_isolated(
                    result,
                    "escalate request",
                    request.id,
                    lambda r=request: self._escalate(r, now, policy.escalation_timeout_minutes),
                )
        if result.processed or result.failed:
            logger.info("Approval escalation sweep: %s", result.to_dict())
        return result

    def _escalate(
        self, request: OvertimeRequest, now: datetime, default_timeout_minutes: int
    ) -> bool:
        # The request row is already locked; steps come second, as in decide
        steps = self.step_repo.list_for_request(UUID(str(request.id)), lock=True)
        step = active_step(steps)
        if step is None or step.due_at is None:
            return False
        if ensure_utc(step.due_at) >= now:  # type: ignore[arg-type]
            return False
        return self.state_machine.escalate_step(step, request, steps, now, default_timeout_minutes)

    def purge_idempotency_records(self, now: datetime | None = None) -> SweepResult:
        """Delete idempotency records past their TTL, including abandoned placeholders."""
        now = now or utc_now()
        result = SweepResult()
        with atomic(self.db):
            for record in self.idempotency_repo.lock_expired(now, self.batch_size):
                self._run_isolated(
                    result,
                    "purge idempotency record",
                    record.id,
                    lambda r=record: self._purge(r),
                )
        if result.processed or result.failed:
            logger.info("Idempotency purge sweep: %s", result.to_dict())
        return result

    def _purge(self, record: IdempotencyRecord) -> bool:
        self.idempotency_repo.delete(record)
        return True

    def _run_isolated(
        self, result: SweepResult, label: str, row_id: object, fn: Callable[[], bool]
    ) -> None:
        try:
            with self.db.begin_nested():
                changed = fn()
        except (SQLAlchemyError, OvertimeError):
            logger.exception("Failed to %s %s", label, row_id)
            result.failed += 1
            return
        if changed:
            result.processed += 1
        else:
            result.skipped += 1

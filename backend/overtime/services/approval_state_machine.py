"""Approval state machine for overtime requests.

Step states: ``pending`` -> ``approved`` | ``rejected`` | ``skipped``.
Request states: ``draft`` -> ``submitted`` -> ``pending`` (while steps
remain) -> ``approved`` | ``rejected`` | ``expired`` | ``canceled``.

Chains are sequential: only the lowest-order pending step can be decided.
One rejection closes the whole chain.

Every public operation runs as one transaction that locks the request row
first, then its steps. Each touched row's ``row_version`` goes up by exactly
one (SQLAlchemy's version counter) and gets one chained audit entry written in
the same transaction. ``expire_draft`` and ``escalate_step`` serve the
maintenance sweeper, which holds its own skip-locked row locks and transaction.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from overtime.core.auth import Actor
from overtime.core.database import atomic
from overtime.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from overtime.models.approval_step import ApprovalStep, StepStatus
from overtime.models.audit_entry import AuditAction
from overtime.models.overtime_request import OvertimeRequest, RequestStatus
from overtime.models.shared import SYSTEM_ACTOR, utc_now
from overtime.repositories.approval_step_repository import ApprovalStepRepository
from overtime.repositories.overtime_request_repository import OvertimeRequestRepository
from overtime.services.audit_chain import AuditChainRecorder
from overtime.services.policy_service import PolicyService

logger = logging.getLogger(__name__)

REQUESTS_TABLE = OvertimeRequest.__tablename__
STEPS_TABLE = ApprovalStep.__tablename__

ESCALATION_COMMENT = "Auto-skipped due to timeout"
CANCEL_COMMENT = "Request canceled"


class Decision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class DecisionResult:
    step: ApprovalStep
    request: OvertimeRequest
    is_final: bool


def activate_step(step: ApprovalStep, now: datetime, default_timeout_minutes: int) -> None:
    """Make ``step`` the active one and start its escalation clock."""
    timeout = step.escalate_after_minutes
    if timeout is None:
        timeout = default_timeout_minutes
    step.activated_at = now  # type: ignore[assignment]
    step.due_at = now + timedelta(minutes=int(timeout))  # type: ignore[assignment]


def active_step(steps: list[ApprovalStep]) -> ApprovalStep | None:
    pending = [s for s in steps if s.status == StepStatus.PENDING.value]
    return min(pending, key=lambda s: int(s.step_order)) if pending else None


def check_row_version(request: OvertimeRequest, expected_row_version: int | None) -> None:
    if expected_row_version is not None and int(request.row_version) != expected_row_version:
        raise ConflictError(
            "Request was modified by another user. Please refresh and try again.",
            {
                "request_id": str(request.id),
                "expected_version": expected_row_version,
                "current_version": int(request.row_version),
            },
            code="VERSION_MISMATCH",
        )


def check_owner(request: OvertimeRequest, actor: Actor) -> None:
    if request.owner_id != actor.actor_id:
        raise AuthorizationError(
            "Only the owner can change this request",
            {"request_id": str(request.id)},
        )


def flush_versioned(db: Session, request: OvertimeRequest) -> None:
    """Flush pending UPDATEs, turning a lost version race into a 409."""
    try:
        db.flush()
    except StaleDataError as exc:
        # The conditional UPDATE matched no row: someone else committed first
        raise ConflictError(
            "Request was modified concurrently. Please refresh and try again.",
            {"request_id": str(request.id)},
            code="VERSION_MISMATCH",
        ) from exc


class ApprovalStateMachine:
    def __init__(self, db: Session):
        self.db = db
        self.request_repo = OvertimeRequestRepository(db)
        self.step_repo = ApprovalStepRepository(db)
        self.audit = AuditChainRecorder(db)
        self.policy_service = PolicyService(db)

    # ------------------------------------------------------------------
    # Shared checks
    # ------------------------------------------------------------------

    def _lock_request(self, request_id: UUID) -> OvertimeRequest:
        request = self.request_repo.get_for_update(request_id)
        if request is None or not request.is_active:
            raise NotFoundError("Overtime request", {"request_id": str(request_id)})
        return request

    def _audit_step(
        self,
        step: ApprovalStep,
        action: str,
        actor_id: str,
        old_status: str,
        **extra: Any,
    ) -> None:
        self.audit.log_status_change(
            STEPS_TABLE,
            UUID(str(step.id)),
            action,
            actor_id,
            old_status,
            str(step.status),
            request_id=str(step.request_id),
            step_order=step.step_order,
            row_version=step.row_version,
            **extra,
        )

    def _audit_request(
        self,
        request: OvertimeRequest,
        action: str,
        actor_id: str,
        old_status: str,
        old_level: int,
        **extra: Any,
    ) -> None:
        self.audit.log_status_change(
            REQUESTS_TABLE,
            UUID(str(request.id)),
            action,
            actor_id,
            old_status,
            str(request.status),
            current_level={"old": old_level, "new": request.current_level},
            row_version=request.row_version,
            **extra,
        )

    # ------------------------------------------------------------------
    # Approver decisions
    # ------------------------------------------------------------------

    def decide(
        self,
        actor: Actor,
        request_id: UUID,
        step_order: int,
        decision: Decision | str,
        comment: str | None = None,
        expected_row_version: int | None = None,
    ) -> DecisionResult:
        try:
            decision = Decision(decision)
        except ValueError:
            raise ValidationError(
                "decision must be 'approved' or 'rejected'", {"decision": str(decision)}
            ) from None

        with atomic(self.db):
            request = self._lock_request(request_id)
            check_row_version(request, expected_row_version)
            if request.is_terminal:
                raise ConflictError(
                    f"Approval chain is closed, request is {request.status}",
                    {"current_status": request.status, "reason": "chain_closed"},
                )
            if request.status == RequestStatus.DRAFT.value:
                raise ConflictError(
                    "Request has not been submitted yet",
                    {"current_status": request.status, "reason": "not_submitted"},
                )

            steps = self.step_repo.list_for_request(UUID(str(request.id)), lock=True)
            step = next((s for s in steps if int(s.step_order) == step_order), None)
            if step is None:
                raise NotFoundError(
                    "Approval step", {"request_id": str(request_id), "step_order": step_order}
                )
            if step.is_decided:
                raise ConflictError(
                    f"This approval step is already {step.status}",
                    {"current_status": step.status, "step_order": step_order},
                )
            current = active_step(steps)
            if current is None or current.id != step.id:
                raise ConflictError(
                    "This approval step is not active yet",
                    {
                        "step_order": step_order,
                        "active_step_order": current.step_order if current else None,
                    },
                )
            if not step.approver.matches(actor.actor_id, actor.role):
                raise AuthorizationError(
                    "Only the assigned approver can decide this step",
                    {"step_order": step_order, "approver_kind": step.approver_kind},
                )

            now = utc_now()
            old_step_status = str(step.status)
            old_request_status = str(request.status)
            old_level = int(request.current_level)

            step.status = decision.value  # type: ignore[assignment]
            step.decided_by = actor.actor_id  # type: ignore[assignment]
            step.decision_at = now  # type: ignore[assignment]
            step.comment = comment  # type: ignore[assignment]

            remaining = [
                s
                for s in steps
                if s.status == StepStatus.PENDING.value and int(s.step_order) > step_order
            ]
            next_step: ApprovalStep | None = None
            if decision == Decision.REJECTED:
                request.status = RequestStatus.REJECTED.value  # type: ignore[assignment]
                request_action = AuditAction.REJECT
            elif not remaining:
                request.status = RequestStatus.APPROVED.value  # type: ignore[assignment]
                request.current_level = request.max_level
                request_action = AuditAction.APPROVE
            else:
                request.status = RequestStatus.PENDING.value  # type: ignore[assignment]
                request.current_level = step_order  # type: ignore[assignment]
                request_action = AuditAction.ADVANCE
                next_step = remaining[0]
                policy = self.policy_service.load()
                activate_step(next_step, now, policy.escalation_timeout_minutes)

            flush_versioned(self.db, request)

            step_action = (
                AuditAction.APPROVE if decision == Decision.APPROVED else AuditAction.REJECT
            )
            self._audit_step(step, step_action, actor.actor_id, old_step_status, comment=comment)
            if next_step is not None:
                self.audit.append(
                    STEPS_TABLE,
                    UUID(str(next_step.id)),
                    AuditAction.ACTIVATE,
                    actor.actor_id,
                    {
                        "request_id": str(next_step.request_id),
                        "step_order": next_step.step_order,
                        "due_at": next_step.due_at,
                        "row_version": next_step.row_version,
                    },
                )
            self._audit_request(
                request,
                request_action,
                actor.actor_id,
                old_request_status,
                old_level,
                step_order=step_order,
            )
            is_final = request.is_terminal

        logger.info(
            "Step %s of request %s %s by %s (final=%s)",
            step_order,
            request_id,
            decision.value,
            actor.actor_id,
            is_final,
        )
        return DecisionResult(step=step, request=request, is_final=is_final)

    # ------------------------------------------------------------------
    # Owner actions
    # ------------------------------------------------------------------

    def cancel(
        self,
        actor: Actor,
        request_id: UUID,
        expected_row_version: int | None = None,
        reason: str | None = None,
    ) -> OvertimeRequest:
        """Withdraw a request that is not terminal yet. Its window is released."""
        with atomic(self.db):
            request = self._lock_request(request_id)
            check_owner(request, actor)
            check_row_version(request, expected_row_version)
            if request.is_terminal:
                raise ConflictError(
                    f"Request is already {request.status}",
                    {"current_status": request.status},
                )
            steps = self.step_repo.list_for_request(UUID(str(request.id)), lock=True)
            now = utc_now()
            old_status = str(request.status)
            old_level = int(request.current_level)

            skipped = [s for s in steps if s.status == StepStatus.PENDING.value]
            for step in skipped:
                step.status = StepStatus.SKIPPED.value  # type: ignore[assignment]
                step.decision_at = now  # type: ignore[assignment]
                step.decided_by = actor.actor_id  # type: ignore[assignment]
                step.comment = CANCEL_COMMENT  # type: ignore[assignment]
            request.status = RequestStatus.CANCELED.value  # type: ignore[assignment]
            flush_versioned(self.db, request)

            for step in skipped:
                self._audit_step(step, AuditAction.CANCEL, actor.actor_id, StepStatus.PENDING.value)
            self._audit_request(
                request, AuditAction.CANCEL, actor.actor_id, old_status, old_level, reason=reason
            )

        logger.info("Request %s canceled by %s", request_id, actor.actor_id)
        return request

    def deactivate(
        self,
        actor: Actor,
        request_id: UUID,
        expected_row_version: int | None = None,
    ) -> OvertimeRequest:
        """Soft-delete a draft or a finished request. Rows are never physically removed."""
        with atomic(self.db):
            request = self._lock_request(request_id)
            check_owner(request, actor)
            check_row_version(request, expected_row_version)
            if request.status != RequestStatus.DRAFT.value and not request.is_terminal:
                raise ConflictError(
                    "Only drafts and finished requests can be deleted; cancel it first",
                    {"current_status": request.status},
                )
            steps = self.step_repo.list_for_request(UUID(str(request.id)), lock=True)
            now = utc_now()
            for step in steps:
                step.is_active = False  # type: ignore[assignment]
            request.is_active = False  # type: ignore[assignment]
            request.deleted_at = now  # type: ignore[assignment]
            flush_versioned(self.db, request)

            for step in steps:
                self.audit.append(
                    STEPS_TABLE,
                    UUID(str(step.id)),
                    AuditAction.DEACTIVATE,
                    actor.actor_id,
                    {"is_active": {"old": True, "new": False}, "row_version": step.row_version},
                )
            self.audit.append(
                REQUESTS_TABLE,
                UUID(str(request.id)),
                AuditAction.DEACTIVATE,
                actor.actor_id,
                {
                    "is_active": {"old": True, "new": False},
                    "deleted_at": now,
                    "status": request.status,
                    "row_version": request.row_version,
                },
            )

        logger.info("Request %s deactivated by %s", request_id, actor.actor_id)
        return request

    # ------------------------------------------------------------------
    # Sweeper transitions (caller holds the row locks and the transaction)
    # ------------------------------------------------------------------

    def expire_draft(
        self, request: OvertimeRequest, now: datetime, actor_id: str = SYSTEM_ACTOR
    ) -> bool:
        if request.status != RequestStatus.DRAFT.value or not request.is_active:
            return False
        old_level = int(request.current_level)
        request.status = RequestStatus.EXPIRED.value  # type: ignore[assignment]
        flush_versioned(self.db, request)
        self._audit_request(
            request,
            AuditAction.EXPIRE,
            actor_id,
            RequestStatus.DRAFT.value,
            old_level,
            reason="draft_expired",
            expired_at=now,
        )
        return True

    def escalate_step(
        self,
        step: ApprovalStep,
        request: OvertimeRequest,
        steps: list[ApprovalStep],
        now: datetime,
        default_timeout_minutes: int,
        actor_id: str = SYSTEM_ACTOR,
    ) -> bool:
        """Skip an overdue active step; activate the next one or expire the request."""
        if step.status != StepStatus.PENDING.value or request.is_terminal or not request.is_active:
            return False
        current = active_step(steps)
        if current is None or current.id != step.id:
            return False

        old_request_status = str(request.status)
        old_level = int(request.current_level)
        step.status = StepStatus.SKIPPED.value  # type: ignore[assignment]
        step.decision_at = now  # type: ignore[assignment]
        step.decided_by = actor_id  # type: ignore[assignment]
        step.comment = ESCALATION_COMMENT  # type: ignore[assignment]

        remaining = [
            s
            for s in steps
            if s.status == StepStatus.PENDING.value and int(s.step_order) > int(step.step_order)
        ]
        request.current_level = step.step_order
        next_step = remaining[0] if remaining else None
        if next_step is not None:
            request.status = RequestStatus.PENDING.value  # type: ignore[assignment]
            activate_step(next_step, now, default_timeout_minutes)
            request_action = AuditAction.ESCALATE
        else:
            request.status = RequestStatus.EXPIRED.value  # type: ignore[assignment]
            request_action = AuditAction.EXPIRE
        flush_versioned(self.db, request)

        self._audit_step(
            step, AuditAction.ESCALATE, actor_id, StepStatus.PENDING.value, reason="timeout"
        )
        if next_step is not None:
            self.audit.append(
                STEPS_TABLE,
                UUID(str(next_step.id)),
                AuditAction.ACTIVATE,
                actor_id,
                {
                    "request_id": str(next_step.request_id),
                    "step_order": next_step.step_order,
                    "due_at": next_step.due_at,
                    "row_version": next_step.row_version,
                },
            )
        self._audit_request(
            request,
            request_action,
            actor_id,
            old_request_status,
            old_level,
            step_order=step.step_order,
            reason="approval_timeout",
        )
        return True

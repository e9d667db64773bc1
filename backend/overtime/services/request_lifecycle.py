"""Request lifecycle: validate, reserve the window and open the approval chain."""

import logging
from collections.abc import Callable
from datetime import UTC, date, datetime, time, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from overtime.core.auth import Actor
from overtime.core.config import settings
from overtime.core.database import atomic
from overtime.core.errors import (
    BusinessRuleViolation,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from overtime.core.idempotency import (
    Complete,
    IdempotencyGate,
    IdempotentResult,
    hash_request_body,
)
from overtime.models.approval_step import ApprovalStep, StepStatus
from overtime.models.audit_entry import AuditAction
from overtime.models.overtime_request import OvertimeRequest, RequestStatus
from overtime.models.shared import ensure_utc, utc_now
from overtime.repositories.attendance_log_repository import AttendanceLogRepository
from overtime.repositories.approval_step_repository import ApprovalStepRepository
from overtime.repositories.overtime_request_repository import OvertimeRequestRepository
from overtime.schemas.overtime_request import OvertimeRequestResponse
from overtime.services.approval_chain_service import ApprovalChainService, ResolvedChain
from overtime.services.approval_state_machine import (
    REQUESTS_TABLE,
    STEPS_TABLE,
    activate_step,
    check_owner,
    check_row_version,
    flush_versioned,
)
from overtime.services.audit_chain import AuditChainRecorder
from overtime.services.interval_store import IntervalStore
from overtime.services.policy_service import OvertimePolicy, PolicyService
from overtime.services.snapshots import request_snapshot, step_snapshot

logger = logging.getLogger(__name__)

SUBMIT_METHOD = "POST"
SUBMIT_PATH = "/v1/overtime-requests"


class RuleCode:
    DAILY_LIMIT_EXCEEDED = "DAILY_LIMIT_EXCEEDED"
    WEEKLY_LIMIT_EXCEEDED = "WEEKLY_LIMIT_EXCEEDED"
    SUBMISSION_DEADLINE_PASSED = "SUBMISSION_DEADLINE_PASSED"
    NO_VERIFIED_ATTENDANCE = "NO_VERIFIED_ATTENDANCE"


def _local_midnight_utc(day: date, policy: OvertimePolicy) -> datetime:
    return datetime.combine(day, time.min, tzinfo=policy.timezone).astimezone(UTC)


def pay_rate(start_at: datetime, policy: OvertimePolicy) -> tuple[bool, bool, float]:
    """Night-shift flag, holiday flag and the multiplier for a window starting at ``start_at``."""
    local_start = ensure_utc(start_at).astimezone(policy.timezone)
    hour = local_start.hour
    is_night = hour >= settings.NIGHT_SHIFT_START_HOUR or hour < settings.NIGHT_SHIFT_END_HOUR
    is_holiday = local_start.date() in policy.holiday_dates
    if is_holiday:
        return is_night, True, policy.holiday_multiplier
    if is_night:
        return True, False, policy.night_multiplier
    return False, False, 1.0


def _apply_pay_rate(request: OvertimeRequest, policy: OvertimePolicy) -> None:
    is_night, is_holiday, multiplier = pay_rate(request.start_at, policy)  # type: ignore[arg-type]
    request.is_night_shift = is_night  # type: ignore[assignment]
    request.is_holiday = is_holiday  # type: ignore[assignment]
    request.pay_multiplier = multiplier  # type: ignore[assignment]


class RequestLifecycleService:
    """Creates overtime requests and moves drafts into the approval chain.

    Each write runs in one transaction: the overlap reservation, the request
    row, its approval steps and their ``create`` audit entries commit or roll
    back together.
    """

    def __init__(self, db: Session):
        self.db = db
        self.request_repo = OvertimeRequestRepository(db)
        self.step_repo = ApprovalStepRepository(db)
        self.intervals = IntervalStore(db)
        self.audit = AuditChainRecorder(db)
        self.policy_service = PolicyService(db)
        self.chain_service = ApprovalChainService(db)
        self.attendance_repo = AttendanceLogRepository(db)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def validate_window(
        start_at: datetime, end_at: datetime, reason: str | None
    ) -> tuple[datetime, datetime, int]:
        """Normalize the window to UTC and return it with its length in minutes."""
        start = ensure_utc(start_at)
        end = ensure_utc(end_at)
        if end <= start:
            raise ValidationError(
                "end_at must be after start_at",
                {"start_at": start.isoformat(), "end_at": end.isoformat()},
            )
        duration = int((end - start).total_seconds() // 60)
        if duration <= 0:
            raise ValidationError(
                "Overtime window must be at least one minute long",
                {"start_at": start.isoformat(), "end_at": end.isoformat()},
            )
        if reason is not None and len(reason) > settings.MAX_REASON_LENGTH:
            raise ValidationError(
                f"reason must be at most {settings.MAX_REASON_LENGTH} characters",
                {"max_length": settings.MAX_REASON_LENGTH},
            )
        return start, end, duration

    def check_business_rules(
        self,
        owner_id: str,
        start_at: datetime,
        duration_minutes: int,
        policy: OvertimePolicy,
        exclude_id: UUID | None = None,
        today: date | None = None,
    ) -> list[dict[str, Any]]:
        """Evaluate the caps, the submission deadline and attendance.

        Returns every violation found, empty when the request is allowed.
        """
        violations: list[dict[str, Any]] = []
        start_at = ensure_utc(start_at)
        end_at = start_at + timedelta(minutes=duration_minutes)
        work_date = start_at.astimezone(policy.timezone).date()

        day_start = _local_midnight_utc(work_date, policy)
        day_end = _local_midnight_utc(work_date + timedelta(days=1), policy)
        daily = self.request_repo.sum_live_minutes(owner_id, day_start, day_end, exclude_id)
        if daily + duration_minutes > policy.max_daily_minutes:
            violations.append(
                {
                    "code": RuleCode.DAILY_LIMIT_EXCEEDED,
                    "message": (
                        f"Daily overtime would reach {daily + duration_minutes} minutes, "
                        f"limit is {policy.max_daily_minutes}"
                    ),
                    "details": {
                        "work_date": work_date.isoformat(),
                        "limit_minutes": policy.max_daily_minutes,
                        "accumulated_minutes": daily,
                        "requested_minutes": duration_minutes,
                    },
                }
            )

        week_first = work_date - timedelta(days=(work_date.weekday() - policy.week_start_day) % 7)
        week_start = _local_midnight_utc(week_first, policy)
        week_end = _local_midnight_utc(week_first + timedelta(days=7), policy)
        weekly = self.request_repo.sum_live_minutes(owner_id, week_start, week_end, exclude_id)
        if weekly + duration_minutes > policy.max_weekly_minutes:
            violations.append(
                {
                    "code": RuleCode.WEEKLY_LIMIT_EXCEEDED,
                    "message": (
                        f"Weekly overtime would reach {weekly + duration_minutes} minutes, "
                        f"limit is {policy.max_weekly_minutes}"
                    ),
                    "details": {
                        "week_start": week_first.isoformat(),
                        "limit_minutes": policy.max_weekly_minutes,
                        "accumulated_minutes": weekly,
                        "requested_minutes": duration_minutes,
                    },
                }
            )

        if today is None:
            today = utc_now().astimezone(policy.timezone).date()
        days_late = (today - work_date).days
        if days_late > policy.submission_deadline_days:
            violations.append(
                {
                    "code": RuleCode.SUBMISSION_DEADLINE_PASSED,
                    "message": (
                        f"Overtime must be submitted within {policy.submission_deadline_days} "
                        "days of the work date"
                    ),
                    "details": {
                        "work_date": work_date.isoformat(),
                        "deadline_days": policy.submission_deadline_days,
                        "days_since_work_date": days_late,
                    },
                }
            )

        if policy.require_verified_attendance and not self.attendance_repo.has_verified_overlap(
            owner_id, start_at, end_at
        ):
            violations.append(
                {
                    "code": RuleCode.NO_VERIFIED_ATTENDANCE,
                    "message": "No verified attendance record covers the overtime window",
                    "details": {
                        "start_at": start_at.isoformat(),
                        "end_at": end_at.isoformat(),
                    },
                }
            )
        return violations

    def _enforce_rules(
        self,
        owner_id: str,
        start_at: datetime,
        duration_minutes: int,
        policy: OvertimePolicy,
        exclude_id: UUID | None = None,
    ) -> None:
        violations = self.check_business_rules(
            owner_id, start_at, duration_minutes, policy, exclude_id=exclude_id
        )
        if violations:
            raise BusinessRuleViolation(violations)

    # ------------------------------------------------------------------
    # Chain materialization
    # ------------------------------------------------------------------

    def _create_steps(
        self,
        request: OvertimeRequest,
        chain: ResolvedChain,
        policy: OvertimePolicy,
        now: datetime,
    ) -> list[ApprovalStep]:
        steps = [
            ApprovalStep(
                request_id=request.id,
                step_order=template.step_order,
                approver_kind=template.approver.kind.value,
                approver_value=template.approver.value,
                escalate_after_minutes=template.escalate_after_minutes,
                status=StepStatus.PENDING.value,
            )
            for template in chain.steps
        ]
        if steps:
            activate_step(steps[0], now, policy.escalation_timeout_minutes)
        return self.step_repo.add_all(steps)

    def _audit_steps(self, steps: list[ApprovalStep], actor_id: str) -> None:
        for step in steps:
            self.audit.append(
                STEPS_TABLE, UUID(str(step.id)), AuditAction.CREATE, actor_id, step_snapshot(step)
            )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def submit(
        self,
        actor: Actor,
        start_at: datetime,
        end_at: datetime,
        reason: str | None = None,
        before_commit: Callable[[OvertimeRequest], None] | None = None,
    ) -> OvertimeRequest:
        """Create a request and its approval chain in one transaction.

        ``before_commit`` runs last inside the transaction; anything it writes
        commits or rolls back with the request.
        """
        start, end, duration = self.validate_window(start_at, end_at, reason)

        with atomic(self.db):
            policy = self.policy_service.load()
            self._enforce_rules(actor.actor_id, start, duration, policy)
            chain = self.chain_service.resolve(actor.department_id)
            self.intervals.reserve(actor.actor_id, start, end)

            now = utc_now()
            request = OvertimeRequest(
                owner_id=actor.actor_id,
                department_id=actor.department_id,
                start_at=start,
                end_at=end,
                duration_minutes=duration,
                reason=reason,
                status=RequestStatus.SUBMITTED.value,
                current_level=0,
                max_level=len(chain.steps),
                submitted_at=now,
                created_by=actor.actor_id,
            )
            _apply_pay_rate(request, policy)
            self.intervals.claim(request)
            steps = self._create_steps(request, chain, policy, now)

            diff = request_snapshot(request)
            diff["chain_source"] = chain.source
            if chain.fallback_reason is not None:
                diff["fallback_reason"] = chain.fallback_reason
            self.audit.append(
                REQUESTS_TABLE, UUID(str(request.id)), AuditAction.CREATE, actor.actor_id, diff
            )
            self._audit_steps(steps, actor.actor_id)
            if before_commit is not None:
                before_commit(request)

        logger.info(
            "Overtime request %s submitted by %s (%s minutes, %s chain)",
            request.id,
            actor.actor_id,
            duration,
            chain.source,
        )
        return request

    def submit_idempotent(
        self,
        actor: Actor,
        start_at: datetime,
        end_at: datetime,
        reason: str | None,
        idempotency_key: str,
    ) -> IdempotentResult:
        """``submit`` behind the idempotency gate; retries replay the first response."""
        start, end, _ = self.validate_window(start_at, end_at, reason)
        request_hash = hash_request_body(
            {"start_at": start.isoformat(), "end_at": end.isoformat(), "reason": reason}
        )
        ttl_hours = self.policy_service.load().idempotency_ttl_hours
        gate = IdempotencyGate(self.db, ttl_hours)

        def run(complete: Complete) -> dict[str, Any]:
            body: dict[str, Any] = {}

            def store(request: OvertimeRequest) -> None:
                self.db.flush()
                # Steps were added through the repository, not the relationship
                self.db.expire(request, ["steps"])
                body.update(
                    OvertimeRequestResponse.model_validate(request).model_dump(mode="json")
                )
                complete(body)

            self.submit(actor, start, end, reason, before_commit=store)
            return body

        return gate.execute(
            idempotency_key,
            actor.actor_id,
            SUBMIT_METHOD,
            SUBMIT_PATH,
            run,
            request_hash=request_hash,
            status_code=201,
        )

    def save_draft(
        self,
        actor: Actor,
        start_at: datetime,
        end_at: datetime,
        reason: str | None = None,
    ) -> OvertimeRequest:
        """Hold a window as a draft. Caps and deadline are checked on submission."""
        start, end, duration = self.validate_window(start_at, end_at, reason)

        with atomic(self.db):
            self.intervals.reserve(actor.actor_id, start, end)
            request = OvertimeRequest(
                owner_id=actor.actor_id,
                department_id=actor.department_id,
                start_at=start,
                end_at=end,
                duration_minutes=duration,
                reason=reason,
                status=RequestStatus.DRAFT.value,
                current_level=0,
                max_level=0,
                created_by=actor.actor_id,
            )
            _apply_pay_rate(request, self.policy_service.load())
            self.intervals.claim(request)
            self.audit.append(
                REQUESTS_TABLE,
                UUID(str(request.id)),
                AuditAction.CREATE,
                actor.actor_id,
                request_snapshot(request),
            )

        logger.info("Overtime draft %s saved by %s", request.id, actor.actor_id)
        return request

    def submit_draft(
        self,
        actor: Actor,
        request_id: UUID,
        expected_row_version: int | None = None,
    ) -> OvertimeRequest:
        with atomic(self.db):
            request = self.request_repo.get_for_update(request_id)
            if request is None or not request.is_active:
                raise NotFoundError("Overtime request", {"request_id": str(request_id)})
            check_owner(request, actor)
            check_row_version(request, expected_row_version)
            if request.status != RequestStatus.DRAFT.value:
                raise ConflictError(
                    f"Only drafts can be submitted, request is {request.status}",
                    {"current_status": request.status},
                )

            policy = self.policy_service.load()
            self._enforce_rules(
                actor.actor_id,
                request.start_at,  # type: ignore[arg-type]
                int(request.duration_minutes),
                policy,
                exclude_id=request_id,
            )
            chain = self.chain_service.resolve(
                UUID(str(request.department_id)) if request.department_id else None
            )

            now = utc_now()
            request.status = RequestStatus.SUBMITTED.value  # type: ignore[assignment]
            request.submitted_at = now  # type: ignore[assignment]
            request.max_level = len(chain.steps)  # type: ignore[assignment]
            _apply_pay_rate(request, policy)
            flush_versioned(self.db, request)
            steps = self._create_steps(request, chain, policy, now)

            extra: dict[str, Any] = {
                "max_level": request.max_level,
                "row_version": request.row_version,
                "chain_source": chain.source,
            }
            if chain.fallback_reason is not None:
                extra["fallback_reason"] = chain.fallback_reason
            self.audit.log_status_change(
                REQUESTS_TABLE,
                UUID(str(request.id)),
                AuditAction.SUBMIT,
                actor.actor_id,
                RequestStatus.DRAFT.value,
                str(request.status),
                **extra,
            )
            self._audit_steps(steps, actor.actor_id)

        logger.info("Overtime draft %s submitted by %s", request_id, actor.actor_id)
        return request

    def get(self, request_id: UUID) -> OvertimeRequest:
        request = self.request_repo.get_by_id(request_id)
        if request is None or not request.is_active:
            raise NotFoundError("Overtime request", {"request_id": str(request_id)})
        return request

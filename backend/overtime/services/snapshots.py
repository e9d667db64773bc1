"""JSON-safe views of rows for audit diffs."""

from typing import Any

from overtime.models.approval_step import ApprovalStep
from overtime.models.overtime_request import OvertimeRequest
from overtime.models.shared import ensure_utc


def _iso(value: Any) -> str | None:
    return ensure_utc(value).isoformat() if value is not None else None


def request_snapshot(request: OvertimeRequest) -> dict[str, Any]:
    return {
        "id": str(request.id),
        "owner_id": request.owner_id,
        "department_id": str(request.department_id) if request.department_id else None,
        "start_at": _iso(request.start_at),
        "end_at": _iso(request.end_at),
        "duration_minutes": request.duration_minutes,
        "reason": request.reason,
        "status": request.status,
        "current_level": request.current_level,
        "max_level": request.max_level,
        "is_night_shift": request.is_night_shift,
        "is_holiday": request.is_holiday,
        "pay_multiplier": request.pay_multiplier,
        "row_version": request.row_version,
    }


def step_snapshot(step: ApprovalStep) -> dict[str, Any]:
    return {
        "id": str(step.id),
        "request_id": str(step.request_id),
        "step_order": step.step_order,
        "approver_kind": step.approver_kind,
        "approver_value": step.approver_value,
        "status": step.status,
        "activated_at": _iso(step.activated_at),
        "due_at": _iso(step.due_at),
        "row_version": step.row_version,
    }

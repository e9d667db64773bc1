"""Overtime request schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from overtime.services.approval_state_machine import Decision


class OvertimeRequestCreate(BaseModel):
    start_at: datetime
    end_at: datetime
    reason: str | None = None


class ApprovalStepResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    step_order: int
    approver_kind: str
    approver_value: str
    status: str
    activated_at: datetime | None = None
    due_at: datetime | None = None
    decided_by: str | None = None
    decision_at: datetime | None = None
    comment: str | None = None
    row_version: int


class OvertimeRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: str
    department_id: UUID | None = None
    start_at: datetime
    end_at: datetime
    duration_minutes: int
    reason: str | None = None
    status: str
    current_level: int
    max_level: int
    is_night_shift: bool = False
    is_holiday: bool = False
    pay_multiplier: float = 1.0
    row_version: int
    is_active: bool
    submitted_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    steps: list[ApprovalStepResponse] = []


class SubmitDraftRequest(BaseModel):
    row_version: int | None = Field(default=None, ge=1)


class ApprovalDecisionRequest(BaseModel):
    step_order: int = Field(ge=1)
    decision: Decision
    comment: str | None = Field(default=None, max_length=2000)
    row_version: int | None = Field(default=None, ge=1)


class CancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)
    row_version: int | None = Field(default=None, ge=1)


class DecisionResponse(BaseModel):
    request: OvertimeRequestResponse
    step: ApprovalStepResponse
    is_final: bool

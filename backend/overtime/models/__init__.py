from overtime.models.approval_chain import ApprovalChain, ApprovalChainStep
from overtime.models.approval_step import (
    ApprovalStep,
    ApproverKind,
    FixedApprover,
    RoleApprover,
    StepStatus,
)
from overtime.models.attendance_log import AttendanceLog
from overtime.models.audit_entry import AuditAction, AuditEntry
from overtime.models.idempotency_record import IdempotencyRecord
from overtime.models.overtime_request import OvertimeRequest, RequestStatus
from overtime.models.policy_config import PolicyConfig

__all__ = [
    "ApprovalChain",
    "ApprovalChainStep",
    "ApprovalStep",
    "ApproverKind",
    "AttendanceLog",
    "AuditAction",
    "AuditEntry",
    "FixedApprover",
    "IdempotencyRecord",
    "OvertimeRequest",
    "PolicyConfig",
    "RequestStatus",
    "RoleApprover",
    "StepStatus",
]

from overtime.repositories.approval_chain_repository import ApprovalChainRepository
from overtime.repositories.approval_step_repository import ApprovalStepRepository
from overtime.repositories.attendance_log_repository import AttendanceLogRepository
from overtime.repositories.audit_entry_repository import AuditEntryRepository
from overtime.repositories.idempotency_repository import IdempotencyRepository
from overtime.repositories.overtime_request_repository import OvertimeRequestRepository
from overtime.repositories.policy_config_repository import PolicyConfigRepository

__all__ = [
    "ApprovalChainRepository",
    "ApprovalStepRepository",
    "AttendanceLogRepository",
    "AuditEntryRepository",
    "IdempotencyRepository",
    "OvertimeRequestRepository",
    "PolicyConfigRepository",
]
